import random
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests
from urllib3.exceptions import ReadTimeoutError
from urllib3.util.retry import RequestHistory

from pubharvest.exceptions import ProviderError, RetryExhaustedError
from pubharvest.http_utils import JitteredRetry, RetryingClient, build_url
from tests.fixtures import FakeResponse, FakeSession


class _ScriptedHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        self._reply()

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        self._reply()

    def _reply(self):
        status, body = self.server.script.pop(0)
        self.server.hits.append(self.command)
        data = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, *args):
        pass


@pytest.fixture
def scripted_server():
    """
    Local HTTP server answering with a scripted list of (status, body) pairs.
    """
    servers = []

    def start(script):
        server = ThreadingHTTPServer(("127.0.0.1", 0), _ScriptedHandler)
        server.script = list(script)
        server.hits = []
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server, f"http://127.0.0.1:{server.server_address[1]}/api"

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


def _live_client(**kwargs):
    sleeps = []
    session = requests.Session()
    session.trust_env = False
    client = RetryingClient(session=session, sleep=sleeps.append, rng=random.Random(7), **kwargs)
    return client, sleeps


def _client(script, **kwargs):
    sleeps = []
    session = FakeSession(script)
    client = RetryingClient(session=session, sleep=sleeps.append, rng=random.Random(7), **kwargs)
    return client, session, sleeps


# ===== URL BUILDING =====

def test_build_url_drops_empty_params():
    """
    Optional credentials left blank must not appear in the query string.
    """
    url = build_url("https://example.org/esearch.fcgi", {"db": "pubmed", "api_key": "", "email": None, "retmax": 500})
    assert url == "https://example.org/esearch.fcgi?db=pubmed&retmax=500"


def test_build_url_without_params():
    assert build_url("https://example.org/x", {}) == "https://example.org/x"


# ===== RETRY POLICY =====

def test_session_carries_retry_adapter():
    client, session, _ = _client([], max_attempts=3, retry_statuses=(429, 503))
    adapter = session.adapters["https://"]
    assert session.adapters["http://"] is adapter
    retry = adapter.max_retries
    assert isinstance(retry, JitteredRetry)
    assert retry.total == 2
    assert set(retry.status_forcelist) == {429, 503}
    assert {"GET", "POST"} <= set(retry.allowed_methods)
    assert retry.raise_on_status is False


def test_backoff_doubles_with_bounded_jitter():
    """
    Delay before retry n lies within +/-25% of base * 2**n.
    """
    retry = JitteredRetry(total=5, backoff_factor=0.8, jitter=0.25, rng=random.Random(1))
    assert retry.get_backoff_time() == 0.0
    for attempt in range(5):
        failed = retry.new(history=tuple(RequestHistory("GET", "/x", None, 503, None) for _ in range(attempt + 1)))
        nominal = 0.8 * (2 ** attempt)
        for _ in range(20):
            assert nominal * 0.75 <= failed.get_backoff_time() <= nominal * 1.25


def test_rebuilt_policy_keeps_jitter_settings():
    sleeps = []
    retry = JitteredRetry(total=2, backoff_factor=1.0, jitter=0.0, sleep_func=sleeps.append)
    after = retry.increment(method="GET", url="/esearch", error=ReadTimeoutError(None, "/esearch", "read timed out"))
    assert isinstance(after, JitteredRetry)
    assert after.total == 1
    after.sleep()
    assert sleeps == [1.0]


def test_invalid_attempt_count_rejected():
    with pytest.raises(ValueError):
        RetryingClient(max_attempts=0, session=FakeSession([]))


# ===== RETRY BEHAVIOUR =====

def test_retries_transient_status_then_succeeds(scripted_server):
    """
    A 503 is retried after a backoff pause and the next success is returned.
    """
    server, url = scripted_server([(503, "busy"), (200, '{"ok": true}')])
    client, sleeps = _live_client()
    assert client.get_json(url) == {"ok": True}
    assert len(server.hits) == 2
    assert len(sleeps) == 1
    assert 0.8 * 0.75 <= sleeps[0] <= 0.8 * 1.25


def test_post_is_retried(scripted_server):
    server, url = scripted_server([(502, "bad gateway"), (200, '{"results": []}')])
    client, _ = _live_client()
    assert client.post_json(url, {"offset": 0}) == {"results": []}
    assert server.hits == ["POST", "POST"]


def test_retry_budget_exhausted(scripted_server):
    """
    After max_attempts transient failures the client gives up with the last
    status and body, sleeping only between attempts.
    """
    server, url = scripted_server([(429, "slow down")] * 3)
    client, sleeps = _live_client(max_attempts=3)
    with pytest.raises(RetryExhaustedError) as excinfo:
        client.get_json(url)

    assert excinfo.value.status == 429
    assert excinfo.value.body == "slow down"
    assert len(server.hits) == 3
    assert len(sleeps) == 2
    assert 1.6 * 0.75 <= sleeps[1] <= 1.6 * 1.25


def test_non_retryable_status_fails_immediately_with_body(scripted_server):
    """
    A 400 is terminal: one call, no sleep, and the body is kept on the error.
    """
    server, url = scripted_server([(400, "Invalid term syntax")])
    client, sleeps = _live_client()
    with pytest.raises(ProviderError) as excinfo:
        client.get_json(url, {"term": "x"})

    err = excinfo.value
    assert not isinstance(err, RetryExhaustedError)
    assert err.status == 400
    assert err.body == "Invalid term syntax"
    assert "Invalid term syntax" in str(err)
    assert len(server.hits) == 1
    assert sleeps == []


def test_connection_error_is_retried_then_exhausted():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    client, sleeps = _live_client(max_attempts=2, timeout=2.0)
    with pytest.raises(RetryExhaustedError) as excinfo:
        client.get_xml(f"http://127.0.0.1:{port}/efetch")
    assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)
    assert excinfo.value.status is None
    assert len(sleeps) == 1


def test_timeout_escaping_adapter_is_exhaustion():
    client, session, _ = _client([requests.exceptions.Timeout("read timed out")])
    with pytest.raises(RetryExhaustedError) as excinfo:
        client.get_json("https://example.org/api")
    assert session.calls[0]["timeout"] == client.timeout
    assert isinstance(excinfo.value.__cause__, requests.exceptions.Timeout)


# ===== PAYLOAD HANDLING =====

def test_get_xml_returns_text():
    client, session, _ = _client([FakeResponse(200, text="<PubmedArticleSet/>")])
    assert client.get_xml("https://example.org/efetch", {"id": "1,2"}) == "<PubmedArticleSet/>"
    assert session.calls[0]["url"] == "https://example.org/efetch?id=1%2C2"
    assert "xml" in session.calls[0]["headers"]["Accept"]


def test_post_json_sends_body():
    client, session, _ = _client([FakeResponse(200, {"results": []})])
    assert client.post_json("https://example.org/search", {"offset": 0}) == {"results": []}
    assert session.calls[0]["method"] == "POST"
    assert session.calls[0]["json"] == {"offset": 0}


def test_invalid_json_raises_value_error():
    client, _, _ = _client([FakeResponse(200, text="<html>oops</html>")])
    with pytest.raises(ValueError):
        client.get_json("https://example.org/api")
