from __future__ import annotations

import json
import random
import time
import urllib.parse
from typing import Any, Callable, Dict, Iterable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import (
    HTTP_BACKOFF_INITIAL,
    HTTP_JITTER,
    HTTP_MAX_RETRIES,
    HTTP_RETRY_STATUS_CODES,
    HTTP_TIMEOUT_DEFAULT,
)
from .exceptions import DECODE_ERRORS, HTTP_ERRORS, ProviderError, RetryExhaustedError
from .log_utils import logger, LogCategory, LogSource

DEFAULT_JSON_HEADERS = {
    "User-Agent": "pubharvest/1.0 (faculty publication harvester)",
    "Accept": "application/json",
}

DEFAULT_XML_HEADERS = {
    "User-Agent": "pubharvest/1.0 (faculty publication harvester)",
    "Accept": "application/xml, text/xml;q=0.9, */*;q=0.5",
}


def build_url(base: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Attach query parameters to a base URL, dropping empty values so optional
    credentials are simply left out.
    """
    clean = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
    if not clean:
        return base
    return f"{base}?{urllib.parse.urlencode(clean)}"


def _decode_json_bytes(raw: bytes, url: str) -> Any:
    """
    Decode a UTF-8 JSON response, including a short preview of invalid data in
    the error message.
    """
    try:
        return json.loads(raw.decode("utf-8"))
    except json.JSONDecodeError as ex:
        preview = raw[:256].decode("utf-8", errors="replace")
        raise ValueError(f"Invalid JSON from {url!r}: {ex.msg} at pos {ex.pos}; preview={preview!r}") from ex


def _decode_text(raw: bytes) -> str:
    if raw.startswith(b"\xef\xbb\xbf"):
        return raw.decode("utf-8-sig")
    try:
        return raw.decode("utf-8")
    except DECODE_ERRORS:
        return raw.decode("latin-1", errors="replace")


class JitteredRetry(Retry):
    """
    urllib3 retry policy with multiplicative jitter: the pause before retry n
    (zero-based) is `backoff_factor * 2**n` times a random factor in
    `[1 - jitter, 1 + jitter]`. Retry-After headers are ignored.
    """

    def __init__(
            self,
            *args,
            jitter: float = HTTP_JITTER,
            rng: Optional[random.Random] = None,
            sleep_func: Callable[[float], None] = time.sleep,
            source: str = LogSource.SYSTEM,
            **kwargs,
    ):
        kwargs.setdefault("respect_retry_after_header", False)
        super().__init__(*args, **kwargs)
        self.jitter = jitter
        self.rng = rng or random.Random()
        self.sleep_func = sleep_func
        self.source = source

    def new(self, **kw) -> "JitteredRetry":
        # urllib3 rebuilds the policy after every attempt
        kw.setdefault("jitter", self.jitter)
        kw.setdefault("rng", self.rng)
        kw.setdefault("sleep_func", self.sleep_func)
        kw.setdefault("source", self.source)
        return super().new(**kw)

    def get_backoff_time(self) -> float:
        failures = len(self.history)
        if failures < 1:
            return 0.0
        factor = self.rng.uniform(1.0 - self.jitter, 1.0 + self.jitter)
        return self.backoff_factor * (2 ** (failures - 1)) * factor

    def sleep(self, response=None) -> None:
        delay = self.get_backoff_time()
        if delay > 0:
            self.sleep_func(delay)

    def increment(self, method=None, url=None, response=None, error=None, _pool=None, _stacktrace=None):
        retry = super().increment(method, url, response, error, _pool, _stacktrace)
        cause = error if error is not None else f"HTTP {getattr(response, 'status', '?')}"
        logger.debug(
            f"Attempt {len(retry.history)} for {method} {url} failed: {cause}",
            source=self.source,
            category=LogCategory.FETCH,
        )
        return retry


class RetryingClient:
    """
    Outbound HTTP client shared by every provider integration.

    The session carries a `JitteredRetry` adapter, so connection errors,
    timeouts and the statuses in `retry_statuses` are retried inside
    urllib3. A retryable status still present after the last attempt, or a
    network error that outlives the budget, becomes `RetryExhaustedError`.
    Any other error status fails at once with the response body attached.
    """

    def __init__(
            self,
            max_attempts: int = HTTP_MAX_RETRIES,
            base_delay: float = HTTP_BACKOFF_INITIAL,
            retry_statuses: Iterable[int] = HTTP_RETRY_STATUS_CODES,
            timeout: float = HTTP_TIMEOUT_DEFAULT,
            jitter: float = HTTP_JITTER,
            session: Optional[requests.Session] = None,
            sleep: Callable[[float], None] = time.sleep,
            rng: Optional[random.Random] = None,
            source: str = LogSource.SYSTEM,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_statuses = frozenset(retry_statuses)
        self.timeout = timeout
        self.source = source
        self.retry = JitteredRetry(
            total=max_attempts - 1,
            backoff_factor=base_delay,
            status_forcelist=self.retry_statuses,
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
            jitter=jitter,
            rng=rng,
            sleep_func=sleep,
            source=source,
        )
        self.session = session or requests.Session()
        adapter = HTTPAdapter(max_retries=self.retry)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def request(
            self,
            method: str,
            url: str,
            params: Optional[Dict[str, Any]] = None,
            json_body: Optional[Any] = None,
            expect: str = "json",
    ) -> Any:
        """
        Send a request and return the parsed payload: a decoded JSON object for
        `expect="json"`, or the response text for `expect="xml"`/`"text"`.
        """
        headers = DEFAULT_JSON_HEADERS if expect == "json" else DEFAULT_XML_HEADERS
        full_url = build_url(url, params)
        try:
            resp = self.session.request(
                method,
                full_url,
                headers=headers,
                json=json_body,
                timeout=self.timeout,
            )
        except HTTP_ERRORS as e:
            raise RetryExhaustedError(
                f"{method} {url} failed after {self.max_attempts} attempt(s): {e}",
                url=full_url,
            ) from e

        if resp.ok:
            if expect == "json":
                return _decode_json_bytes(resp.content, full_url)
            return _decode_text(resp.content)

        if resp.status_code in self.retry_statuses:
            raise RetryExhaustedError(
                f"{method} {url} failed after {self.max_attempts} attempt(s) (last status {resp.status_code})",
                status=resp.status_code,
                body=resp.text,
                url=full_url,
            )
        raise ProviderError(
            f"{method} {url} failed ({resp.status_code})",
            status=resp.status_code,
            body=resp.text,
            url=full_url,
        )

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", url, params=params, expect="json")

    def get_xml(self, url: str, params: Optional[Dict[str, Any]] = None) -> str:
        return self.request("GET", url, params=params, expect="xml")

    def post_json(self, url: str, payload: Any) -> Any:
        return self.request("POST", url, json_body=payload, expect="json")
