from datetime import date
from urllib.parse import parse_qs, urlparse

from pubharvest.http_utils import RetryingClient
from pubharvest.pubmed import PubMedClient, extract_doi, summary_to_publication
from tests.fixtures import FakeResponse, FakeSession, no_sleep
from tests.test_data import summary


def _pubmed(script):
    session = FakeSession(script)
    client = RetryingClient(session=session, sleep=no_sleep)
    return PubMedClient(client, email="lab@umn.edu", tool="pubharvest", api_key=""), session


def _query(call):
    return {k: v[0] for k, v in parse_qs(urlparse(call["url"]).query).items()}


def test_search_sends_usage_policy_params():
    """
    Every E-utilities call identifies the tool and contact email; an empty
    API key is left out.
    """
    pubmed, session = _pubmed([FakeResponse(200, {"esearchresult": {"idlist": ["101", 102]}})])
    assert pubmed.search("Larson Erin[fau]") == ["101", "102"]

    q = _query(session.calls[0])
    assert q["db"] == "pubmed"
    assert q["term"] == "Larson Erin[fau]"
    assert q["retmax"] == "500"
    assert q["tool"] == "pubharvest"
    assert q["email"] == "lab@umn.edu"
    assert "api_key" not in q


def test_search_empty_result():
    pubmed, _ = _pubmed([FakeResponse(200, {"esearchresult": {}})])
    assert pubmed.search("nobody[fau]") == []


def test_summaries_batched_by_200():
    ids = [str(i) for i in range(250)]
    first = {"result": {"uids": ids[:200], **{i: {"uid": i} for i in ids[:200]}}}
    second = {"result": {"uids": ids[200:], **{i: {"uid": i} for i in ids[200:]}}}
    pubmed, session = _pubmed([FakeResponse(200, first), FakeResponse(200, second)])

    out = pubmed.summaries(ids)
    assert len(out) == 250
    assert len(session.calls) == 2
    assert _query(session.calls[1])["id"].split(",")[0] == "200"


def test_article_xml_returns_raw_text():
    pubmed, session = _pubmed([FakeResponse(200, text="<PubmedArticleSet></PubmedArticleSet>")])
    assert pubmed.article_xml(["1", "2"]) == "<PubmedArticleSet></PubmedArticleSet>"
    q = _query(session.calls[0])
    assert q["id"] == "1,2"
    assert q["retmode"] == "xml"


def test_article_xml_empty_batch_makes_no_request():
    pubmed, session = _pubmed([])
    assert pubmed.article_xml([]) == ""
    assert session.calls == []


def test_summary_to_publication_prefers_resolved_date():
    s = summary("101", "Kidney Function", "Journal of Clinical Medicine", "2021 Feb 10", doi="10.1000/x")
    pub = summary_to_publication(s, date(2020, 12, 30))
    assert pub.year == 2020
    assert pub.doi == "10.1000/x"
    assert pub.url == "https://pubmed.ncbi.nlm.nih.gov/101/"
    assert summary_to_publication(s).year == 2021


def test_summary_fallbacks():
    pub = summary_to_publication({"uid": "77"})
    assert pub.title == "PubMed 77"
    assert pub.journal == "Unknown journal"
    assert pub.year is None
    assert extract_doi({"articleids": [{"idtype": "pmc", "value": "PMC1"}]}) == ""
