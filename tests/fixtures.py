"""
Offline stand-ins for the provider clients and HTTP session.
"""
from __future__ import annotations

import json
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pubharvest.config import Settings
from pubharvest.exceptions import ProviderError
from pubharvest.models import NameVariant, Researcher
from tests.test_data import PIPELINE_ARTICLES, PIPELINE_SEARCH, PIPELINE_SUMMARIES, article_set


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        self.content = text.encode("utf-8")

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400


class FakeSession:
    """
    Replays a scripted sequence of responses; an exception instance in the
    script is raised instead of returned.
    """

    def __init__(self, script: Sequence[Any]):
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []
        self.adapters: Dict[str, Any] = {}

    def mount(self, prefix: str, adapter: Any) -> None:
        self.adapters[prefix] = adapter

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.script:
            raise AssertionError("FakeSession script exhausted")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FakePubMed:
    """
    In-memory PubMed with the same three calls the pipeline uses. Search
    results are keyed by a substring of the query term (the family name).
    """

    def __init__(self, search: Optional[Dict[str, List[str]]] = None,
                 articles: Optional[Dict[str, str]] = None,
                 summaries: Optional[Dict[str, Dict[str, Any]]] = None,
                 fail_on: Iterable[str] = ()):
        self.search_results = dict(PIPELINE_SEARCH if search is None else search)
        self.articles = dict(PIPELINE_ARTICLES if articles is None else articles)
        self.summary_records = dict(PIPELINE_SUMMARIES if summaries is None else summaries)
        self.fail_on = set(fail_on)
        self.terms: List[str] = []
        self.fetched: List[List[str]] = []

    def search(self, term: str, retmax: int = 500) -> List[str]:
        self.terms.append(term)
        for key in self.fail_on:
            if key in term:
                raise ProviderError("GET esearch failed (400)", status=400, body="Invalid query")
        for key, pmids in self.search_results.items():
            if key in term:
                return list(pmids)[:retmax]
        return []

    def summaries(self, pmids: Iterable[str]) -> List[Dict[str, Any]]:
        return [self.summary_records[p] for p in pmids if p in self.summary_records]

    def article_xml(self, pmids: Iterable[str]) -> str:
        pmids = list(pmids)
        self.fetched.append(pmids)
        return article_set(self.articles[p] for p in pmids if p in self.articles)


class FakeReporter:
    """
    Stand-in for the RePORTER client: returns scripted pages in order and
    records every payload.
    """

    def __init__(self, pages: Sequence[Any]):
        self.pages = list(pages)
        self.payloads: List[Dict[str, Any]] = []

    def post_json(self, url: str, payload: Any) -> Any:
        self.payloads.append(payload)
        if not self.pages:
            return {"results": [], "meta": {}}
        item = self.pages.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def make_researcher(fore: str = "Erin", last: str = "Larson", orcid: str = "",
                    terms: Sequence[str] = ("Department of Medicine",),
                    start: Optional[date] = date(2020, 1, 1),
                    variants: Sequence[NameVariant] = (), **kwargs) -> Researcher:
    return Researcher(
        id=kwargs.pop("id", f"{fore}-{last}".lower()),
        name=f"{fore} {last}",
        fore_name=fore,
        last_name=last,
        name_variants=tuple(variants),
        orcid=orcid,
        signature_terms=tuple(terms),
        start_date=start,
        department=kwargs.pop("department", "University of Minnesota"),
        **kwargs,
    )


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        email="harvester@umn.edu",
        roster_path=str(tmp_path / "faculty.csv"),
        output_path=str(tmp_path / "public" / "publications.json"),
        db_path=str(tmp_path / "publications.db"),
        legacy_curation_path=str(tmp_path / "curation.json"),
        grants_output_path=str(tmp_path / "public" / "grants.json"),
        request_delay=0.0,
        reporter_delay=0.0,
    )
    values.update(overrides)
    return Settings(**values)


def no_sleep(seconds: float) -> None:
    return None
