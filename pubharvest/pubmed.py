from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .config import (
    EFETCH_URL,
    ESEARCH_URL,
    ESUMMARY_URL,
    HTTP_MAX_RETRIES,
    PUBMED_ARTICLE_URL,
    SEARCH_RETMAX,
    SUMMARY_BATCH_SIZE,
    Settings,
)
from .http_utils import RetryingClient
from .log_utils import logger, LogCategory, LogSource
from .models import Publication
from .text_utils import chunked, parse_year_value


# ============================================================================================
# PubMed E-utilities
# ============================================================================================

class PubMedClient:
    """
    The three E-utilities calls the harvester needs: ESearch for candidate
    PMIDs, ESummary for display metadata and EFetch for the full article XML
    (author list, affiliations, dates).
    """

    def __init__(self, client: RetryingClient, email: str = "", tool: str = "", api_key: str = ""):
        self.client = client
        self.email = email
        self.tool = tool
        self.api_key = api_key

    @classmethod
    def from_settings(cls, settings: Settings, **client_kwargs) -> "PubMedClient":
        client_kwargs.setdefault("max_attempts", HTTP_MAX_RETRIES)
        client_kwargs.setdefault("source", LogSource.PUBMED)
        return cls(RetryingClient(**client_kwargs), settings.email, settings.tool, settings.api_key)

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params: Dict[str, Any] = {"db": "pubmed", "tool": self.tool, "email": self.email, "api_key": self.api_key}
        params.update(extra)
        return params

    def search(self, term: str, retmax: int = SEARCH_RETMAX) -> List[str]:
        """
        Run ESearch and return candidate PMIDs in provider order.
        """
        data = self.client.get_json(ESEARCH_URL, self._params(term=term, retmode="json", retmax=retmax))
        ids = ((data or {}).get("esearchresult") or {}).get("idlist") or []
        return [str(pmid) for pmid in ids]

    def summaries(self, pmids: Iterable[str]) -> List[Dict[str, Any]]:
        """
        ESummary records for the given PMIDs, fetched in provider-sized batches.
        """
        pmids = list(pmids)
        out: List[Dict[str, Any]] = []
        for batch in chunked(pmids, SUMMARY_BATCH_SIZE):
            data = self.client.get_json(ESUMMARY_URL, self._params(id=",".join(batch), retmode="json"))
            result = (data or {}).get("result") or {}
            for uid in result.get("uids") or []:
                item = result.get(str(uid))
                if isinstance(item, dict):
                    out.append(item)
        if pmids:
            logger.debug(f"{len(out)}/{len(pmids)} summaries fetched", source=LogSource.PUBMED, category=LogCategory.FETCH)
        return out

    def article_xml(self, pmids: Iterable[str]) -> str:
        """
        Raw EFetch XML (a PubmedArticleSet) for one batch of PMIDs.
        """
        ids = ",".join(pmids)
        if not ids:
            return ""
        return self.client.get_xml(EFETCH_URL, self._params(id=ids, retmode="xml"))


def extract_doi(summary: Dict[str, Any]) -> str:
    for aid in summary.get("articleids") or []:
        if isinstance(aid, dict) and aid.get("idtype") == "doi":
            return str(aid.get("value") or "")
    return ""


def summary_to_publication(summary: Dict[str, Any], pub_date: Optional[date] = None) -> Publication:
    """
    Map an ESummary record to a Publication; the resolved publication date
    from EFetch, when known, wins over the summary's free-text pubdate.
    """
    uid = str(summary.get("uid") or "")
    year = pub_date.year if pub_date else parse_year_value(summary.get("pubdate"))
    title = str(summary.get("title") or "").strip()
    return Publication(
        id=uid,
        title=title or f"PubMed {uid}",
        journal=summary.get("fulljournalname") or summary.get("source") or "Unknown journal",
        year=year or None,
        doi=extract_doi(summary),
        url=f"{PUBMED_ARTICLE_URL}/{uid}/",
    )
