from __future__ import annotations

import re
import time
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, List, Optional, Sequence

from .config import DETAIL_BATCH_DELAY, DETAIL_BATCH_SIZE
from .log_utils import logger, LogCategory, LogSource
from .models import Authorship, Researcher, ResolutionResult
from .text_utils import (
    build_date_from_parts,
    chunked,
    normalize_affiliation,
    normalize_name,
    parse_pub_date_string,
)

_ORCID_PATTERN = re.compile(r"\d{4}-?\d{4}-?\d{4}-?\d{3}[\dXx]")


@dataclass
class ParsedAuthor:
    """
    One <Author> entry from an EFetch record.
    """
    last_name: str = ""
    fore_name: str = ""
    initials: str = ""
    collective_name: str = ""
    orcid: str = ""
    affiliations: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        if self.collective_name and not self.last_name:
            return self.collective_name
        given = self.fore_name or self.initials
        return f"{given} {self.last_name}".strip()


@dataclass
class ParsedArticle:
    pmid: str
    authors: List[ParsedAuthor]
    pub_date: Optional[date] = None


def _xml_text(el: Optional[ElementTree.Element]) -> str:
    """
    Text content of an element including nested markup (<i>, <sup>, ...),
    stripped; empty when the element is missing.
    """
    if el is None:
        return ""
    return "".join(el.itertext()).strip()


def normalize_orcid(value: str) -> str:
    """
    Reduce an ORCID to its 16 significant characters so
    "https://orcid.org/0000-0002-1825-0097" equals "0000000218250097".
    """
    tail = str(value or "").strip().rstrip("/").rsplit("/", 1)[-1]
    return re.sub(r"[^0-9A-Za-z]", "", tail).upper()


def extract_orcid(author_el: ElementTree.Element) -> str:
    """
    ORCID of an author entry: an <Identifier Source="ORCID">, or any
    identifier that looks like an ORCID.
    """
    fallback = ""
    for ident in author_el.findall("Identifier"):
        text = _xml_text(ident)
        if not text:
            continue
        if (ident.get("Source") or "").upper() == "ORCID":
            return text
        if not fallback and _ORCID_PATTERN.search(text):
            fallback = text
    return fallback


def extract_affiliations(author_el: ElementTree.Element) -> List[str]:
    """
    Every affiliation string attached to one author entry.
    """
    out = []
    for info in author_el.findall("AffiliationInfo"):
        affs = info.findall("Affiliation")
        if not affs:
            text = _xml_text(info)
            if text:
                out.append(text)
            continue
        for aff in affs:
            text = _xml_text(aff)
            if text:
                out.append(text)
    return out


def parse_author(author_el: ElementTree.Element) -> ParsedAuthor:
    return ParsedAuthor(
        last_name=_xml_text(author_el.find("LastName")),
        fore_name=_xml_text(author_el.find("ForeName")),
        initials=_xml_text(author_el.find("Initials")),
        collective_name=_xml_text(author_el.find("CollectiveName")),
        orcid=extract_orcid(author_el),
        affiliations=extract_affiliations(author_el),
    )


def parse_pub_date(article_el: ElementTree.Element) -> Optional[date]:
    """
    Best available publication date: the electronic ArticleDate, then the
    journal issue PubDate, then its free-text MedlineDate.
    """
    art = article_el.find("MedlineCitation/Article")
    if art is None:
        return None

    for ad in art.findall("ArticleDate"):
        parsed = build_date_from_parts(
            _xml_text(ad.find("Year")), _xml_text(ad.find("Month")), _xml_text(ad.find("Day"))
        )
        if parsed:
            return parsed

    pub_date = art.find("Journal/JournalIssue/PubDate")
    if pub_date is not None:
        parsed = build_date_from_parts(
            _xml_text(pub_date.find("Year")), _xml_text(pub_date.find("Month")), _xml_text(pub_date.find("Day"))
        )
        if parsed:
            return parsed
        return parse_pub_date_string(_xml_text(pub_date.find("MedlineDate")))
    return None


def parse_articles_from_xml(xml_text: str) -> List[ParsedArticle]:
    """
    Parse an EFetch PubmedArticleSet into articles with ordered author lists.
    Malformed XML raises ElementTree.ParseError.
    """
    if not xml_text or not xml_text.strip():
        return []
    # ElementTree does not expand external entities
    root = ElementTree.fromstring(xml_text)

    articles = []
    for article_el in root.iter("PubmedArticle"):
        pmid = _xml_text(article_el.find("MedlineCitation/PMID"))
        if not pmid:
            continue
        authors = [parse_author(a) for a in article_el.findall("MedlineCitation/Article/AuthorList/Author")]
        articles.append(ParsedArticle(pmid=pmid, authors=authors, pub_date=parse_pub_date(article_el)))
    return articles


def given_name_tokens(value: str) -> List[str]:
    """
    Normalized given-name parts, split on whitespace and periods
    ("J. A." -> ["j", "a"], "Mary-Jo" -> ["maryjo"]).
    """
    return [t for t in (normalize_name(part) for part in re.split(r"[\s.]+", value or "")) if t]


def is_initials_only(author: ParsedAuthor) -> bool:
    """
    True when the author entry carries no spelled-out given name: no ForeName,
    a ForeName made of single letters ("J A"), or one equal to the Initials.
    """
    tokens = given_name_tokens(author.fore_name)
    if not tokens:
        return True
    if all(len(t) == 1 for t in tokens):
        return True
    initials = normalize_name(author.initials)
    return bool(initials) and "".join(tokens) == initials


def author_matches_person(author: ParsedAuthor, person: Researcher, allow_initials: bool = True) -> bool:
    """
    Decide whether an author entry is the researcher.

    A matching ORCID settles it. Otherwise the family name must match one of
    the researcher's name variants exactly (after normalization), and the
    first given names must be equal or one a prefix of the other. With
    initials matching disabled an initials-only author never matches, and a
    one-letter prefix does not count.
    """
    if person.orcid and author.orcid:
        if normalize_orcid(author.orcid) == normalize_orcid(person.orcid):
            return True

    author_last = normalize_name(author.last_name)
    if not author_last:
        return False
    if not allow_initials and is_initials_only(author):
        return False

    author_tokens = given_name_tokens(author.fore_name)
    author_first = author_tokens[0] if author_tokens else ""
    author_initial = (author_first or normalize_name(author.initials))[:1]

    for variant in person.variants:
        person_last = normalize_name(variant.last_name)
        if not person_last or person_last != author_last:
            continue

        person_tokens = given_name_tokens(variant.fore_name)
        person_first = person_tokens[0] if person_tokens else ""
        if author_first and person_first:
            if author_first == person_first:
                return True
            if author_first.startswith(person_first) or person_first.startswith(author_first):
                if min(len(author_first), len(person_first)) > 1 or allow_initials:
                    return True

        if allow_initials:
            person_initial = person_first[:1]
            if author_initial and person_initial and author_initial == person_initial:
                return True
    return False


def find_matched_author(authors: Sequence[ParsedAuthor], person: Researcher, allow_initials: bool = True) -> Optional[int]:
    """
    Index of the first author entry that matches the researcher.
    """
    for idx, author in enumerate(authors):
        if author_matches_person(author, person, allow_initials):
            return idx
    return None


def affiliation_matches(affiliations: Iterable[str], normalized_terms: Sequence[str]) -> bool:
    normalized = [normalize_affiliation(a) for a in affiliations]
    return any(term in aff for aff in normalized for term in normalized_terms)


def resolve_candidates(
        pmids: Sequence[str],
        person: Researcher,
        allowed_terms: Iterable[str],
        fetch_xml: Callable[[List[str]], str],
        *,
        allow_initials: bool = True,
        validate_affiliation: bool = True,
        accept_missing_affiliation: bool = True,
        batch_size: int = DETAIL_BATCH_SIZE,
        delay: float = DETAIL_BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
) -> ResolutionResult:
    """
    Fetch full records for candidate PMIDs in batches and decide which ones
    belong to the researcher.

    A candidate is accepted when an author entry matches the researcher and
    one of that author's affiliations mentions an allowed term. A matched
    author with no affiliation on file is accepted under the default policy
    and counted. With validation off every candidate is accepted; authorship,
    co-authors and dates are resolved either way.
    """
    result = ResolutionResult()
    if not pmids:
        return result

    normalized_terms = [t for t in (normalize_affiliation(term) for term in allowed_terms) if t]
    if not validate_affiliation:
        result.accepted.update(str(p) for p in pmids)

    batches = list(chunked(list(pmids), batch_size))
    for batch_idx, batch in enumerate(batches):
        articles = parse_articles_from_xml(fetch_xml(batch))

        for art in articles:
            if art.pub_date:
                result.pub_dates[art.pmid] = art.pub_date

            idx = find_matched_author(art.authors, person, allow_initials)
            if idx is None:
                continue

            result.authorship[art.pmid] = Authorship(position=idx, total=len(art.authors))
            result.coauthors[art.pmid] = [
                a.display_name for i, a in enumerate(art.authors) if i != idx and a.display_name
            ]

            if not validate_affiliation:
                continue

            affiliations = art.authors[idx].affiliations
            if not affiliations:
                result.missing_affiliation += 1
                if accept_missing_affiliation:
                    result.accepted.add(art.pmid)
                continue

            if affiliation_matches(affiliations, normalized_terms):
                result.accepted.add(art.pmid)
            else:
                logger.debug(
                    f"PMID {art.pmid}: author matched but affiliation did not",
                    source=LogSource.PUBMED,
                    category=LogCategory.SKIP,
                )

        if batch_idx < len(batches) - 1 and delay > 0:
            sleep(delay)

    if result.missing_affiliation:
        kept = "kept them anyway" if accept_missing_affiliation else "dropped them"
        logger.warn(
            f"{person.name}: {result.missing_affiliation} record(s) missing author affiliation; {kept}",
            source=LogSource.PUBMED,
            category=LogCategory.MATCH,
        )
    return result


def should_include_publication(pub_date: Optional[date], pub_year: Optional[int],
                               start: Optional[date], end: Optional[date]) -> bool:
    """
    Date-window check for an accepted record. Only the year is compared when
    the exact date is unknown; a record from the start year with no exact
    date is left out because it may predate the start.
    """
    start_year = start.year if start else None
    end_year = end.year if end else None

    if pub_year and start_year and pub_year < start_year:
        return False
    if pub_year and end_year and pub_year > end_year:
        return False
    if start and pub_date and pub_date < start:
        return False
    if end and pub_date and pub_date > end:
        return False
    if start and not pub_date and pub_year == start_year:
        return False
    return True
