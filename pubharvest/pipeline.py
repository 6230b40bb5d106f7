from __future__ import annotations

import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from .config import OUTPUT_SOURCE, Settings
from .exceptions import CSV_ERRORS, FACULTY_RUN_ERRORS, FILE_READ_ERRORS
from .io_utils import read_legacy_curation, read_roster, write_json_atomic
from .log_utils import logger, LogCategory, LogSource
from .models import Authorship, Publication, Researcher, Signals, Verdict
from .pubmed import PubMedClient, summary_to_publication
from .query_builder import affiliation_terms, build_term, resolve_window
from .resolver import resolve_candidates, should_include_publication
from .signals import author_counts, compute_signals
from .store import PublicationStore
from .text_utils import parse_pub_date_string


def _sort_key(pub: Publication):
    return -(pub.year or 0), pub.title.lower(), pub.id


def _window_label(start: Optional[date], end: date) -> str:
    if start:
        return f"{start.isoformat()}-{end.isoformat()}"
    return f"through {end.isoformat()}"


def faculty_entry(person: Researcher, publications: List[Dict[str, Any]],
                  positive: Signals, negative: Signals,
                  counts: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "id": person.id,
        "name": person.name,
        "department": person.department,
        "orcid": person.orcid,
        "programs": list(person.programs),
        "publications": publications,
    }
    if counts is not None:
        entry["authorCounts"] = counts
    entry["signals"] = {"positive": positive.to_dict(), "negative": negative.to_dict()}
    return entry


def empty_entry(person: Researcher) -> Dict[str, Any]:
    return faculty_entry(person, [], Signals(), Signals())


def process_faculty(
        person: Researcher,
        settings: Settings,
        pubmed: PubMedClient,
        store: PublicationStore,
        today: date,
        sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """
    Harvest, resolve, persist and summarise one researcher, returning their
    entry for the output document.

    Automatic acceptance needs an author and affiliation match plus a
    publication date inside the window. Curator verdicts override it both
    ways: a true positive is always included, a false positive never is.
    Curated PMIDs that the search no longer returns are fetched separately so
    the output and the rejected-set signals stay complete.
    """
    start, end = resolve_window(person, settings, today)
    term = build_term(person, start, end, settings.use_initials)
    allowed = affiliation_terms(person, settings.default_affiliation)

    logger.step(f"Searching PubMed for {person.name} ({_window_label(start, end)})",
                source=LogSource.PUBMED, category=LogCategory.FACULTY)
    logger.debug(f"Term: {term}", source=LogSource.PUBMED, category=LogCategory.SEARCH)

    pmids = list(dict.fromkeys(pubmed.search(term)))
    logger.info(f"{len(pmids)} candidate(s) returned", source=LogSource.PUBMED, category=LogCategory.SEARCH)

    resolution = resolve_candidates(
        pmids, person, allowed, pubmed.article_xml,
        allow_initials=settings.use_initials,
        validate_affiliation=settings.validate_affiliation,
        accept_missing_affiliation=settings.accept_missing_affiliation,
        sleep=sleep,
    )
    logger.info(f"{len(resolution.accepted)}/{len(pmids)} candidate(s) matched author and affiliation",
                source=LogSource.PUBMED, category=LogCategory.MATCH)

    verdicts = store.get_verdicts(person.id)
    candidate_set = set(pmids)
    curated_missing = [pmid for pmid in verdicts if pmid not in candidate_set]
    if curated_missing:
        logger.info(f"Fetching {len(curated_missing)} curated record(s) missing from search",
                    source=LogSource.CURATION, category=LogCategory.FETCH)
        extra = resolve_candidates(
            curated_missing, person, allowed, pubmed.article_xml,
            allow_initials=settings.use_initials,
            validate_affiliation=False,
            sleep=sleep,
        )
        resolution.pub_dates.update(extra.pub_dates)
        resolution.coauthors.update(extra.coauthors)
        resolution.authorship.update(extra.authorship)

    summaries = pubmed.summaries(pmids + curated_missing)
    by_id = {str(s.get("uid")): s for s in summaries}

    included: List[Publication] = []
    authorship: Dict[str, Authorship] = {}
    for pmid in pmids + curated_missing:
        summary = by_id.get(pmid)
        if summary is None:
            continue

        pub_date = resolution.pub_dates.get(pmid) or parse_pub_date_string(summary.get("pubdate"))
        pub = summary_to_publication(summary, pub_date)
        verdict = verdicts.get(pmid)
        auto = pmid in resolution.accepted and should_include_publication(pub_date, pub.year, start, end)

        if verdict is Verdict.TRUE_POSITIVE or auto:
            store.upsert_publication(pub)
            store.upsert_faculty_publication(person.id, pmid, source="pubmed" if auto else "curation")
            if pmid in resolution.coauthors:
                store.replace_coauthors(person.id, pmid, resolution.coauthors[pmid])
            if verdict is Verdict.FALSE_POSITIVE:
                continue
            included.append(pub)
            if pmid in resolution.authorship:
                authorship[pmid] = resolution.authorship[pmid]
        elif verdict is Verdict.FALSE_POSITIVE:
            # keep the metadata and co-authors so the rejected-set signals can see them
            store.upsert_publication(pub)
            if pmid in resolution.coauthors:
                store.replace_coauthors(person.id, pmid, resolution.coauthors[pmid])

    included.sort(key=_sort_key)
    forced = sum(1 for p in included if verdicts.get(p.id) is Verdict.TRUE_POSITIVE)
    removed = sum(1 for pmid in resolution.accepted if verdicts.get(pmid) is Verdict.FALSE_POSITIVE)
    logger.success(
        f"{person.name}: {len(included)} publication(s) ({forced} curated in, {removed} curated out)",
        source=LogSource.STORE, category=LogCategory.SAVE,
    )

    coauthors = store.coauthors_for(person.id)
    positive = compute_signals(store.accepted_publications(person.id), coauthors)
    negative = compute_signals(store.rejected_publications(person.id), coauthors)
    counts = author_counts(included, authorship)
    positive.author_counts = counts

    publications = []
    for pub in included:
        item = pub.to_dict()
        if pub.id in authorship:
            item["authorship"] = authorship[pub.id].to_dict()
        publications.append(item)

    return faculty_entry(person, publications, positive, negative, counts)


def run_publications(
        settings: Settings,
        pubmed: Optional[PubMedClient] = None,
        store: Optional[PublicationStore] = None,
        today: Optional[date] = None,
        sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Run the publication pipeline over the whole roster, one researcher at a
    time, and write the output document.

    Returns 0 on success, 1 when at least one researcher failed, and 2 when
    the roster could not be read.
    """
    today = today or date.today()
    if settings.has_placeholder_email:
        logger.warn("NCBI_EMAIL is not set; a placeholder email may be rate-limited",
                    source=LogSource.PUBMED, category=LogCategory.PLAN)

    try:
        researchers = read_roster(settings.roster_path, settings.default_affiliation)
    except FILE_READ_ERRORS + CSV_ERRORS as e:
        logger.error(f"Error reading roster: {e}", source=LogSource.SYSTEM, category=LogCategory.ERROR)
        return 2
    logger.success(f"Roster loaded: {len(researchers)} researcher(s)", source=LogSource.SYSTEM, category=LogCategory.PLAN)

    own_store = store is None
    if store is None:
        store = PublicationStore(settings.db_path)
    if pubmed is None:
        pubmed = PubMedClient.from_settings(settings)

    try:
        store.seed_legacy_curation(read_legacy_curation(settings.legacy_curation_path))

        results: List[Dict[str, Any]] = []
        failed: List[str] = []
        for idx, person in enumerate(researchers):
            try:
                entry = process_faculty(person, settings, pubmed, store, today, sleep=sleep)
            except FACULTY_RUN_ERRORS as e:
                logger.error(f"Failed to harvest {person.name} ({person.id}): {e}",
                             source=LogSource.PUBMED, category=LogCategory.ERROR)
                entry = empty_entry(person)
                failed.append(person.id)
            results.append(entry)

            if idx < len(researchers) - 1 and settings.request_delay > 0:
                sleep(settings.request_delay)

        output = {"updated": today.isoformat(), "source": OUTPUT_SOURCE, "faculty": results}
        write_json_atomic(settings.output_path, output)
        logger.success(f"Wrote {settings.output_path}", source=LogSource.SYSTEM, category=LogCategory.SAVE)
    finally:
        if own_store:
            store.close()

    if failed:
        logger.error(f"{len(failed)} researcher(s) failed: {', '.join(failed)}",
                     source=LogSource.SYSTEM, category=LogCategory.ERROR)
        return 1
    return 0
