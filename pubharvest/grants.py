from __future__ import annotations

import time
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import GRANTS_OUTPUT_SOURCE, REPORTER_MAX_RETRIES, REPORTER_OFFSET_CAP, Settings
from .exceptions import CSV_ERRORS, FILE_READ_ERRORS, NETWORK_ERRORS, PARSE_ERRORS
from .http_utils import RetryingClient
from .io_utils import read_roster, write_json_atomic
from .log_utils import logger, LogCategory, LogSource
from .models import Grant, Researcher
from .text_utils import normalize_name

INCLUDE_FIELDS = [
    "ProjectNum",
    "CoreProjectNum",
    "ProjectTitle",
    "ProjectStartDate",
    "ProjectEndDate",
    "AwardAmount",
    "FiscalYear",
    "PrincipalInvestigators",
    "ProjectDetailUrl",
]


def build_pi_names(person: Researcher) -> List[Dict[str, str]]:
    first = (person.fore_name or "").strip()
    last = (person.last_name or "").strip()
    return [{"first_name": first, "last_name": last, "any_name": f"{first} {last}".strip()}]


def parse_project_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value)[:10]).date()
    except ValueError:
        return None


def filter_projects_by_start_date(projects: Sequence[Dict[str, Any]], start: Optional[date]) -> List[Dict[str, Any]]:
    """
    Drop projects that started before the researcher joined; projects with
    no readable start date are kept.
    """
    if start is None:
        return list(projects)
    kept = []
    for project in projects:
        project_start = parse_project_date(project.get("project_start_date"))
        if project_start is None or project_start >= start:
            kept.append(project)
    return kept


def _pi_matches(person: Researcher, pi: Dict[str, Any]) -> bool:
    last = normalize_name(pi.get("last_name"))
    first = normalize_name(pi.get("first_name"))
    person_last = normalize_name(person.last_name)
    person_first = normalize_name(person.fore_name)
    if last and first and person_last and person_first:
        return last == person_last and (first.startswith(person_first) or person_first.startswith(first))

    target = normalize_name(f"{person.fore_name} {person.last_name}")
    normalized = normalize_name(pi.get("full_name"))
    return bool(normalized and target) and (target in normalized or normalized in target)


def resolve_role(person: Researcher, principal_investigators: Any) -> str:
    """
    The researcher's role on a project: "Contact PI", "PI", or "Not listed"
    when no listed investigator is them.
    """
    if not isinstance(principal_investigators, list):
        return "Not listed"
    for pi in principal_investigators:
        if isinstance(pi, dict) and _pi_matches(person, pi):
            return "Contact PI" if pi.get("is_contact_pi") else "PI"
    return "Not listed"


def fetch_projects_for_person(
        client: RetryingClient,
        url: str,
        person: Researcher,
        fiscal_years: Sequence[int] = (),
        org_names: Sequence[str] = (),
        page_limit: int = 500,
        delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
) -> Tuple[List[Dict[str, Any]], str]:
    """
    Page through RePORTER project search results for one PI. Returns the
    project rows and the provider's shareable search URL.
    """
    criteria: Dict[str, Any] = {"pi_names": build_pi_names(person), "fiscal_years": list(fiscal_years)}
    if org_names:
        criteria["org_names"] = list(org_names)

    offset = 0
    total: Optional[int] = None
    search_url = ""
    results: List[Dict[str, Any]] = []

    while True:
        payload = {"criteria": criteria, "include_fields": INCLUDE_FIELDS, "offset": offset, "limit": page_limit}
        data = client.post_json(url, payload) or {}
        page = data.get("results") or data.get("projects") or data.get("data") or data.get("items") or []
        meta = data.get("meta") or {}

        if not search_url:
            search_url = meta.get("url") or meta.get("search_url") or ""
        if isinstance(meta.get("total"), int):
            total = meta["total"]
        elif isinstance(meta.get("total_count"), int):
            total = meta["total_count"]

        results.extend(page)
        if not page or len(page) < page_limit:
            break
        offset += page_limit
        if total is not None and offset >= total:
            break
        if offset >= REPORTER_OFFSET_CAP:
            logger.warn(f"Offset cap hit for {person.name}; truncating results",
                        source=LogSource.REPORTER, category=LogCategory.FETCH)
            break
        if delay > 0:
            sleep(delay)

    return results, search_url


def _number(value: Any, cast: Callable[[Any], Any]) -> Optional[Any]:
    if value is None or value == "":
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


def map_grants(person: Researcher, projects: Sequence[Dict[str, Any]]) -> List[Grant]:
    """
    Convert project rows to grants, de-duplicated on (project number, fiscal
    year) and ordered by start date, newest first.
    """
    seen = set()
    grants: List[Grant] = []
    for project in projects:
        grant = Grant(
            id=str(project.get("project_num") or project.get("core_project_num") or project.get("appl_id") or ""),
            title=project.get("project_title") or "",
            role=resolve_role(person, project.get("principal_investigators")),
            amount=_number(project.get("award_amount"), float),
            start_date=str(project.get("project_start_date") or "")[:10],
            end_date=str(project.get("project_end_date") or "")[:10],
            fiscal_year=_number(project.get("fiscal_year"), int),
            url=project.get("project_detail_url") or "",
            core_project_num=project.get("core_project_num") or "",
        )
        key = (grant.id, grant.fiscal_year)
        if not grant.id or key in seen:
            continue
        seen.add(key)
        grants.append(grant)
    grants.sort(key=lambda g: g.start_date, reverse=True)
    return grants


def run_grants(
        settings: Settings,
        client: Optional[RetryingClient] = None,
        today: Optional[date] = None,
        sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Harvest funding awards for every researcher and write the grants
    document. Same exit codes as the publication pipeline.
    """
    today = today or date.today()
    try:
        researchers = read_roster(settings.roster_path, settings.default_affiliation)
    except FILE_READ_ERRORS + CSV_ERRORS as e:
        logger.error(f"Error reading roster: {e}", source=LogSource.SYSTEM, category=LogCategory.ERROR)
        return 2

    client = client or RetryingClient(max_attempts=REPORTER_MAX_RETRIES, source=LogSource.REPORTER, sleep=sleep)
    results = []
    failed = []
    for idx, person in enumerate(researchers):
        org_names = list(settings.reporter_org_names) or [settings.default_affiliation]
        logger.step(f"Searching NIH RePORTER for {person.name}", source=LogSource.REPORTER, category=LogCategory.FACULTY)
        entry = {"id": person.id, "name": person.name, "department": person.department,
                 "programs": list(person.programs), "reporterUrl": "", "grants": []}
        try:
            projects, search_url = fetch_projects_for_person(
                client, settings.reporter_url, person,
                fiscal_years=settings.reporter_fiscal_years,
                org_names=org_names,
                page_limit=settings.reporter_page_limit,
                delay=settings.reporter_delay,
                sleep=sleep,
            )
            grants = map_grants(person, filter_projects_by_start_date(projects, person.start_date))
            entry["reporterUrl"] = search_url
            entry["grants"] = [g.to_dict() for g in grants]
            logger.success(f"{person.name}: {len(grants)} grant(s)", source=LogSource.REPORTER, category=LogCategory.SAVE)
        except NETWORK_ERRORS + PARSE_ERRORS + (AttributeError,) as e:
            logger.error(f"Failed to fetch grants for {person.name}: {e}",
                         source=LogSource.REPORTER, category=LogCategory.ERROR)
            failed.append(person.id)
        results.append(entry)

        if idx < len(researchers) - 1 and settings.reporter_delay > 0:
            sleep(settings.reporter_delay)

    write_json_atomic(settings.grants_output_path,
                      {"updated": today.isoformat(), "source": GRANTS_OUTPUT_SOURCE, "faculty": results})
    logger.success(f"Wrote {settings.grants_output_path}", source=LogSource.SYSTEM, category=LogCategory.SAVE)
    return 1 if failed else 0
