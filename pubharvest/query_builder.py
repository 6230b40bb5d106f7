from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence, Tuple

from .config import Settings
from .models import NameVariant, Researcher
from .text_utils import is_email


def format_pdat(d: date) -> str:
    return f"{d.year:04d}/{d.month:02d}/{d.day:02d}"


def build_author_clause(variants: Sequence[NameVariant], orcid: str = "", include_initials: bool = True) -> str:
    """
    OR together one full-name clause per variant, optionally one
    last-name-plus-first-initial clause per variant, and the ORCID clause.
    Duplicates are dropped, order is preserved.
    """
    clauses: List[str] = []

    for variant in variants:
        fore = (variant.fore_name or "").strip()
        last = (variant.last_name or "").strip()
        if not last:
            continue
        if fore:
            clauses.append(f"{last} {fore}[fau]")
            if include_initials:
                clauses.append(f"{last} {fore[0]}[au]")

    if orcid:
        clauses.append(f"{orcid.strip()}[auid]")

    unique = list(dict.fromkeys(clauses))
    if not unique:
        return ""
    if len(unique) == 1:
        return unique[0]
    return f"({' OR '.join(unique)})"


def build_date_clause(start: Optional[date], end: Optional[date]) -> str:
    """
    Publication-date range clause. A single day is used when the window has
    no end or collapses to one day; no start means no date restriction.
    """
    if start is None:
        return ""
    if end is None or end == start:
        return f"{format_pdat(start)}[pdat]"
    return f'("{format_pdat(start)}"[pdat] : "{format_pdat(end)}"[pdat])'


def affiliation_terms(person: Researcher, default_affiliation: str) -> List[str]:
    """
    Institution/department terms the matched author's affiliation must
    mention: the roster's non-email signature terms plus the global default.
    """
    terms = [t for t in person.signature_terms if not is_email(t)]
    if default_affiliation and not any(t.lower() == default_affiliation.lower() for t in terms):
        terms.append(default_affiliation)
    return terms


def resolve_window(person: Researcher, settings: Settings, today: date) -> Tuple[Optional[date], date]:
    """
    Date window for a researcher: the explicit year override when configured,
    otherwise their start date through today. A missing start date leaves the
    window open so the whole tenure is searched.
    """
    if settings.year_start is not None:
        start: Optional[date] = date(settings.year_start, 1, 1)
    else:
        start = person.start_date
    return start, settings.end_date(today)


def build_term(person: Researcher, start: Optional[date], end: Optional[date], use_initials: bool = True) -> str:
    """
    Full ESearch expression for a researcher. Initials are only searched when
    enabled and no ORCID is on file; precision comes later from the resolver.
    """
    include_initials = use_initials and not person.orcid
    author = build_author_clause(person.variants, person.orcid, include_initials)
    when = build_date_clause(start, end)
    return " AND ".join(part for part in (author, when) if part)
