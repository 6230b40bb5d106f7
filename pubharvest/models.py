from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple


@dataclass(frozen=True)
class NameVariant:
    """
    One spelling of a researcher's name as it appears on the roster.
    """
    fore_name: str
    last_name: str


@dataclass(frozen=True)
class Researcher:
    """
    A faculty member to harvest publications for. Built once per run from the
    roster and never modified afterwards; every program row for the same
    person is folded into one Researcher.
    """
    id: str
    name: str
    fore_name: str
    last_name: str
    name_variants: Tuple[NameVariant, ...] = ()
    orcid: str = ""
    email: str = ""
    signature_terms: Tuple[str, ...] = ()
    programs: Tuple[str, ...] = ()
    department: str = ""
    start_date: Optional[date] = None

    @property
    def variants(self) -> Tuple[NameVariant, ...]:
        if self.name_variants:
            return self.name_variants
        return (NameVariant(self.fore_name, self.last_name),)


@dataclass
class Publication:
    """
    Canonical metadata for one PubMed record, keyed by PMID.
    """
    id: str
    title: str
    journal: str
    year: Optional[int] = None
    doi: str = ""
    url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "journal": self.journal,
            "year": self.year,
            "doi": self.doi,
            "url": self.url,
        }


@dataclass(frozen=True)
class Authorship:
    """
    Where the researcher sits in a record's author list.
    """
    position: int
    total: int

    @property
    def is_first(self) -> bool:
        return self.position == 0

    @property
    def is_last(self) -> bool:
        return self.position == self.total - 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "total": self.total,
            "isFirst": self.is_first,
            "isLast": self.is_last,
        }


class Verdict(str, Enum):
    """
    Human curation decision for one (researcher, record) pair.
    """
    TRUE_POSITIVE = "true_positive"
    FALSE_POSITIVE = "false_positive"


@dataclass
class ResolutionResult:
    """
    What the identity resolver learned about a batch of candidates.
    """
    accepted: Set[str] = field(default_factory=set)
    pub_dates: Dict[str, date] = field(default_factory=dict)
    coauthors: Dict[str, List[str]] = field(default_factory=dict)
    authorship: Dict[str, Authorship] = field(default_factory=dict)
    missing_affiliation: int = 0


@dataclass
class RankedItem:
    label: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "count": self.count}


@dataclass
class Signals:
    """
    Summary statistics over one set of records (accepted or rejected).
    """
    count: int = 0
    year_min: Optional[int] = None
    year_max: Optional[int] = None
    years: Dict[int, int] = field(default_factory=dict)
    top_journals: List[RankedItem] = field(default_factory=list)
    top_keywords: List[RankedItem] = field(default_factory=list)
    top_coauthors: List[RankedItem] = field(default_factory=list)
    author_counts: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "count": self.count,
            "yearMin": self.year_min,
            "yearMax": self.year_max,
            "years": [{"year": y, "count": c} for y, c in sorted(self.years.items())],
            "topJournals": [item.to_dict() for item in self.top_journals],
            "topKeywords": [item.to_dict() for item in self.top_keywords],
            "topCoauthors": [item.to_dict() for item in self.top_coauthors],
        }
        if self.author_counts is not None:
            out["authorCounts"] = dict(self.author_counts)
        return out


@dataclass
class Grant:
    """
    One NIH RePORTER project row attributed to a researcher.
    """
    id: str
    title: str
    role: str
    amount: Optional[float] = None
    start_date: str = ""
    end_date: str = ""
    fiscal_year: Optional[int] = None
    url: str = ""
    core_project_num: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "role": self.role,
            "amount": self.amount,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "fiscalYear": self.fiscal_year,
            "url": self.url,
            "coreProjectNum": self.core_project_num,
        }
