from __future__ import annotations

import re
from datetime import date
from typing import Any, Iterable, Iterator, List, Optional, Sequence, TypeVar

from unidecode import unidecode

from .config import KEYWORD_MIN_LENGTH, KEYWORD_STOPWORDS
from .exceptions import DECODE_ERRORS, NUMERIC_ERRORS, PARSE_ERRORS

T = TypeVar("T")

__all__ = [
    "strip_accents",
    "to_slug",
    "normalize_name",
    "normalize_affiliation",
    "normalize_key",
    "normalize_person_name",
    "is_email",
    "parse_signature_terms",
    "parse_start_date",
    "parse_month_value",
    "parse_year_value",
    "build_date_from_parts",
    "parse_pub_date_string",
    "extract_keywords",
    "chunked",
]

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


def strip_accents(s: Any) -> str:
    """
    Transliterate a string to ASCII so "Müller" and "Muller" compare equal.
    """
    if s is None:
        return ""
    try:
        return unidecode(str(s))
    except PARSE_ERRORS + DECODE_ERRORS:
        return str(s)


def to_slug(value: Any) -> str:
    """
    Turn an arbitrary identifier into a lowercase, dash-separated slug.
    """
    s = strip_accents(value).lower()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


def normalize_name(value: Any) -> str:
    """
    Lowercase a name part and keep letters only ("O'Brien-Smith" -> "obriensmith").
    """
    return re.sub(r"[^a-z]", "", strip_accents(value).lower())


def normalize_affiliation(value: Any) -> str:
    """
    Lowercase an affiliation string and keep letters and digits only:
    "University of Minnesota, Dept. of Medicine" becomes
    "universityofminnesotadeptofmedicine".
    """
    return re.sub(r"[^a-z0-9]", "", strip_accents(value).lower())


def normalize_key(value: Any) -> str:
    """
    Grouping key for venue names: case and punctuation are ignored, word
    boundaries are kept.
    """
    s = re.sub(r"[^a-z0-9]+", " ", strip_accents(value).lower())
    return " ".join(s.split())


def normalize_person_name(value: Any) -> str:
    """
    Grouping key for co-author display names.
    """
    s = re.sub(r"[^a-z0-9\s]", " ", strip_accents(value).lower())
    return " ".join(s.split())


def is_email(value: Any) -> bool:
    return "@" in str(value or "")


def parse_signature_terms(value: Any) -> List[str]:
    """
    Split the pipe-delimited signature_terms roster column.
    """
    return [t.strip() for t in str(value or "").split("|") if t.strip()]


def parse_start_date(value: Any) -> Optional[date]:
    """
    Parse a roster start date written as M/D/YYYY; anything else is None.
    """
    if not value:
        return None
    parts = str(value).strip().split("/")
    if len(parts) != 3:
        return None
    try:
        month, day, year = (int(p) for p in parts)
    except NUMERIC_ERRORS:
        return None
    if not month or not day or not year:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_month_value(value: Any) -> Optional[int]:
    """
    Return a month number (1-12) from "3", "03", "Mar" or "March".
    """
    if not value:
        return None
    token = str(value).strip().lower()
    if token.isdigit():
        month = int(token)
        return month if 1 <= month <= 12 else None
    return _MONTHS.get(token[:3])


def parse_year_value(value: Any) -> Optional[int]:
    if not value:
        return None
    m = re.search(r"\d{4}", str(value))
    return int(m.group(0)) if m else None


def build_date_from_parts(year_value: Any, month_value: Any = None, day_value: Any = None) -> Optional[date]:
    """
    Build a date from separate year/month/day strings; a missing or unreadable
    month or day defaults to 1.
    """
    year = parse_year_value(year_value)
    if not year:
        return None
    month = parse_month_value(month_value) or 1
    try:
        day = int(str(day_value).strip()) if day_value else 1
    except NUMERIC_ERRORS:
        day = 1
    if not 1 <= day <= 31:
        day = 1
    try:
        return date(year, month, day)
    except ValueError:
        # e.g. Feb 30
        return date(year, month, 1)


def parse_pub_date_string(value: Any) -> Optional[date]:
    """
    Parse free-text dates such as "2021 Mar 15", "2019 Nov-Dec" or
    "2020 Spring". The first four-digit token is the year, the first month
    after it the month, and the first plausible day after that the day.
    """
    if not value:
        return None
    cleaned = re.sub(r"[;,]", " ", str(value)).strip()
    tokens = [t for t in re.split(r"[\s\-/]+", cleaned) if t]

    year = None
    year_idx = -1
    for i, tok in enumerate(tokens):
        if re.fullmatch(r"\d{4}", tok):
            year = int(tok)
            year_idx = i
            break
    if year is None:
        return None

    month = 1
    month_idx = -1
    for i in range(year_idx + 1, len(tokens)):
        m = parse_month_value(tokens[i])
        if m is not None:
            month = m
            month_idx = i
            break

    day = 1
    if month_idx >= 0:
        for tok in tokens[month_idx + 1:]:
            if re.fullmatch(r"\d{1,2}", tok) and 1 <= int(tok) <= 31:
                day = int(tok)
                break
    try:
        return date(year, month, day)
    except ValueError:
        return date(year, month, 1)


def extract_keywords(title: Any, stopwords: Iterable[str] = KEYWORD_STOPWORDS,
                     min_length: int = KEYWORD_MIN_LENGTH) -> List[str]:
    """
    Tokenize a title into candidate keywords: lowercase, collapse
    non-alphanumerics to spaces, drop short tokens and stopwords.
    """
    stop = stopwords if isinstance(stopwords, (set, frozenset)) else set(stopwords)
    text = re.sub(r"[^a-z0-9]+", " ", strip_accents(title).lower())
    return [tok for tok in text.split() if len(tok) >= min_length and tok not in stop]


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    for i in range(0, len(items), size):
        yield list(items[i:i + size])
