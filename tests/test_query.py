from datetime import date

from pubharvest.config import Settings
from pubharvest.models import NameVariant
from pubharvest.query_builder import (
    affiliation_terms,
    build_author_clause,
    build_date_clause,
    build_term,
    resolve_window,
)
from tests.fixtures import make_researcher

TODAY = date(2024, 6, 1)


# ===== AUTHOR CLAUSE =====

def test_term_with_initials_and_date_window():
    """
    Without an ORCID, initials matching adds a last-name-plus-initial clause.
    """
    person = make_researcher()
    term = build_term(person, date(2020, 1, 1), TODAY, use_initials=True)
    assert term == '(Larson Erin[fau] OR Larson E[au]) AND ("2020/01/01"[pdat] : "2024/06/01"[pdat])'


def test_initials_disabled_only_full_names():
    person = make_researcher()
    term = build_term(person, date(2020, 1, 1), TODAY, use_initials=False)
    assert "[au]" not in term
    assert term.startswith("Larson Erin[fau] AND ")


def test_orcid_suppresses_initials():
    """
    An ORCID replaces the risky initials clause even when initials are on.
    """
    person = make_researcher(orcid="0000-0002-1825-0097")
    clause = build_author_clause(person.variants, person.orcid, include_initials=False)
    term = build_term(person, None, None, use_initials=True)
    assert clause == "(Larson Erin[fau] OR 0000-0002-1825-0097[auid])"
    assert term == clause


def test_variants_are_deduplicated_in_order():
    variants = [NameVariant("Erin", "Larson"), NameVariant("Erin", "Larson"), NameVariant("Erin W", "Larson")]
    clause = build_author_clause(variants, include_initials=True)
    assert clause == "(Larson Erin[fau] OR Larson E[au] OR Larson Erin W[fau])"


def test_single_clause_is_not_parenthesised():
    assert build_author_clause([NameVariant("Erin", "Larson")], include_initials=False) == "Larson Erin[fau]"


def test_variant_without_last_name_is_skipped():
    assert build_author_clause([NameVariant("Erin", "")]) == ""


# ===== DATE CLAUSE =====

def test_single_day_window():
    d = date(2020, 1, 1)
    assert build_date_clause(d, d) == "2020/01/01[pdat]"


def test_no_start_means_no_date_restriction():
    assert build_date_clause(None, TODAY) == ""
    person = make_researcher(start=None)
    assert build_term(person, None, TODAY, use_initials=False) == "Larson Erin[fau]"


# ===== WINDOW RESOLUTION =====

def test_window_defaults_to_start_date_through_today():
    person = make_researcher(start=date(2019, 9, 1))
    assert resolve_window(person, Settings(), TODAY) == (date(2019, 9, 1), TODAY)


def test_window_explicit_year_override():
    person = make_researcher(start=date(2019, 9, 1))
    settings = Settings(year_start=2022, year_end=2023)
    assert resolve_window(person, settings, TODAY) == (date(2022, 1, 1), date(2023, 12, 31))


def test_window_missing_start_covers_whole_tenure():
    person = make_researcher(start=None)
    start, end = resolve_window(person, Settings(), TODAY)
    assert start is None
    assert end == TODAY


# ===== AFFILIATION TERMS =====

def test_affiliation_terms_skip_emails_and_add_default_once():
    person = make_researcher(terms=("Department of Medicine", "elarson@umn.edu", "university of minnesota"))
    terms = affiliation_terms(person, "University of Minnesota")
    assert terms == ["Department of Medicine", "university of minnesota"]

    person = make_researcher(terms=("Masonic Cancer Center",))
    assert affiliation_terms(person, "University of Minnesota") == ["Masonic Cancer Center", "University of Minnesota"]
