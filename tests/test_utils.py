from datetime import date

from pubharvest.text_utils import (
    build_date_from_parts,
    chunked,
    normalize_affiliation,
    normalize_key,
    normalize_name,
    parse_pub_date_string,
    parse_signature_terms,
    parse_start_date,
    to_slug,
)


# ===== NORMALIZATION =====

def test_normalize_name_letters_only():
    assert normalize_name("O'Brien-Smith") == "obriensmith"
    assert normalize_name("Müller") == "muller"
    assert normalize_name(None) == ""


def test_normalize_affiliation_keeps_digits():
    assert normalize_affiliation("University of Minnesota, Dept. of Medicine") == "universityofminnesotadeptofmedicine"
    assert normalize_affiliation("MN 55455") == "mn55455"


def test_normalize_key_keeps_word_boundaries():
    assert normalize_key("Journal of clinical medicine.") == "journal of clinical medicine"
    assert normalize_key("J. Am. Soc. Nephrol.") == "j am soc nephrol"


def test_to_slug():
    assert to_slug("Erin-Larson-elarson@umn.edu") == "erin-larson-elarson-umn-edu"
    assert to_slug("  ") == ""


# ===== ROSTER FIELDS =====

def test_parse_signature_terms():
    assert parse_signature_terms("Dept of Medicine| elarson@umn.edu ||") == ["Dept of Medicine", "elarson@umn.edu"]
    assert parse_signature_terms(None) == []


def test_parse_start_date():
    assert parse_start_date("1/1/2020") == date(2020, 1, 1)
    assert parse_start_date("12/31/2019") == date(2019, 12, 31)
    assert parse_start_date("2020-01-01") is None
    assert parse_start_date("2/30/2020") is None
    assert parse_start_date("") is None


# ===== PUBLICATION DATES =====

def test_build_date_from_parts():
    assert build_date_from_parts("2021", "Mar", "4") == date(2021, 3, 4)
    assert build_date_from_parts("2021", "03") == date(2021, 3, 1)
    assert build_date_from_parts("2021", "Feb", "30") == date(2021, 2, 1)
    assert build_date_from_parts("") is None


def test_parse_pub_date_string():
    assert parse_pub_date_string("2021 Mar 15") == date(2021, 3, 15)
    assert parse_pub_date_string("2019 Nov-Dec") == date(2019, 11, 1)
    assert parse_pub_date_string("2020 Spring") == date(2020, 1, 1)
    assert parse_pub_date_string("Winter") is None


def test_chunked():
    assert list(chunked(["a", "b", "c"], 2)) == [["a", "b"], ["c"]]
    assert list(chunked([], 100)) == []
