from __future__ import annotations

import csv
import json
import os
import tempfile
from typing import Any, Dict, List, Optional

from .config import DEFAULT_AFFILIATION, DEFAULT_ROSTER
from .exceptions import FILE_READ_ERRORS
from .models import NameVariant, Researcher
from .text_utils import parse_signature_terms, parse_start_date, to_slug


def _project_root() -> str:
    """
    Return the absolute path to the project root directory, inferred from the
    location of this module on disk.
    """
    return os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))


def _candidate_paths(primary: str) -> List[str]:
    """
    The path as given, then the same path relative to the project root.
    """
    candidates = [primary]
    if not os.path.isabs(primary):
        alt = os.path.join(_project_root(), primary)
        if alt not in candidates:
            candidates.append(alt)
    return candidates


def _read_roster_rows(path: str) -> List[Dict[str, str]]:
    candidates = _candidate_paths(path)
    for p in candidates:
        try:
            with open(p, newline="", encoding="utf-8-sig") as csvfile:
                reader = csv.DictReader(csvfile)
                rows = []
                for row in reader:
                    rows.append({
                        (k or "").strip(): (v or "").strip()
                        for k, v in row.items()
                        if k is not None
                    })
                return rows
        except FileNotFoundError:
            continue
    raise FileNotFoundError(f"Roster file not found (tried: {', '.join(candidates)})")


def read_roster(path: str = DEFAULT_ROSTER, department: str = DEFAULT_AFFILIATION) -> List[Researcher]:
    """
    Load the faculty roster. The sheet has one row per (person, program)
    pairing; rows for the same person are folded together, merging name
    variants, signature terms and programs and keeping the earliest start
    date. Rows without any name are skipped.
    """
    people: Dict[str, Dict[str, Any]] = {}

    for row in _read_roster_rows(path):
        fore = row.get("fore_name", "")
        last = row.get("last_name", "")
        if not fore and not last:
            continue

        id_base = row.get("person_id") or f"{fore}-{last}-{row.get('email', '')}"
        key = to_slug(id_base)
        if not key:
            continue

        person = people.get(key)
        if person is None:
            person = {
                "fore_name": fore,
                "last_name": last,
                "orcid": row.get("orcid", ""),
                "email": row.get("email", ""),
                "variants": [],
                "terms": [],
                "programs": [],
                "start_date": None,
            }
            people[key] = person

        variant = NameVariant(fore, last)
        if variant not in person["variants"]:
            person["variants"].append(variant)
        for term in parse_signature_terms(row.get("signature_terms")):
            if term not in person["terms"]:
                person["terms"].append(term)
        program = row.get("program", "")
        if program and program not in person["programs"]:
            person["programs"].append(program)
        if not person["orcid"] and row.get("orcid"):
            person["orcid"] = row["orcid"]

        start = parse_start_date(row.get("start date") or row.get("start_date"))
        if start and (person["start_date"] is None or start < person["start_date"]):
            person["start_date"] = start

    researchers = []
    for key, p in people.items():
        researchers.append(Researcher(
            id=key,
            name=f"{p['fore_name']} {p['last_name']}".strip(),
            fore_name=p["fore_name"],
            last_name=p["last_name"],
            name_variants=tuple(p["variants"]),
            orcid=p["orcid"],
            email=p["email"],
            signature_terms=tuple(p["terms"]),
            programs=tuple(p["programs"]),
            department=department,
            start_date=p["start_date"],
        ))
    return researchers


def read_legacy_curation(path: str) -> Optional[Dict[str, Dict[str, List[str]]]]:
    """
    Read the legacy per-researcher curation file:

        {"faculty-id": {"truePositives": ["123"], "falsePositives": ["456"]}}

    Returns None when the file is missing or unreadable. snake_case keys are
    accepted as well.
    """
    data = safe_read_json(path)
    if not isinstance(data, dict):
        return None

    out: Dict[str, Dict[str, List[str]]] = {}
    for faculty_id, entry in data.items():
        if not isinstance(entry, dict):
            continue
        tp = entry.get("truePositives") or entry.get("true_positives") or []
        fp = entry.get("falsePositives") or entry.get("false_positives") or []
        out[str(faculty_id)] = {
            "true_positive": [str(p).strip() for p in tp if str(p).strip()],
            "false_positive": [str(p).strip() for p in fp if str(p).strip()],
        }
    return out


def safe_read_json(path: str, default: Any = None) -> Any:
    """
    Safely read a JSON file and return its parsed contents, returning a default value on error.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FILE_READ_ERRORS:
        return default


def write_json_atomic(path: str, data: Any, indent: Optional[int] = 2) -> None:
    """
    Write JSON next to the destination and move it into place, so readers
    never see a half-written document. Errors propagate.
    """
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
