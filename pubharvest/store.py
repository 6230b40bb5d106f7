"""
Relational store for harvested publications.

Every write is an upsert keyed by primary key, so re-running after a crash
needs no cleanup. Curation verdicts are written by operators only
(`set_verdict`, via `main.py curate`) and by the one-time legacy seed.
"""
from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .config import SEED_REASON
from .log_utils import logger, LogCategory, LogSource
from .models import Publication, Verdict

DDL = """
CREATE TABLE IF NOT EXISTS publications (
    pmid TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    journal TEXT,
    year INTEGER,
    doi TEXT,
    url TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS faculty_publications (
    faculty_id TEXT NOT NULL,
    pmid TEXT NOT NULL,
    first_seen_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL,
    source TEXT,
    PRIMARY KEY (faculty_id, pmid)
);
CREATE INDEX IF NOT EXISTS idx_faculty_publications_pmid ON faculty_publications(pmid);

CREATE TABLE IF NOT EXISTS curation (
    faculty_id TEXT NOT NULL,
    pmid TEXT NOT NULL,
    verdict TEXT NOT NULL CHECK (verdict IN ('true_positive', 'false_positive')),
    reason TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (faculty_id, pmid)
);

CREATE TABLE IF NOT EXISTS faculty_publication_coauthors (
    faculty_id TEXT NOT NULL,
    pmid TEXT NOT NULL,
    name TEXT NOT NULL,
    PRIMARY KEY (faculty_id, pmid, name)
);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _row_to_publication(row: sqlite3.Row) -> Publication:
    return Publication(
        id=row["pmid"],
        title=row["title"],
        journal=row["journal"] or "",
        year=row["year"],
        doi=row["doi"] or "",
        url=row["url"] or "",
    )


class PublicationStore:
    """
    SQLite-backed store for publications, researcher associations, co-authors
    and curation verdicts.
    """

    def __init__(self, path: str, clock: Callable[[], str] = utc_now):
        self.path = path
        if path != ":memory:":
            parent = os.path.dirname(os.path.abspath(path))
            os.makedirs(parent, exist_ok=True)
        self._conn = sqlite3.connect(path)
        self._conn.row_factory = sqlite3.Row
        self._clock = clock
        with self._conn:
            self._conn.executescript(DDL)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "PublicationStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ----- publications and associations -----

    def upsert_publication(self, pub: Publication) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO publications (pmid, title, journal, year, doi, url, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(pmid) DO UPDATE SET
                    title = excluded.title,
                    journal = excluded.journal,
                    year = excluded.year,
                    doi = excluded.doi,
                    url = excluded.url,
                    updated_at = excluded.updated_at
                """,
                (pub.id, pub.title, pub.journal, pub.year, pub.doi, pub.url, self._clock()),
            )

    def upsert_faculty_publication(self, faculty_id: str, pmid: str, source: str = "pubmed") -> None:
        """
        Record that a researcher is linked to a publication. A repeat sighting
        only moves last_seen_at forward.
        """
        now = self._clock()
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO faculty_publications (faculty_id, pmid, first_seen_at, last_seen_at, source)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(faculty_id, pmid) DO UPDATE SET
                    last_seen_at = excluded.last_seen_at
                """,
                (faculty_id, pmid, now, now, source),
            )

    def replace_coauthors(self, faculty_id: str, pmid: str, names: Iterable[str]) -> None:
        unique = list(dict.fromkeys(n.strip() for n in names if n and n.strip()))
        with self._conn:
            self._conn.execute(
                "DELETE FROM faculty_publication_coauthors WHERE faculty_id = ? AND pmid = ?",
                (faculty_id, pmid),
            )
            self._conn.executemany(
                "INSERT INTO faculty_publication_coauthors (faculty_id, pmid, name) VALUES (?, ?, ?)",
                [(faculty_id, pmid, name) for name in unique],
            )

    def association(self, faculty_id: str, pmid: str) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            "SELECT * FROM faculty_publications WHERE faculty_id = ? AND pmid = ?",
            (faculty_id, pmid),
        ).fetchone()

    # ----- reads used for output and signals -----

    def accepted_publications(self, faculty_id: str) -> List[Publication]:
        """
        Publications linked to the researcher, minus those a curator marked
        as false positives.
        """
        rows = self._conn.execute(
            """
            SELECT p.* FROM faculty_publications fp
            JOIN publications p ON p.pmid = fp.pmid
            LEFT JOIN curation c ON c.faculty_id = fp.faculty_id AND c.pmid = fp.pmid
            WHERE fp.faculty_id = ?
              AND (c.verdict IS NULL OR c.verdict != 'false_positive')
            ORDER BY p.year DESC, p.title, p.pmid
            """,
            (faculty_id,),
        )
        return [_row_to_publication(r) for r in rows]

    def rejected_publications(self, faculty_id: str) -> List[Publication]:
        """
        Publications a curator confirmed as false positives for the researcher.
        """
        rows = self._conn.execute(
            """
            SELECT p.* FROM curation c
            JOIN publications p ON p.pmid = c.pmid
            WHERE c.faculty_id = ? AND c.verdict = 'false_positive'
            ORDER BY p.year DESC, p.title, p.pmid
            """,
            (faculty_id,),
        )
        return [_row_to_publication(r) for r in rows]

    def coauthors_for(self, faculty_id: str) -> Dict[str, List[str]]:
        rows = self._conn.execute(
            "SELECT pmid, name FROM faculty_publication_coauthors WHERE faculty_id = ? ORDER BY pmid, name",
            (faculty_id,),
        )
        out: Dict[str, List[str]] = {}
        for r in rows:
            out.setdefault(r["pmid"], []).append(r["name"])
        return out

    # ----- curation -----

    def set_verdict(self, faculty_id: str, pmid: str, verdict: Verdict, reason: str = "") -> None:
        """
        Record a curator's verdict, replacing any earlier one for the pair.
        """
        verdict = Verdict(verdict)
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO curation (faculty_id, pmid, verdict, reason, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(faculty_id, pmid) DO UPDATE SET
                    verdict = excluded.verdict,
                    reason = excluded.reason,
                    updated_at = excluded.updated_at
                """,
                (faculty_id, str(pmid), verdict.value, reason, self._clock()),
            )

    def get_verdicts(self, faculty_id: str) -> Dict[str, Verdict]:
        rows = self._conn.execute(
            "SELECT pmid, verdict FROM curation WHERE faculty_id = ? ORDER BY pmid",
            (faculty_id,),
        )
        return {r["pmid"]: Verdict(r["verdict"]) for r in rows}

    def curation_count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM curation").fetchone()[0]

    def seed_legacy_curation(self, legacy: Optional[Mapping[str, Mapping[str, Iterable[str]]]]) -> int:
        """
        Import the legacy true/false-positive lists once. Does nothing when
        there is no legacy data or when any verdict already exists, so later
        manual edits are never overwritten. Returns the number of rows added.
        """
        if not legacy:
            return 0
        if self.curation_count() > 0:
            logger.info("Curation table already populated; legacy seed skipped",
                        source=LogSource.CURATION, category=LogCategory.SKIP)
            return 0

        now = self._clock()
        rows = []
        for faculty_id, lists in legacy.items():
            # a pmid listed as both keeps the false-positive verdict
            for verdict in (Verdict.TRUE_POSITIVE, Verdict.FALSE_POSITIVE):
                for pmid in lists.get(verdict.value) or []:
                    rows.append((faculty_id, str(pmid), verdict.value, SEED_REASON, now))

        with self._conn:
            self._conn.executemany(
                """
                INSERT INTO curation (faculty_id, pmid, verdict, reason, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(faculty_id, pmid) DO UPDATE SET
                    verdict = excluded.verdict,
                    reason = excluded.reason,
                    updated_at = excluded.updated_at
                """,
                rows,
            )
        logger.success(f"Seeded {len(rows)} legacy curation row(s)", source=LogSource.CURATION, category=LogCategory.SAVE)
        return len(rows)
