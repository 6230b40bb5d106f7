from __future__ import annotations

import argparse
import os
from typing import List, Optional

from pubharvest.config import Settings
from pubharvest.exceptions import STORE_ERRORS
from pubharvest.grants import run_grants
from pubharvest.log_utils import logger, LogCategory, LogSource
from pubharvest.models import Verdict
from pubharvest.pipeline import run_publications
from pubharvest.store import PublicationStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pubharvest",
        description="Harvest faculty publications from PubMed and funding awards from NIH RePORTER.",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("publications", help="Harvest, curate and summarise publications (default)")
    sub.add_parser("grants", help="Harvest funding awards from NIH RePORTER")

    curate = sub.add_parser("curate", help="Record a curation verdict for one researcher and PMID")
    curate.add_argument("faculty_id")
    curate.add_argument("pmid")
    curate.add_argument("verdict", choices=[v.value for v in Verdict])
    curate.add_argument("--reason", default="", help="Free-text note stored with the verdict")
    return parser


def curate(settings: Settings, faculty_id: str, pmid: str, verdict: str, reason: str = "") -> int:
    """
    Write one verdict straight to the store; the next publications run picks
    it up.
    """
    try:
        with PublicationStore(settings.db_path) as store:
            store.set_verdict(faculty_id, pmid, Verdict(verdict), reason)
    except STORE_ERRORS as e:
        logger.error(f"Could not record verdict: {e}", source=LogSource.CURATION, category=LogCategory.ERROR)
        return 2
    logger.success(f"{faculty_id}/{pmid} marked {verdict}", source=LogSource.CURATION, category=LogCategory.SAVE)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "publications"
    settings = Settings.from_env()

    log_dir = os.path.dirname(os.path.abspath(settings.db_path))
    logger.set_log_file(os.path.join(log_dir, "run.log"))
    logger.step(f"pubharvest {command} started", source=LogSource.SYSTEM, category=LogCategory.PLAN)

    try:
        if command == "grants":
            code = run_grants(settings)
        elif command == "curate":
            code = curate(settings, args.faculty_id, args.pmid, args.verdict, args.reason)
        else:
            code = run_publications(settings)
        logger.info(f"Log file: {logger.log_file_path or 'n/a'}", source=LogSource.SYSTEM, category=LogCategory.PLAN)
    finally:
        logger.close()
    return code


if __name__ == "__main__":
    raise SystemExit(main())
