from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

ESEARCH_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esearch.fcgi"
ESUMMARY_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi"
EFETCH_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/efetch.fcgi"
PUBMED_ARTICLE_URL = "https://pubmed.ncbi.nlm.nih.gov"
REPORTER_API_URL = "https://api.reporter.nih.gov/v2/projects/search"

OUTPUT_SOURCE = "PubMed E-utilities"
GRANTS_OUTPUT_SOURCE = "NIH RePORTER API"

DEFAULT_ROSTER = "data/faculty.csv"
DEFAULT_OUTPUT = "public/data/publications.json"
DEFAULT_GRANTS_OUTPUT = "public/data/grants.json"
DEFAULT_DB = "data/publications.db"
DEFAULT_LEGACY_CURATION = "data/curation.json"
DEFAULT_AFFILIATION = "University of Minnesota"
DEFAULT_EMAIL = "someone@example.com"
DEFAULT_TOOL = "pubharvest"

# HTTP request configuration
HTTP_TIMEOUT_DEFAULT = 30.0
HTTP_BACKOFF_INITIAL = 0.8  # seconds, doubled every attempt
HTTP_JITTER = 0.25          # delay is multiplied by a factor in [1 - j, 1 + j]
HTTP_MAX_RETRIES = 8        # total attempts for E-utilities
REPORTER_MAX_RETRIES = 6    # total attempts for RePORTER

# statuses that mean "try again later"
HTTP_RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

# ESearch returns at most this many candidates per researcher
SEARCH_RETMAX = 500
# EFetch and ESummary batch sizes respect provider limits
DETAIL_BATCH_SIZE = 100
SUMMARY_BATCH_SIZE = 200

# pause between EFetch batches and between researchers
DETAIL_BATCH_DELAY = 0.12
REQUEST_DELAY_BETWEEN_FACULTY = 0.35

# RePORTER paging
REPORTER_REQUEST_DELAY = 1.1
REPORTER_PAGE_LIMIT = 500
REPORTER_OFFSET_CAP = 15000

# how many entries each ranked signal list keeps
SIGNAL_TOP_N = 10

# minimum token length kept by keyword extraction
KEYWORD_MIN_LENGTH = 3

# fixed stopword list for title keywords: English function words plus the
# study-design boilerplate that shows up in nearly every biomedical title
KEYWORD_STOPWORDS = frozenset({
    "about", "across", "after", "against", "all", "among", "and", "are", "based",
    "before", "being", "between", "both", "but", "can", "does", "during", "each",
    "for", "from", "had", "has", "have", "how", "into", "its", "more", "new",
    "non", "not", "one", "only", "other", "our", "over", "than", "that", "the",
    "their", "these", "this", "those", "through", "two", "under", "use", "used",
    "using", "via", "was", "were", "what", "when", "which", "while", "who",
    "why", "will", "with", "within", "without",
    "analysis", "approach", "assessment", "association", "associated", "case",
    "clinical", "cohort", "data", "effect", "effects", "evaluation", "evidence",
    "factors", "follow", "findings", "impact", "long", "outcome", "outcomes",
    "patient", "patients", "report", "results", "review", "risk", "role",
    "short", "studies", "study", "systematic", "term", "trial", "trials",
})

SEED_REASON = "legacy-seed"


def _env_flag(env: Mapping[str, str], name: str, default: bool = True) -> bool:
    """
    Read a boolean toggle the way the deployment scripts set them: anything
    other than "false"/"0"/"no"/"off" keeps the default-on behaviour.
    """
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


def _env_int(env: Mapping[str, str], *names: str) -> Optional[int]:
    for name in names:
        raw = (env.get(name) or "").strip()
        if raw:
            try:
                return int(raw)
            except ValueError:
                continue
    return None


def _env_list(env: Mapping[str, str], name: str) -> Tuple[str, ...]:
    raw = env.get(name) or ""
    parts = raw.replace(",", "|").split("|")
    return tuple(p.strip() for p in parts if p.strip())


@dataclass(frozen=True)
class Settings:
    """
    Run configuration. Built once at start-up and handed to the pipeline
    driver; nothing reads the environment after that.
    """
    email: str = DEFAULT_EMAIL
    tool: str = DEFAULT_TOOL
    api_key: str = ""
    default_affiliation: str = DEFAULT_AFFILIATION
    year_start: Optional[int] = None
    year_end: Optional[int] = None
    use_initials: bool = True
    validate_affiliation: bool = True
    accept_missing_affiliation: bool = True
    roster_path: str = DEFAULT_ROSTER
    output_path: str = DEFAULT_OUTPUT
    db_path: str = DEFAULT_DB
    legacy_curation_path: str = DEFAULT_LEGACY_CURATION
    request_delay: float = REQUEST_DELAY_BETWEEN_FACULTY
    reporter_url: str = REPORTER_API_URL
    reporter_org_names: Tuple[str, ...] = ()
    reporter_fiscal_years: Tuple[int, ...] = ()
    reporter_delay: float = REPORTER_REQUEST_DELAY
    reporter_page_limit: int = REPORTER_PAGE_LIMIT
    grants_output_path: str = DEFAULT_GRANTS_OUTPUT

    @property
    def has_placeholder_email(self) -> bool:
        return not self.email or self.email.endswith("example.com")

    def end_date(self, today: date) -> date:
        """
        Upper bound of every researcher's window: Dec 31 of the explicit end
        year, or today.
        """
        if self.year_end is not None:
            return date(self.year_end, 12, 31)
        return today

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, load_files: bool = True) -> "Settings":
        """
        Build settings from environment variables, loading `.env.local` (or
        `.env`) first when present.
        """
        if env is None:
            if load_files:
                if os.path.exists(".env.local"):
                    load_dotenv(".env.local")
                else:
                    load_dotenv()
            env = os.environ

        delay_ms = _env_int(env, "PUB_REQUEST_DELAY_MS")
        reporter_delay_ms = _env_int(env, "REPORTER_DELAY_MS")
        page_limit = _env_int(env, "REPORTER_PAGE_LIMIT")
        fiscal_years = []
        for item in _env_list(env, "REPORTER_FISCAL_YEARS"):
            try:
                fiscal_years.append(int(item))
            except ValueError:
                continue

        return cls(
            email=env.get("NCBI_EMAIL") or DEFAULT_EMAIL,
            tool=env.get("NCBI_TOOL") or DEFAULT_TOOL,
            api_key=env.get("NCBI_API_KEY") or "",
            default_affiliation=env.get("PUB_DEFAULT_AFFILIATION") or DEFAULT_AFFILIATION,
            year_start=_env_int(env, "PUB_YEAR_START", "PUB_YEAR"),
            year_end=_env_int(env, "PUB_YEAR_END", "PUB_YEAR"),
            use_initials=_env_flag(env, "PUB_USE_INITIALS"),
            validate_affiliation=_env_flag(env, "PUB_VALIDATE_AFFILIATION"),
            accept_missing_affiliation=_env_flag(env, "PUB_ACCEPT_MISSING_AFFILIATION"),
            roster_path=env.get("PUB_ROSTER_PATH") or DEFAULT_ROSTER,
            output_path=env.get("PUB_OUTPUT_PATH") or DEFAULT_OUTPUT,
            db_path=env.get("PUB_DB_PATH") or DEFAULT_DB,
            legacy_curation_path=env.get("PUB_LEGACY_CURATION_PATH") or DEFAULT_LEGACY_CURATION,
            request_delay=(delay_ms / 1000.0) if delay_ms is not None else REQUEST_DELAY_BETWEEN_FACULTY,
            reporter_url=env.get("REPORTER_API_URL") or REPORTER_API_URL,
            reporter_org_names=_env_list(env, "REPORTER_ORG_NAMES"),
            reporter_fiscal_years=tuple(fiscal_years),
            reporter_delay=(reporter_delay_ms / 1000.0) if reporter_delay_ms is not None else REPORTER_REQUEST_DELAY,
            reporter_page_limit=page_limit or REPORTER_PAGE_LIMIT,
            grants_output_path=env.get("GRANTS_OUTPUT_PATH") or DEFAULT_GRANTS_OUTPUT,
        )
