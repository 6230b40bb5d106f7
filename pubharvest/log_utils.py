from __future__ import annotations

import logging
import os
import sys
from typing import Optional


# Custom log levels for workflow visibility
STEP_LEVEL = 25  # Between INFO (20) and WARNING (30)
SUCCESS_LEVEL = 22  # Between INFO (20) and STEP (25)

logging.addLevelName(STEP_LEVEL, "STEP")
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


class LogSource:
    """
    Constants for the systems a message is about, used for tagging and coloring.
    """
    PUBMED = "PubMed"
    REPORTER = "RePORTER"
    STORE = "Store"
    CURATION = "Curation"
    SYSTEM = "System"


class LogCategory:
    """
    Constants for log categories; each line is tagged instead of indented.
    """
    FACULTY = "FACULTY"
    SEARCH = "SEARCH"
    FETCH = "FETCH"
    MATCH = "MATCH"
    SAVE = "SAVE"
    SKIP = "SKIP"
    ERROR = "ERROR"
    DEBUG = "DEBUG"
    PLAN = "PLAN"


class ColoredFormatter(logging.Formatter):
    """
    Formatter that adds ANSI color codes for level, source and category tags
    when writing to a terminal.
    """

    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD_CYAN = "\033[1;36m"
    BOLD_GREEN = "\033[1;32m"
    YELLOW = "\033[33m"
    RED = "\033[31m"
    BOLD_RED = "\033[1;31m"
    GREEN = "\033[32m"
    MAGENTA = "\033[35m"
    LIGHT_BLUE = "\033[94m"
    LIGHT_MAGENTA = "\033[95m"
    DARK_GRAY = "\033[90m"
    BOLD_MAGENTA = "\033[1;35m"
    RESET = "\033[0m"

    LEVEL_COLORS = {
        "DEBUG": CYAN,
        "INFO": WHITE,
        "STEP": BOLD_CYAN,
        "SUCCESS": BOLD_GREEN,
        "WARNING": YELLOW,
        "ERROR": RED,
        "CRITICAL": BOLD_RED,
    }

    SOURCE_COLORS = {
        LogSource.PUBMED: LIGHT_BLUE,
        LogSource.REPORTER: LIGHT_MAGENTA,
        LogSource.STORE: GREEN,
        LogSource.CURATION: YELLOW,
        LogSource.SYSTEM: WHITE,
    }

    CATEGORY_COLORS = {
        LogCategory.FACULTY: BOLD_MAGENTA,
        LogCategory.SEARCH: YELLOW,
        LogCategory.FETCH: CYAN,
        LogCategory.MATCH: BOLD_GREEN,
        LogCategory.SAVE: GREEN,
        LogCategory.SKIP: DARK_GRAY,
        LogCategory.ERROR: RED,
        LogCategory.DEBUG: DARK_GRAY,
        LogCategory.PLAN: MAGENTA,
    }

    def __init__(self, fmt: str, use_color: bool = True, datefmt: Optional[str] = None):
        super().__init__(fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        original_msg = record.msg
        original_level = record.levelname

        source = getattr(record, "source", None)
        category = getattr(record, "category", None)

        parts = []
        if source:
            color = self.SOURCE_COLORS.get(source) if self.use_color else None
            parts.append(f"{color}[{source}]{self.RESET}" if color else f"[{source}]")
        if category:
            color = self.CATEGORY_COLORS.get(category) if self.use_color else None
            parts.append(f"{color}[{category}]{self.RESET}" if color else f"[{category}]")
        if parts:
            record.msg = f"{' '.join(parts)} {record.msg}"

        if self.use_color and record.levelname in self.LEVEL_COLORS:
            record.levelname = f"{self.LEVEL_COLORS[record.levelname]}{record.levelname}{self.RESET}"

        try:
            return super().format(record)
        finally:
            record.msg = original_msg
            record.levelname = original_level


class CategoryAdapter(logging.LoggerAdapter):
    """
    Adapter that moves `source` and `category` keyword arguments into `extra`.
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = dict(kwargs.get("extra") or {})

        source = kwargs.pop("source", None)
        if source:
            extra["source"] = source

        category = kwargs.pop("category", None)
        if category:
            extra["category"] = category

        kwargs["extra"] = extra
        return msg, kwargs


class Logger:
    """
    Run logger built on the standard logging module, with STEP and SUCCESS
    levels, colored console output and optional mirroring to a run log file.
    """

    LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self, name: str = "pubharvest"):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False
        self._logger.handlers.clear()

        self._console_handler = logging.StreamHandler(sys.stdout)
        self._console_handler.setLevel(logging.INFO)
        self._console_handler.setFormatter(
            ColoredFormatter(self.LOG_FORMAT, use_color=sys.stdout.isatty(), datefmt=self.DATE_FORMAT)
        )
        self._logger.addHandler(self._console_handler)

        self._file_handler: Optional[logging.FileHandler] = None
        self._log_file_path: Optional[str] = None
        self._adapter = CategoryAdapter(self._logger, {})

    @property
    def raw(self) -> logging.Logger:
        """
        The underlying logging.Logger, for callers (and tests) that need handlers.
        """
        return self._logger

    def set_log_file(self, path: str):
        """
        Start mirroring all log messages to the given file.
        """
        parent = os.path.dirname(path)
        if parent:
            try:
                os.makedirs(parent, exist_ok=True)
            except OSError:
                pass

        self.close()
        try:
            handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        except OSError as e:
            self._logger.error(f"Failed to open log file {path}: {e}")
            return
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(ColoredFormatter(self.LOG_FORMAT, use_color=False, datefmt=self.DATE_FORMAT))
        self._logger.addHandler(handler)
        self._file_handler = handler
        self._log_file_path = path

    def close(self):
        """
        Stop logging to file.
        """
        if self._file_handler is not None:
            self._logger.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None
            self._log_file_path = None

    def step(self, msg: str, source: Optional[str] = None, category: Optional[str] = None):
        """
        Log a top-level workflow step.
        """
        self._adapter.log(STEP_LEVEL, msg, source=source, category=category)

    def debug(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        self._adapter.debug(msg, source=source, category=category)

    def info(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        self._adapter.info(msg, source=source, category=category)

    def warn(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        self._adapter.warning(msg, source=source, category=category)

    def error(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        self._adapter.error(msg, source=source, category=category)

    def success(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        """
        Log successful operations.
        """
        self._adapter.log(SUCCESS_LEVEL, msg, source=source, category=category)

    @property
    def log_file_path(self) -> Optional[str]:
        return self._log_file_path


# Global logger instance
logger = Logger()
