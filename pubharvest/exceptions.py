from __future__ import annotations

import csv
import socket
import sqlite3
import xml.etree.ElementTree as ElementTree
from typing import Optional

import requests

__all__ = [
    "ProviderError",
    "RetryExhaustedError",
    "HTTP_ERRORS",
    "TIMEOUT_ERRORS",
    "NETWORK_ERRORS",
    "DECODE_ERRORS",
    "PARSE_ERRORS",
    "XML_PARSE_ERRORS",
    "NUMERIC_ERRORS",
    "FILE_IO_ERRORS",
    "FILE_READ_ERRORS",
    "CSV_ERRORS",
    "STORE_ERRORS",
    "FACULTY_RUN_ERRORS",
]


class ProviderError(RuntimeError):
    """
    A request to an external metadata provider failed for good, either because
    the provider answered with a non-retryable status or because the retry
    budget ran out. The response body is kept so the failure can be logged.
    """

    def __init__(self, message: str, status: Optional[int] = None, body: str = "", url: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body
        self.url = url

    def __str__(self) -> str:
        base = super().__str__()
        if self.body:
            return f"{base}: {self.body[:500]}"
        return base


class RetryExhaustedError(ProviderError):
    """
    Every attempt hit a transient failure (timeout, connection error,
    rate limiting or a busy server).
    """


# errors raised by requests when an HTTP request fails or a URL cannot be reached
HTTP_ERRORS = (requests.exceptions.RequestException,)

# errors that signal an operation has taken too long at the OS or socket level
TIMEOUT_ERRORS = (TimeoutError, socket.timeout, requests.exceptions.Timeout)

# umbrella group for network-related failures, including terminal provider errors
NETWORK_ERRORS = HTTP_ERRORS + TIMEOUT_ERRORS + (ProviderError,)

# errors that occur when converting response bytes into text
DECODE_ERRORS = (UnicodeDecodeError, UnicodeError)

# errors raised while interpreting structured data such as JSON or response fields
PARSE_ERRORS = (ValueError, TypeError, KeyError)

# XML parsing errors when processing EFetch article sets
XML_PARSE_ERRORS = (ElementTree.ParseError, ValueError, TypeError)

# numeric conversion errors raised during year, month, or day parsing
NUMERIC_ERRORS = (TypeError, ValueError, OverflowError)

# file system operation errors when reading the roster, legacy curation, or writing output
FILE_IO_ERRORS = (FileNotFoundError, OSError)

# combined file read errors including I/O failures, encoding issues, and malformed data
FILE_READ_ERRORS = FILE_IO_ERRORS + DECODE_ERRORS + PARSE_ERRORS

# CSV errors when reading the faculty roster
CSV_ERRORS = (csv.Error, OSError, UnicodeDecodeError)

# relational store failures; upserts should never raise these, so they abort the researcher's batch
STORE_ERRORS = (sqlite3.Error,)

# everything that aborts a single researcher without aborting the whole run,
# including provider payloads of an unexpected shape
FACULTY_RUN_ERRORS = NETWORK_ERRORS + XML_PARSE_ERRORS + STORE_ERRORS + DECODE_ERRORS + (AttributeError, KeyError)
