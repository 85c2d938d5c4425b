"""Validation of search parameters before any network activity."""

from __future__ import annotations

import logging
import re
from datetime import datetime

from models import SearchQuery

MAX_QUERY_LENGTH = 500
DEFAULT_COUNT = 15
MAX_COUNT = 100
DEFAULT_RESULT_TYPE = "mixed"
RESULT_TYPES: frozenset[str] = frozenset({"mixed", "recent", "popular"})

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

LOGGER = logging.getLogger(__name__)


class QueryError(ValueError):
    """Raised when a required search parameter is unusable."""


def build_search_query(
    text: str,
    lang: str = "en",
    until: str | None = None,
    count: int = DEFAULT_COUNT,
    result_type: str = DEFAULT_RESULT_TYPE,
    max_id: int = 0,
    since_id: int = 0,
) -> SearchQuery:
    """Validate raw CLI values and return an immutable SearchQuery.

    Problems with the text query or language are fatal and raise QueryError.
    Everything else is corrected with a warning: a bad ``until`` is dropped,
    an out-of-range ``count`` falls back to 15 and an unknown ``result_type``
    falls back to ``mixed``.
    """
    text = text or ""
    if not text:
        raise QueryError("q is required!")
    if len(text) > MAX_QUERY_LENGTH:
        raise QueryError(f"q has too many characters: {len(text)}")

    lang = lang or ""
    if len(lang) not in (0, 2):
        raise QueryError(f"lang must have 2 characters (ISO 639-1), got {len(lang)}")

    if until and not is_valid_date(until):
        LOGGER.warning("until couldn't be parsed: %r. Ignoring until", until)
        until = None

    if count < 0 or count > MAX_COUNT:
        LOGGER.warning(
            "count is not between 0 and %s: %s. Using default: %s", MAX_COUNT, count, DEFAULT_COUNT
        )
        count = DEFAULT_COUNT

    result_type = (result_type or "").lower()
    if result_type not in RESULT_TYPES:
        LOGGER.warning(
            "result_type is invalid: %r. Using default: %s", result_type, DEFAULT_RESULT_TYPE
        )
        result_type = DEFAULT_RESULT_TYPE

    return SearchQuery(
        text=text,
        lang=lang,
        until=until or None,
        count=count,
        result_type=result_type,
        max_id=max_id or 0,
        since_id=since_id or 0,
    )


def is_valid_date(value: str) -> bool:
    """Return True if value is a real calendar date formatted as YYYY-MM-DD."""
    if not _DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True
