"""Shared typed models for the search pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlencode


@dataclass(frozen=True, slots=True)
class SearchQuery:
    """Validated search parameters, built once at startup."""

    text: str
    lang: str = "en"
    until: str | None = None
    count: int = 15
    result_type: str = "mixed"
    max_id: int = 0
    since_id: int = 0

    def to_params(self) -> dict[str, str]:
        params = {"q": self.text}
        if self.lang:
            params["lang"] = self.lang
        if self.until:
            params["until"] = self.until
        params["count"] = str(self.count)
        params["result_type"] = self.result_type
        # Zero means "not set" for the id bounds.
        if self.max_id:
            params["max_id"] = str(self.max_id)
        if self.since_id:
            params["since_id"] = str(self.since_id)
        return params

    def encode(self) -> str:
        """Return the URL-encoded query string for the first request."""
        return urlencode(self.to_params())


@dataclass(frozen=True, slots=True)
class Record:
    """One retrieved post."""

    id: int
    created_at: str
    screen_name: str
    text: str

    def as_row(self) -> list[str]:
        return [str(self.id), self.created_at, self.screen_name, self.text]


@dataclass(frozen=True, slots=True)
class ResultPage:
    """Records from one search response plus the cursor to the next page."""

    records: tuple[Record, ...] = field(default_factory=tuple)
    next_cursor: str | None = None

    def __len__(self) -> int:
        return len(self.records)
