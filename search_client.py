"""Search API polling: signed requests, pagination and rate-limit backoff."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

import requests
from requests_oauthlib import OAuth1

from models import Record, ResultPage, SearchQuery

SEARCH_API_URL = os.getenv("SEARCH_API_URL", "https://api.twitter.com/1.1/search/tweets.json")
REQUEST_TIMEOUT_SECONDS = 20
THROTTLE_SECONDS = 0.5
MAX_ATTEMPTS = 5
BACKOFF_INITIAL_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 30.0
RATE_LIMIT_RESET_HEADER = "X-Rate-Limit-Reset"
RATE_LIMIT_FALLBACK_SECONDS = 60.0
RATE_LIMIT_MAX_WAIT_SECONDS = 900.0
_BODY_LOG_LIMIT = 500

OUTCOME_EXHAUSTED = "exhausted"
OUTCOME_STOPPED = "stopped"
OUTCOME_DECODE_ERROR = "decode_error"
OUTCOME_GAVE_UP = "gave_up"

LOGGER = logging.getLogger(__name__)


class SearchResponseError(ValueError):
    """Raised when a 200 response does not have the expected shape."""


def build_auth(
    consumer_key: str,
    consumer_secret: str,
    access_token: str | None = None,
    access_token_secret: str | None = None,
) -> OAuth1:
    """Return an OAuth1 signer that computes the Authorization header per request.

    Without an access token the requests are signed with the consumer
    credentials only.
    """
    return OAuth1(
        consumer_key,
        client_secret=consumer_secret,
        resource_owner_key=access_token or None,
        resource_owner_secret=access_token_secret or None,
    )


class SearchFetcher:
    """Polls the search endpoint page by page until told to stop or out of pages.

    ``pages()`` is a generator; once it is exhausted ``outcome`` says why it
    ended. Waits (throttle, backoff, rate limit) block on ``stop_event`` so a
    shutdown request cuts them short. The in-flight request itself is only
    bounded by REQUEST_TIMEOUT_SECONDS.
    """

    def __init__(
        self,
        query: SearchQuery,
        auth: Any,
        stop_event: threading.Event,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.query = query
        self.auth = auth
        self.stop_event = stop_event
        self.session = session or requests.Session()
        self._clock = clock
        self.outcome: str | None = None
        self.requests_made = 0
        self.records_fetched = 0
        self.consecutive_failures = 0

    def pages(self) -> Iterator[ResultPage]:
        raw_query = self.query.encode()

        while True:
            if self.stop_event.is_set() or self._pause(THROTTLE_SECONDS):
                self.outcome = OUTCOME_STOPPED
                return

            try:
                response = self._request(raw_query)
            except requests.RequestException as exc:
                LOGGER.warning("Error getting response: %s", exc)
                if not self._record_failure():
                    return
                continue

            if response.status_code == 429:
                wait = self._rate_limit_wait(response)
                LOGGER.warning("Reached rate limit, waiting %.1fs", wait)
                self._pause(wait)
                continue

            if response.status_code != 200:
                LOGGER.warning(
                    "StatusCode = %s, Body: %s",
                    response.status_code,
                    response.text[:_BODY_LOG_LIMIT],
                )
                if not self._record_failure():
                    return
                continue

            try:
                page = parse_search_payload(response.json())
            except ValueError as exc:
                LOGGER.error("Couldn't decode search response: %s", exc)
                self.outcome = OUTCOME_DECODE_ERROR
                return

            self.consecutive_failures = 0
            if page.records:
                self.records_fetched += len(page)
                LOGGER.info("Collected %s records", len(page))
                yield page

            if not page.next_cursor:
                self.outcome = OUTCOME_EXHAUSTED
                return
            raw_query = page.next_cursor

    def _request(self, raw_query: str) -> requests.Response:
        self.requests_made += 1
        return self.session.get(
            f"{SEARCH_API_URL}?{raw_query}",
            auth=self.auth,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    def _record_failure(self) -> bool:
        """Count a transient failure and back off. Returns False once the budget is spent."""
        self.consecutive_failures += 1
        if self.consecutive_failures >= MAX_ATTEMPTS:
            LOGGER.error("Giving up after %s consecutive failed requests", self.consecutive_failures)
            self.outcome = OUTCOME_GAVE_UP
            return False

        backoff = min(
            BACKOFF_INITIAL_SECONDS * 2 ** (self.consecutive_failures - 1),
            BACKOFF_MAX_SECONDS,
        )
        LOGGER.info(
            "Retrying in %.1fs (attempt %s/%s)",
            backoff,
            self.consecutive_failures + 1,
            MAX_ATTEMPTS,
        )
        self._pause(backoff)
        return True

    def _rate_limit_wait(self, response: requests.Response) -> float:
        """Seconds until the rate-limit window resets, clamped to [0, max wait]."""
        raw = response.headers.get(RATE_LIMIT_RESET_HEADER)
        try:
            reset_at = int(raw)
        except (TypeError, ValueError):
            LOGGER.warning(
                "Missing or invalid %s header: %r", RATE_LIMIT_RESET_HEADER, raw
            )
            return RATE_LIMIT_FALLBACK_SECONDS

        wait = reset_at - self._clock()
        return min(max(wait, 0.0), RATE_LIMIT_MAX_WAIT_SECONDS)

    def _pause(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if a stop was requested."""
        if seconds <= 0:
            return self.stop_event.is_set()
        return self.stop_event.wait(seconds)


def parse_search_payload(payload: Any) -> ResultPage:
    """Parse a search response body into a ResultPage."""
    if not isinstance(payload, dict):
        raise SearchResponseError("Unexpected search payload shape: expected an object")

    statuses = payload.get("statuses") or []
    if not isinstance(statuses, list):
        raise SearchResponseError("Unexpected search payload shape: statuses is not a list")

    metadata = payload.get("search_metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    records = tuple(r for r in (_parse_record(item) for item in statuses) if r is not None)
    return ResultPage(records=records, next_cursor=_parse_cursor(metadata.get("next_results")))


def _parse_record(item: Any) -> Record | None:
    if not isinstance(item, dict):
        return None

    record_id = item.get("id")
    if not isinstance(record_id, int) or isinstance(record_id, bool):
        LOGGER.warning("Skipping record without an integer id: %r", record_id)
        return None

    user = item.get("user") if isinstance(item.get("user"), dict) else {}
    return Record(
        id=record_id,
        created_at=_as_str(item.get("created_at")),
        screen_name=_as_str(user.get("screen_name")),
        text=_as_str(item.get("text")),
    )


def _parse_cursor(value: Any) -> str | None:
    # next_results is a ready-made query string with a leading "?".
    if not isinstance(value, str) or not value:
        return None
    cursor = value[1:] if value.startswith("?") else value
    return cursor or None


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""
