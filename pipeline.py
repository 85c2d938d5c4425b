"""Wires the fetcher, the CSV sink and shutdown signals together."""

from __future__ import annotations

import logging
import queue
import signal
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from csv_sink import END_OF_STREAM, CsvSink, SinkReport, drain
from models import ResultPage, SearchQuery
from search_client import (
    OUTCOME_DECODE_ERROR,
    OUTCOME_GAVE_UP,
    OUTCOME_STOPPED,
    SearchFetcher,
)

CHANNEL_SIZE = 1
PUT_POLL_SECONDS = 0.2
JOIN_POLL_SECONDS = 0.5
SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_STARTUP = 2

LOGGER = logging.getLogger(__name__)


@dataclass
class PipelineState:
    """The stop flag shared by the signal handler, fetcher and sink."""

    stop: threading.Event = field(default_factory=threading.Event)
    # Set only by the signal handler; the sink can also request a stop.
    signal_received: int | None = None

    def request_stop(self) -> None:
        self.stop.set()

    @property
    def stopping(self) -> bool:
        return self.stop.is_set()


@dataclass
class PipelineResult:
    fetch_outcome: str | None
    requests_made: int
    records_fetched: int
    sink: SinkReport
    stop_requested: bool = False
    interrupted: bool = False

    @property
    def exit_code(self) -> int:
        if self.sink.failed:
            return EXIT_PARTIAL
        # None means the fetcher thread died before finishing its loop.
        if self.fetch_outcome in (None, OUTCOME_DECODE_ERROR, OUTCOME_GAVE_UP):
            return EXIT_PARTIAL
        return EXIT_OK


def install_signal_handlers(state: PipelineState) -> dict[int, Any]:
    """Route SIGINT/SIGTERM to ``state.request_stop``. Returns the previous handlers.

    Must be called from the main thread.
    """

    def _handle(signum: int, frame: Any) -> None:
        if not state.stopping:
            LOGGER.info("Received %s. Stopping...", signal.Signals(signum).name)
        state.signal_received = signum
        state.request_stop()

    previous = {}
    for signum in SHUTDOWN_SIGNALS:
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _handle)
    return previous


def restore_signal_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def _send(channel: queue.Queue, page: ResultPage, consumer: threading.Thread) -> bool:
    """Blocking send. Gives up only when the consumer is gone."""
    while True:
        try:
            channel.put(page, timeout=PUT_POLL_SECONDS)
        except queue.Full:
            if not consumer.is_alive():
                return False
            continue
        return True


def _close_channel(channel: queue.Queue, consumer: threading.Thread) -> None:
    # A consumer that already exited will never make room for the sentinel.
    while consumer.is_alive():
        try:
            channel.put(END_OF_STREAM, timeout=PUT_POLL_SECONDS)
        except queue.Full:
            continue
        return


def _wait(thread: threading.Thread) -> None:
    # Short joins keep the main thread responsive to signals.
    while thread.is_alive():
        thread.join(JOIN_POLL_SECONDS)


def run_pipeline(
    query: SearchQuery,
    auth: Any,
    output_path: str | Path | None = None,
    state: PipelineState | None = None,
    session: requests.Session | None = None,
) -> PipelineResult:
    """Fetch every page for ``query`` and stream the records into a CSV file.

    Shutdown order is fixed: wait for the fetcher, close the channel, then
    wait for the sink to flush and close the file.
    """
    state = state or PipelineState()
    channel: queue.Queue = queue.Queue(maxsize=CHANNEL_SIZE)
    fetcher = SearchFetcher(query, auth, state.stop, session=session)
    sink = CsvSink(output_path)
    sink_reports: list[SinkReport] = []

    def _produce() -> None:
        try:
            for page in fetcher.pages():
                if not _send(channel, page, consumer):
                    LOGGER.warning("Dropping page of %s records: CSV writer has stopped", len(page))
                    fetcher.outcome = OUTCOME_STOPPED
                    break
        finally:
            LOGGER.info("Stopped collecting records. outcome=%s", fetcher.outcome)

    def _consume() -> None:
        try:
            sink_reports.append(drain(channel, sink, state.stop))
        finally:
            if not sink_reports:
                state.request_stop()

    consumer = threading.Thread(target=_consume, name="csv-sink", daemon=True)
    producer = threading.Thread(target=_produce, name="search-fetcher", daemon=True)
    consumer.start()
    producer.start()

    _wait(producer)
    _close_channel(channel, consumer)
    _wait(consumer)

    return PipelineResult(
        fetch_outcome=fetcher.outcome,
        requests_made=fetcher.requests_made,
        records_fetched=fetcher.records_fetched,
        sink=sink_reports[0] if sink_reports else SinkReport(),
        stop_requested=state.stopping,
        interrupted=state.signal_received is not None,
    )
