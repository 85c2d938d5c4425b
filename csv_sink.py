"""CSV file sink for harvested search results."""

from __future__ import annotations

import csv
import logging
import os
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

from models import Record, ResultPage

CSV_OUTPUT_PATH = os.getenv("CSV_OUTPUT_PATH", "output.csv")
MAX_FLUSH_FAILURES = 3

LOGGER = logging.getLogger(__name__)

CSV_COLUMNS = ["ID", "Created at", "Screen Name", "Tweet"]

# Put on the channel exactly once, after the producer has finished.
END_OF_STREAM = object()


@dataclass
class SinkReport:
    """What the sink managed to do before it closed."""

    opened: bool = False
    pages: int = 0
    rows_written: int = 0
    rows_failed: int = 0
    flush_failures: int = 0
    terminated_early: bool = False

    @property
    def failed(self) -> bool:
        return (
            not self.opened
            or self.terminated_early
            or self.rows_failed > 0
            or self.flush_failures > 0
        )


class CsvSink:
    """Writes records as CSV rows to ``path``, one flush per page."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path or CSV_OUTPUT_PATH)
        self._fh: IO[str] | None = None
        self._writer: Any = None

    def open(self) -> None:
        """Create (or truncate) the file and write the header row.

        Raises OSError if the destination cannot be opened.
        """
        self._fh = self.path.open("w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._fh)
        self._writer.writerow(CSV_COLUMNS)
        self._fh.flush()

    def write_page(self, page: ResultPage) -> tuple[int, int]:
        """Write every record of ``page`` in order. Returns (written, failed)."""
        written = failed = 0
        for record in page.records:
            if self.write_record(record):
                written += 1
            else:
                failed += 1
        return written, failed

    def write_record(self, record: Record) -> bool:
        try:
            self._writer.writerow(record.as_row())
        except (csv.Error, OSError, ValueError) as exc:
            LOGGER.warning("Couldn't write record id=%s: %s", record.id, exc)
            return False
        return True

    def flush(self) -> bool:
        if self._fh is None:
            return True
        try:
            self._fh.flush()
        except (OSError, ValueError) as exc:
            LOGGER.error("Couldn't flush %s: %s", self.path, exc)
            return False
        return True

    def close(self) -> bool:
        """Final flush, then close. Returns whether the final flush succeeded."""
        if self._fh is None:
            return True
        ok = self.flush()
        try:
            self._fh.close()
        except OSError as exc:
            LOGGER.error("Couldn't close %s: %s", self.path, exc)
            ok = False
        self._fh = None
        self._writer = None
        return ok


def drain(
    channel: queue.Queue,
    sink: CsvSink,
    stop_event: threading.Event,
) -> SinkReport:
    """Consume pages from ``channel`` into ``sink`` until END_OF_STREAM.

    A sink that cannot open its file, or keeps failing to flush, sets
    ``stop_event`` so the producer stops instead of blocking on a channel
    nobody reads.
    """
    report = SinkReport()

    try:
        sink.open()
    except OSError as exc:
        LOGGER.error("Couldn't create csv file %s: %s", sink.path, exc)
        stop_event.set()
        return report
    report.opened = True

    consecutive_flush_failures = 0
    try:
        while True:
            page = channel.get()
            if page is END_OF_STREAM:
                break
            if not page.records:
                continue

            written, failed = sink.write_page(page)
            report.pages += 1
            report.rows_written += written
            report.rows_failed += failed

            if sink.flush():
                consecutive_flush_failures = 0
                continue

            report.flush_failures += 1
            consecutive_flush_failures += 1
            if consecutive_flush_failures >= MAX_FLUSH_FAILURES:
                LOGGER.error("Stopping CSV writer after %s failed flushes", consecutive_flush_failures)
                report.terminated_early = True
                stop_event.set()
                break
    finally:
        if not sink.close():
            report.flush_failures += 1

    LOGGER.info(
        "Stopped writing to CSV. pages=%s rows_written=%s rows_failed=%s",
        report.pages,
        report.rows_written,
        report.rows_failed,
    )
    return report
