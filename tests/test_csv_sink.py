from __future__ import annotations

import csv
import queue
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

import csv_sink
from csv_sink import CSV_COLUMNS, END_OF_STREAM, CsvSink, SinkReport, drain
from models import Record, ResultPage


def _record(record_id: int, text: str = "hello") -> Record:
    return Record(
        id=record_id,
        created_at="Mon Sep 24 03:35:21 +0000 2012",
        screen_name=f"user{record_id}",
        text=text,
    )


def _page(*ids: int) -> ResultPage:
    return ResultPage(records=tuple(_record(i) for i in ids))


def _channel(*items) -> queue.Queue:
    channel: queue.Queue = queue.Queue()
    for item in items:
        channel.put(item)
    channel.put(END_OF_STREAM)
    return channel


def _read_rows(path: Path) -> list[list[str]]:
    with path.open(newline="", encoding="utf-8") as fh:
        return list(csv.reader(fh))


@pytest.fixture(autouse=True)
def patch_csv_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point CSV_OUTPUT_PATH at a temp file for every test."""
    output = tmp_path / "test_output.csv"
    monkeypatch.setattr(csv_sink, "CSV_OUTPUT_PATH", str(output))


def test_default_path_comes_from_module_setting() -> None:
    assert CsvSink().path == Path(csv_sink.CSV_OUTPUT_PATH)


def test_header_written_even_without_records() -> None:
    sink = CsvSink()
    report = drain(_channel(), sink, threading.Event())

    assert report.opened is True
    assert report.rows_written == 0
    assert _read_rows(sink.path) == [CSV_COLUMNS]


def test_header_is_on_disk_right_after_open() -> None:
    sink = CsvSink()
    sink.open()
    try:
        assert _read_rows(sink.path) == [["ID", "Created at", "Screen Name", "Tweet"]]
    finally:
        sink.close()


def test_rows_keep_arrival_order_across_pages() -> None:
    sink = CsvSink()
    report = drain(_channel(_page(30, 10), _page(20), _page(5, 40)), sink, threading.Event())

    rows = _read_rows(sink.path)
    assert [row[0] for row in rows[1:]] == ["30", "10", "20", "5", "40"]
    assert report.pages == 3
    assert report.rows_written == 5
    assert report.failed is False


def test_row_fields_in_column_order() -> None:
    sink = CsvSink()
    drain(_channel(_page(1)), sink, threading.Event())

    assert _read_rows(sink.path)[1] == ["1", "Mon Sep 24 03:35:21 +0000 2012", "user1", "hello"]


def test_text_with_delimiters_is_quoted() -> None:
    text = 'commas, "quotes"\nand newlines'
    sink = CsvSink()
    drain(_channel(ResultPage(records=(_record(1, text),))), sink, threading.Event())

    assert _read_rows(sink.path)[1][3] == text


def test_empty_page_adds_no_rows() -> None:
    sink = CsvSink()
    report = drain(_channel(ResultPage(), _page(1)), sink, threading.Event())

    assert len(_read_rows(sink.path)) == 2
    assert report.pages == 1


def test_open_truncates_previous_output() -> None:
    path = Path(csv_sink.CSV_OUTPUT_PATH)
    path.write_text("stale\n", encoding="utf-8")

    drain(_channel(), CsvSink(), threading.Event())

    assert _read_rows(path) == [CSV_COLUMNS]


def test_open_failure_stops_producer(tmp_path: Path) -> None:
    stop = threading.Event()
    sink = CsvSink(tmp_path / "missing" / "out.csv")

    report = drain(_channel(_page(1)), sink, stop)

    assert report.opened is False
    assert report.failed is True
    assert stop.is_set()


def test_failed_row_is_skipped_and_batch_continues() -> None:
    sink = CsvSink()
    sink.open()
    sink._writer = MagicMock()
    sink._writer.writerow.side_effect = [None, csv.Error("bad row"), None]

    written, failed = sink.write_page(_page(1, 2, 3))
    sink.close()

    assert (written, failed) == (2, 1)
    assert sink._writer is None


def test_repeated_flush_failures_end_sink_early(monkeypatch: pytest.MonkeyPatch) -> None:
    stop = threading.Event()
    sink = CsvSink()
    monkeypatch.setattr(sink, "flush", lambda: False)

    pages = [_page(i) for i in range(5)]
    report = drain(_channel(*pages), sink, stop)

    assert report.terminated_early is True
    assert report.pages == csv_sink.MAX_FLUSH_FAILURES
    assert report.failed is True
    assert stop.is_set()


def test_single_flush_failure_does_not_end_sink(monkeypatch: pytest.MonkeyPatch) -> None:
    sink = CsvSink()
    results = iter([False, True, True, True])
    monkeypatch.setattr(sink, "flush", lambda: next(results))

    report = drain(_channel(_page(1), _page(2), _page(3)), sink, threading.Event())

    assert report.terminated_early is False
    assert report.pages == 3
    assert report.flush_failures == 1


def test_malformed_channel_item_still_closes_file() -> None:
    sink = CsvSink()
    channel = _channel(_page(1), "not a page")

    with pytest.raises(AttributeError):
        drain(channel, sink, threading.Event())

    assert sink._writer is None
    assert [row[0] for row in _read_rows(sink.path)] == ["ID", "1"]


def test_close_is_idempotent() -> None:
    sink = CsvSink()
    sink.open()

    assert sink.close() is True
    assert sink.close() is True


def test_sink_report_failed_flags() -> None:
    assert SinkReport(opened=True).failed is False
    assert SinkReport(opened=False).failed is True
    assert SinkReport(opened=True, rows_failed=1).failed is True
