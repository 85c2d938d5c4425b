"""CLI entrypoint: search, page through results and save them to CSV."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from csv_sink import CSV_OUTPUT_PATH
from pipeline import (
    EXIT_STARTUP,
    PipelineState,
    install_signal_handlers,
    restore_signal_handlers,
    run_pipeline,
)
from query import DEFAULT_COUNT, DEFAULT_RESULT_TYPE, QueryError, build_search_query
from search_client import build_auth


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Save search API results to a CSV file")
    parser.add_argument("-q", "--q", dest="query", default="", help="Search for posts referencing the given q")
    parser.add_argument("--lang", default="en", help="Restricts results to the given lang (ISO 639-1)")
    parser.add_argument(
        "--until",
        default="",
        help="Restricts results to those sent before the given date (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--max_id",
        type=int,
        default=0,
        help="Restricts results to those with an ID less than or equal to the given ID",
    )
    parser.add_argument(
        "--since_id",
        type=int,
        default=0,
        help="Restricts results to those with an ID greater than the given ID",
    )
    parser.add_argument("--count", type=int, default=DEFAULT_COUNT, help="Number of results returned per request")
    parser.add_argument(
        "--result_type",
        default=DEFAULT_RESULT_TYPE,
        help="recent: only most recent, popular: only most popular, mixed: both",
    )
    parser.add_argument("--token", default=os.getenv("TWITTER_CONSUMER_KEY", ""), help="Consumer Key")
    parser.add_argument("--secret", default=os.getenv("TWITTER_CONSUMER_SECRET", ""), help="Consumer Secret")
    parser.add_argument(
        "--access_token",
        default=os.getenv("TWITTER_ACCESS_TOKEN"),
        help="Optional user Access Token",
    )
    parser.add_argument(
        "--access_secret",
        default=os.getenv("TWITTER_ACCESS_TOKEN_SECRET"),
        help="Optional user Access Token Secret",
    )
    parser.add_argument("--output", default=CSV_OUTPUT_PATH, help="Path of the CSV file to write")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Initialize config, validate the query and run the pipeline."""
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    args = parse_args(argv)

    try:
        query = build_search_query(
            text=args.query,
            lang=args.lang,
            until=args.until,
            count=args.count,
            result_type=args.result_type,
            max_id=args.max_id,
            since_id=args.since_id,
        )
    except QueryError as exc:
        logging.error("%s", exc)
        return EXIT_STARTUP

    if not args.token or not args.secret:
        logging.warning("Consumer key or secret is empty; requests will likely be rejected")
    auth = build_auth(args.token, args.secret, args.access_token, args.access_secret)

    state = PipelineState()
    previous = install_signal_handlers(state)
    try:
        result = run_pipeline(query, auth, output_path=args.output, state=state)
    finally:
        restore_signal_handlers(previous)

    logging.info(
        "Run complete. outcome=%s requests=%s fetched=%s written=%s failed_rows=%s",
        result.fetch_outcome,
        result.requests_made,
        result.records_fetched,
        result.sink.rows_written,
        result.sink.rows_failed,
    )
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
