"""CLI entrypoint: collect tagged bookmarks, enrich them, and save the topics."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime, timedelta

import pipeline
from config import FAILURE_LOG_PATH, PipelineOptions, load_environment, require_env
from content_fetcher import CredentialLookup
from cookies import load_browser_cookies
from failure_log import CsvFailureLog
from raindrop_client import fetch_reference_items
from result_sink import write_result_json


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(
        description="Collect tagged Raindrop.io bookmarks, summarize them, and group them by topic"
    )
    parser.add_argument("--tag", required=True, help="Bookmark tag to collect, e.g. '#twit'")
    parser.add_argument("--days", type=int, default=7, help="Number of days to look back for bookmarks")
    parser.add_argument(
        "--output",
        default=None,
        help="Path of the JSON result (default: stories-<tag>-<date>.json)",
    )
    parser.add_argument(
        "--no-cookies",
        action="store_true",
        help="Do not send browser cookies when fetching articles",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only list the bookmarks that would be processed, without fetching or summarizing",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def default_output_path(tag: str, now: datetime) -> str:
    slug = "".join(ch for ch in tag.lower() if ch.isalnum() or ch in "-_") or "stories"
    return f"stories-{slug}-{now.strftime('%Y-%m-%d')}.json"


def run(args: argparse.Namespace) -> int:
    """Run one collection; returns the process exit code."""
    options = PipelineOptions.from_env()
    raindrop_token = require_env("RAINDROP_API_TOKEN")
    if not args.dry_run:
        options.require_reasoning_key()

    now = datetime.now(UTC)
    items = fetch_reference_items(raindrop_token, args.tag, now - timedelta(days=args.days))
    if not items:
        logging.info("No bookmarks found with tag %s in the past %s days.", args.tag, args.days)
        return 0
    logging.info("Found %s bookmarks", len(items))

    if args.dry_run:
        for item in items:
            logging.info("[dry-run] Would process: %s (%s)", item.title, item.url)
        return 0

    credentials: CredentialLookup | None = None if args.no_cookies else load_browser_cookies()

    result = pipeline.run(
        items,
        credentials,
        options,
        failure_log=CsvFailureLog(FAILURE_LOG_PATH),
    )

    output = args.output or default_output_path(args.tag, now)
    path = write_result_json(result, output, args.tag)
    if result.degraded:
        logging.warning("Topics fell back to a single chronological group: %s", result.degraded_reason)
    logging.info("Saved %s stories in %s topics to %s", len(result.items()), len(result.topics), path)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Initialize config and execute the pipeline."""
    load_environment()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        return run(args)
    except (RuntimeError, ValueError) as exc:
        logging.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
