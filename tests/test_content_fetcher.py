"""Tests for content_fetcher.ContentFetcher and its HTML helpers."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
import requests

from content_fetcher import (
    ContentFetcher,
    classify_fetch_failure,
    domain_of,
    extract_html,
    parse_timestamp,
)
from errors import ContentTooShortError, FetchError
from failure_log import MemoryFailureLog
from models import ReferenceItem
from retry import FailureKind

ARTICLE_TEXT = "Regulators opened an inquiry into the merger on Tuesday. " * 4


def _item(url: str = "https://news.example.com/story") -> ReferenceItem:
    return ReferenceItem(
        url=url,
        title="Story",
        tags=("#twit",),
        created=datetime(2025, 1, 6, tzinfo=UTC),
    )


def _response(status: int = 200, text: str = "", content_type: str = "text/html") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.headers = {"Content-Type": content_type}
    response.text = text
    return response


def _html(body: str, head: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


def _fetcher(session: MagicMock, **kwargs) -> tuple[ContentFetcher, list[float], MemoryFailureLog]:
    delays: list[float] = []
    log = MemoryFailureLog()
    fetcher = ContentFetcher(session=session, failure_log=log, sleep=delays.append, **kwargs)
    return fetcher, delays, log


def test_fetch_item_extracts_article_text_and_published_time() -> None:
    head = '<meta property="article:published_time" content="2025-01-05T08:30:00Z">'
    body = f"<nav>Menu</nav><article><p>{ARTICLE_TEXT}</p></article><script>var x = 1;</script>"
    session = MagicMock()
    session.get.return_value = _response(text=_html(body, head))
    fetcher, delays, log = _fetcher(session)

    content = fetcher.fetch_item(_item())

    assert content is not None
    assert "Regulators opened an inquiry" in content.text
    assert "Menu" not in content.text
    assert "var x" not in content.text
    assert content.published_at == datetime(2025, 1, 5, 8, 30, tzinfo=UTC)
    assert delays == []
    assert log.records == []


@pytest.mark.parametrize("status", [401, 403, 404])
def test_access_errors_are_not_retried(status: int) -> None:
    session = MagicMock()
    session.get.return_value = _response(status=status)
    fetcher, delays, log = _fetcher(session)

    assert fetcher.fetch_item(_item()) is None

    assert session.get.call_count == 1
    assert delays == []
    assert len(log.records) == 1
    record = log.records[0]
    assert record.stage == "fetch"
    assert record.domain == "news.example.com"
    assert record.item_key == "https://news.example.com/story"
    assert str(status) in record.reason


def test_timeouts_are_retried_until_success() -> None:
    session = MagicMock()
    session.get.side_effect = [
        requests.Timeout("slow"),
        requests.Timeout("slow"),
        _response(text=_html(f"<p>{ARTICLE_TEXT}</p>")),
    ]
    fetcher, delays, log = _fetcher(session)

    content = fetcher.fetch_item(_item())

    assert content is not None
    assert session.get.call_count == 3
    assert delays == [0.5, 1.0]
    assert log.records == []


def test_server_errors_exhaust_three_attempts() -> None:
    session = MagicMock()
    session.get.return_value = _response(status=503)
    fetcher, delays, log = _fetcher(session)

    assert fetcher.fetch_item(_item()) is None

    assert session.get.call_count == 3
    assert delays == [0.5, 1.0]
    assert "3 attempt" in log.records[0].reason


def test_short_content_is_absent_without_retry() -> None:
    session = MagicMock()
    session.get.return_value = _response(text=_html("<p>Subscribe to read.</p>"))
    fetcher, _, log = _fetcher(session)

    assert fetcher.fetch_item(_item()) is None

    assert session.get.call_count == 1
    assert "too short" in log.records[0].reason


def test_plain_text_body_is_used_as_is() -> None:
    session = MagicMock()
    session.get.return_value = _response(text=ARTICLE_TEXT, content_type="text/plain")
    fetcher, _, _ = _fetcher(session)

    content = fetcher.fetch_item(_item())

    assert content is not None
    assert content.text == ARTICLE_TEXT.strip()
    assert content.published_at is None


def test_credentials_are_sent_for_the_item_domain() -> None:
    session = MagicMock()
    session.get.return_value = _response(text=_html(f"<p>{ARTICLE_TEXT}</p>"))
    lookup = MagicMock(return_value="sid=abc")
    fetcher, _, _ = _fetcher(session, credentials=lookup)

    fetcher.fetch_item(_item())

    lookup.assert_called_once_with("news.example.com")
    assert session.get.call_args.kwargs["headers"] == {"Cookie": "sid=abc"}
    assert session.get.call_args.kwargs["timeout"] == 30


def test_no_credential_header_when_lookup_has_nothing() -> None:
    session = MagicMock()
    session.get.return_value = _response(text=_html(f"<p>{ARTICLE_TEXT}</p>"))
    fetcher, _, _ = _fetcher(session, credentials=lambda domain: None)

    fetcher.fetch_item(_item())

    assert session.get.call_args.kwargs["headers"] == {}


def test_fetch_all_returns_one_entry_per_item() -> None:
    pages = {
        "https://a.example.com/1": _response(text=_html(f"<p>{ARTICLE_TEXT}</p>")),
        "https://b.example.com/2": _response(status=404),
        "https://c.example.com/3": _response(text=_html("<p>tiny</p>")),
    }
    session = MagicMock()
    session.get.side_effect = lambda url, **kwargs: pages[url]
    fetcher, _, log = _fetcher(session)
    items = [_item(url) for url in pages]

    results = fetcher.fetch_all(items)

    assert set(results) == set(pages)
    assert results["https://a.example.com/1"] is not None
    assert results["https://b.example.com/2"] is None
    assert results["https://c.example.com/3"] is None
    assert {record.domain for record in log.records} == {"b.example.com", "c.example.com"}


def test_classify_fetch_failure() -> None:
    assert classify_fetch_failure(FetchError("timeout")) is FailureKind.TRANSIENT
    assert classify_fetch_failure(FetchError("busy", status_code=429)) is FailureKind.TRANSIENT
    assert classify_fetch_failure(FetchError("down", status_code=502)) is FailureKind.TRANSIENT
    assert classify_fetch_failure(FetchError("gone", status_code=410)) is FailureKind.TERMINAL
    assert classify_fetch_failure(ContentTooShortError("short")) is FailureKind.TERMINAL
    assert classify_fetch_failure(KeyError("bug")) is FailureKind.TERMINAL


def test_extract_html_falls_back_to_time_element() -> None:
    html = _html(f'<main><time datetime="2024-12-31">Dec 31</time><p>{ARTICLE_TEXT}</p></main>')

    text, published_at = extract_html(html)

    assert "Regulators" in text
    assert published_at == datetime(2024, 12, 31, tzinfo=UTC)


def test_extract_html_reads_item_prop_date() -> None:
    html = _html(f'<span itemprop="datePublished" content="2025-02-01T10:00:00+02:00"></span><p>{ARTICLE_TEXT}</p>')

    _, published_at = extract_html(html)

    assert published_at == datetime(2025, 2, 1, 8, 0, tzinfo=UTC)


def test_parse_timestamp_handles_bad_input() -> None:
    assert parse_timestamp("not a date") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None


def test_domain_of_lowercases_host() -> None:
    assert domain_of("https://News.Example.com:8443/a?b=c") == "news.example.com"
    assert domain_of("not a url") == ""


def test_malformed_url_is_absent_without_stopping_the_batch() -> None:
    good = _item("https://a.example.com/1")
    broken = _item("http://[broken/b")
    session = MagicMock()
    session.get.return_value = _response(text=_html(f"<p>{ARTICLE_TEXT}</p>"))
    fetcher, _, log = _fetcher(session)

    results = fetcher.fetch_all([good, broken])

    assert set(results) == {good.key, broken.key}
    assert results[good.key] is not None
    assert results[broken.key] is None
    assert session.get.call_count == 1
    assert [(r.item_key, r.domain) for r in log.records] == [(broken.key, None)]
    assert "Malformed URL" in log.records[0].reason


@pytest.mark.parametrize(
    "error",
    [
        requests.exceptions.MissingSchema("No scheme supplied"),
        requests.exceptions.InvalidSchema("No connection adapters"),
        requests.exceptions.InvalidURL("Invalid URL"),
    ],
)
def test_invalid_url_errors_are_not_retried(error: Exception) -> None:
    session = MagicMock()
    session.get.side_effect = error
    fetcher, delays, log = _fetcher(session)

    assert fetcher.fetch_item(_item()) is None

    assert session.get.call_count == 1
    assert delays == []
    assert "Invalid URL" in log.records[0].reason


def test_failing_credential_lookup_only_loses_that_item() -> None:
    session = MagicMock()
    lookup = MagicMock(side_effect=OSError("cookie store locked"))
    fetcher, delays, log = _fetcher(session, credentials=lookup)

    results = fetcher.fetch_all([_item("https://a.example.com/1"), _item("https://b.example.com/2")])

    assert list(results.values()) == [None, None]
    session.get.assert_not_called()
    assert lookup.call_count == 2
    assert delays == []
    assert all("Credential lookup failed" in r.reason for r in log.records)
