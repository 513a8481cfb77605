"""Concurrent retrieval and plain-text extraction of bookmarked documents."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Callable, Sequence
from urllib.parse import urlsplit

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from requests.exceptions import InvalidSchema, InvalidURL, MissingSchema

from errors import ContentTooShortError, FetchError, PipelineError, UnfetchableError
from failure_log import FailureLog, FailureRecord, MemoryFailureLog
from models import ExtractedContent, ReferenceItem
from retry import FETCH_RETRY_POLICY, FailureKind, retry_call
from worker_pool import StagePolicy, run_bounded

LOGGER = logging.getLogger(__name__)

CredentialLookup = Callable[[str], str | None]

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
REQUEST_TIMEOUT_SECONDS = 30
MIN_CONTENT_CHARS = 100
DEFAULT_FETCH_POLICY = StagePolicy(pool_size=10, retry=FETCH_RETRY_POLICY)

# Not worth retrying: login walls, paywalls, removed pages.
_TERMINAL_STATUSES: dict[int, str] = {
    401: "Access denied (401 Unauthorized) - requires login",
    403: "Access forbidden (403 Forbidden) - may be paywalled or blocking bots",
    404: "Page not found (404) - article may have been removed",
}

_STRIPPED_TAGS = ["script", "style", "noscript", "svg", "nav", "footer", "aside", "header", "form"]

# (attribute, value) pairs checked in order on <meta> tags.
_PUBLISHED_META: list[tuple[str, str]] = [
    ("property", "article:published_time"),
    ("property", "og:published_time"),
    ("name", "article:published_time"),
    ("name", "publishdate"),
    ("name", "publish_date"),
    ("name", "date"),
    ("name", "publication_date"),
    ("name", "dc.date"),
    ("name", "parsely-pub-date"),
]


def build_session(pool_size: int) -> requests.Session:
    """Session whose connection pool matches the fetch pool size."""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers["User-Agent"] = USER_AGENT
    return session


def classify_fetch_failure(exc: Exception) -> FailureKind:
    if isinstance(exc, (ContentTooShortError, UnfetchableError)):
        return FailureKind.TERMINAL
    if isinstance(exc, FetchError):
        status = exc.status_code
        if status is None or status == 429 or status >= 500:
            return FailureKind.TRANSIENT
        return FailureKind.TERMINAL
    return FailureKind.TERMINAL


class ContentFetcher:
    """Fetches every item's document on a bounded pool, one slot per item."""

    def __init__(
        self,
        *,
        credentials: CredentialLookup | None = None,
        policy: StagePolicy = DEFAULT_FETCH_POLICY,
        session: requests.Session | None = None,
        failure_log: FailureLog | None = None,
        min_chars: int = MIN_CONTENT_CHARS,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        credential_header: str = "Cookie",
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.credentials = credentials
        self.policy = policy
        self.session = session or build_session(policy.pool_size)
        self.failure_log = failure_log or MemoryFailureLog()
        self.min_chars = min_chars
        self.timeout = timeout
        self.credential_header = credential_header
        self.sleep = sleep

    def fetch_all(self, items: Sequence[ReferenceItem]) -> dict[str, ExtractedContent | None]:
        """Return a mapping of item key to extracted content (None when absent)."""
        LOGGER.info("Fetching %s documents (pool=%s)", len(items), self.policy.pool_size)
        results = run_bounded(
            items,
            self.fetch_item,
            key=lambda item: item.key,
            max_workers=self.policy.pool_size,
            label="fetch",
        )
        fetched = sum(1 for content in results.values() if content is not None)
        LOGGER.info("Fetch complete: extracted=%s absent=%s", fetched, len(results) - fetched)
        return results

    def fetch_item(self, item: ReferenceItem) -> ExtractedContent | None:
        try:
            domain = domain_of(item.url)
        except ValueError as exc:
            return self._absent(item, None, UnfetchableError(f"Malformed URL: {exc}"))

        try:
            return retry_call(
                lambda: self._fetch_once(item.url, domain),
                self.policy.retry,
                classify=classify_fetch_failure,
                label=f"fetch {item.url}",
                sleep=self.sleep,
            )
        except PipelineError as exc:
            return self._absent(item, domain, exc)

    def _absent(self, item: ReferenceItem, domain: str | None, exc: PipelineError) -> None:
        LOGGER.warning("No content for %s (domain=%s): %s", item.url, domain, exc)
        self.failure_log.record(
            FailureRecord(stage="fetch", reason=str(exc), item_key=item.key, domain=domain)
        )
        return None

    def _fetch_once(self, url: str, domain: str) -> ExtractedContent:
        headers: dict[str, str] = {}
        if self.credentials is not None and domain:
            try:
                credential = self.credentials(domain)
            except Exception as exc:
                raise UnfetchableError(f"Credential lookup failed for {domain}: {exc}") from exc
            if credential:
                headers[self.credential_header] = credential

        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise FetchError(f"Timed out after {self.timeout}s") from exc
        except (InvalidSchema, InvalidURL, MissingSchema) as exc:
            raise UnfetchableError(f"Invalid URL: {exc}") from exc
        except requests.RequestException as exc:
            raise FetchError(f"Request failed: {exc}") from exc

        status = response.status_code
        if status in _TERMINAL_STATUSES:
            raise FetchError(_TERMINAL_STATUSES[status], status_code=status)
        if status == 429:
            raise FetchError("Rate limited (429) - too many requests", status_code=status)
        if status >= 500:
            raise FetchError(f"Server error ({status}) - website is having issues", status_code=status)
        if status >= 400:
            raise FetchError(f"HTTP error: {status}", status_code=status)

        content_type = str(response.headers.get("Content-Type", "")).lower()
        body = response.text or ""
        if "html" in content_type or body.lstrip().startswith("<"):
            text, published_at = extract_html(body)
        else:
            text, published_at = normalize_text(body), None

        if not text:
            raise ContentTooShortError("No text content extracted - may require JavaScript or login")
        if len(text) < self.min_chars:
            raise ContentTooShortError(
                f"Content too short ({len(text)} chars) - may be paywalled or blocked"
            )
        return ExtractedContent(text=text, published_at=published_at)


def domain_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def extract_html(html: str) -> tuple[str, datetime | None]:
    """Convert an HTML document to plain text and find its publication time."""
    soup = BeautifulSoup(html, "lxml")
    published_at = find_published_at(soup)

    for tag in soup(_STRIPPED_TAGS):
        tag.decompose()

    root = soup.find("article") or soup.find("main") or soup.body or soup
    return normalize_text(root.get_text("\n")), published_at


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace within lines and drop blank lines."""
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def find_published_at(soup: BeautifulSoup) -> datetime | None:
    for attr, value in _PUBLISHED_META:
        meta = soup.find("meta", attrs={attr: value})
        if meta is not None:
            parsed = parse_timestamp(meta.get("content"))
            if parsed is not None:
                return parsed

    for element in soup.find_all(attrs={"itemprop": "datePublished"}):
        raw = element.get("content") or element.get("datetime") or element.get_text()
        parsed = parse_timestamp(raw)
        if parsed is not None:
            return parsed

    for element in soup.find_all("time", attrs={"datetime": True}):
        parsed = parse_timestamp(element.get("datetime"))
        if parsed is not None:
            return parsed

    return None


def parse_timestamp(raw: str | None) -> datetime | None:
    """Parse an ISO-8601 date or datetime into an aware UTC datetime."""
    if not isinstance(raw, str) or not raw.strip():
        return None

    value = raw.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
