"""Raindrop.io bookmark ingestion."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Any

import requests

from models import ReferenceItem

RAINDROP_API_URL = "https://api.raindrop.io/rest/v1/raindrops/0"
REQUEST_TIMEOUT_SECONDS = 30
PAGE_SIZE = 50
PAGE_DELAY_SECONDS = 0.5
# Guard against an API that never returns an empty page.
MAX_PAGES = 200

LOGGER = logging.getLogger(__name__)


def fetch_reference_items(
    api_token: str,
    tag: str,
    since: datetime,
    *,
    session: requests.Session | None = None,
) -> list[ReferenceItem]:
    """Fetch bookmarks created after ``since`` carrying ``tag``.

    Pages are requested until an empty page comes back. The tag match is
    case-insensitive, and bookmarks are deduplicated by link keeping the first
    occurrence.

    Raises:
        RuntimeError: the API answered with an error status or an unexpected body.
    """
    get = session.get if session is not None else requests.get
    headers = {"Authorization": f"Bearer {api_token}"}
    search = f"created:>{since.strftime('%Y-%m-%d')}"

    raw_items: list[dict[str, Any]] = []
    for page in range(MAX_PAGES):
        params = {"perpage": PAGE_SIZE, "page": page, "search": search}
        try:
            response = get(
                RAINDROP_API_URL,
                headers=headers,
                params=params,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise RuntimeError(f"Failed to fetch bookmarks from Raindrop.io (page {page}): {exc}") from exc

        page_items = _page_items(response.json())
        if not page_items:
            break
        raw_items.extend(page_items)
        LOGGER.debug("Raindrop page=%s items=%s", page, len(page_items))
        time.sleep(PAGE_DELAY_SECONDS)
    else:
        LOGGER.warning("Raindrop fetch stopped after %s pages", MAX_PAGES)

    items = _parse_bookmarks(raw_items, tag)
    LOGGER.info(
        "Raindrop fetch: raw_count=%s, tag=%s, matching=%s",
        len(raw_items),
        tag,
        len(items),
    )
    return items


def _page_items(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
        raise RuntimeError("Unexpected Raindrop payload shape: expected an object with 'items'")
    return [item for item in payload["items"] if isinstance(item, dict)]


def _parse_bookmarks(raw_items: list[dict[str, Any]], tag: str) -> list[ReferenceItem]:
    """Filter by tag and normalize into ReferenceItems, deduplicated by link."""
    wanted = tag.lower()
    items_by_url: dict[str, ReferenceItem] = {}

    for raw in raw_items:
        link = _as_str(raw.get("link"))
        if not link or link in items_by_url:
            continue

        tags = tuple(t for t in raw.get("tags") or [] if isinstance(t, str))
        if wanted not in (t.lower() for t in tags):
            continue

        items_by_url[link] = ReferenceItem(
            url=link,
            title=_as_str(raw.get("title")) or link,
            tags=tags,
            created=_parse_datetime_or_now(_as_str(raw.get("created"))),
            excerpt=_as_str(raw.get("excerpt")),
        )

    return list(items_by_url.values())


def _parse_datetime_or_now(raw: str | None) -> datetime:
    if not raw:
        return datetime.now(UTC)

    # Raindrop returns RFC3339 timestamps with trailing Z.
    value = raw.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return datetime.now(UTC)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _as_str(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None
