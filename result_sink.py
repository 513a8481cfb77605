"""JSON sink for a finished pipeline run, read by the briefing renderers."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from models import Complete, Digest, EnrichedItem, Failed, Insufficient, PipelineResult

FORMAT_VERSION = "1.0"

LOGGER = logging.getLogger(__name__)


def digest_to_dict(digest: Digest) -> dict[str, Any]:
    match digest:
        case Complete(bullets=bullets, quote=quote):
            return {"kind": digest.kind, "bullets": list(bullets), "quote": quote}
        case Insufficient():
            return {"kind": digest.kind}
        case Failed(reason=reason):
            return {"kind": digest.kind, "reason": reason}
    raise TypeError(f"Unknown digest type: {type(digest).__name__}")


def enriched_item_to_dict(enriched: EnrichedItem) -> dict[str, Any]:
    item = enriched.item
    published_at = enriched.published_at
    return {
        "title": item.title,
        "url": item.url,
        "tags": list(item.tags),
        "created": item.created.isoformat(),
        "published_at": published_at.isoformat() if published_at else None,
        "digest": digest_to_dict(enriched.digest),
    }


def result_to_dict(result: PipelineResult, tag: str) -> dict[str, Any]:
    return {
        "version": FORMAT_VERSION,
        "created_at": datetime.now(UTC).isoformat(),
        "tag": tag,
        "degraded": result.degraded,
        "degraded_reason": result.degraded_reason,
        "topics": [
            {
                "title": topic.title,
                "stories": [enriched_item_to_dict(enriched) for enriched in topic.items],
            }
            for topic in result.topics
        ],
    }


def write_result_json(result: PipelineResult, path: str | Path, tag: str) -> Path:
    """Write the run to ``path`` (parent directories are created)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = result_to_dict(result, tag)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    LOGGER.info(
        "Wrote %s topics / %s stories to %s",
        len(result.topics),
        len(result.items()),
        path,
    )
    return path
