"""Shared typed models for the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar

MAX_BULLETS = 5


@dataclass(frozen=True, slots=True)
class ReferenceItem:
    """Bookmarked link as delivered by the reference-item source."""

    url: str
    title: str
    tags: tuple[str, ...]
    created: datetime
    excerpt: str | None = None

    @property
    def key(self) -> str:
        return self.url


@dataclass(frozen=True, slots=True)
class ExtractedContent:
    """Plain text pulled from an item's remote document."""

    text: str
    published_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Complete:
    """Successful digest: 1 to 5 bullets plus an optional quotation."""

    bullets: tuple[str, ...]
    quote: str | None = None

    kind: ClassVar[str] = "complete"

    def __post_init__(self) -> None:
        if not 1 <= len(self.bullets) <= MAX_BULLETS:
            raise ValueError(
                f"Complete digest needs 1-{MAX_BULLETS} bullets, got {len(self.bullets)}"
            )


@dataclass(frozen=True, slots=True)
class Insufficient:
    """Content was missing or too short to summarize."""

    kind: ClassVar[str] = "insufficient"


@dataclass(frozen=True, slots=True)
class Failed:
    """Summarization was attempted and gave up."""

    reason: str

    kind: ClassVar[str] = "failed"


Digest = Complete | Insufficient | Failed


@dataclass(frozen=True, slots=True)
class EnrichedItem:
    """Reference item carried with whatever enrichment succeeded."""

    item: ReferenceItem
    content: ExtractedContent | None
    digest: Digest

    @property
    def key(self) -> str:
        return self.item.key

    @property
    def published_at(self) -> datetime | None:
        return self.content.published_at if self.content else None


@dataclass(frozen=True, slots=True)
class Topic:
    title: str
    items: tuple[EnrichedItem, ...]


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Topic-partitioned output of one pipeline run."""

    topics: tuple[Topic, ...]
    degraded: bool = False
    degraded_reason: str | None = None

    def items(self) -> list[EnrichedItem]:
        return [enriched for topic in self.topics for enriched in topic.items]
