"""Groups enriched items into named topics with one aggregate reasoning call."""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from errors import MalformedResponseError, PipelineError
from failure_log import FailureLog, FailureRecord, MemoryFailureLog
from models import Complete, EnrichedItem, PipelineResult, Topic
from reasoning_client import (
    Reasoning,
    classify_reasoning_failure,
    parse_json_object,
    raise_for_credentials,
)
from retry import REASONING_RETRY_POLICY, RetryPolicy, retry_call

LOGGER = logging.getLogger(__name__)

MAX_TOKENS = 2048
SINGLE_TOPIC_TITLE = "News"
FALLBACK_TOPIC_TITLE = "News Stories"

CLUSTER_PROMPT = """You are analyzing a list of news articles for a tech podcast briefing.

GROUPING RULES (in priority order):
1. PRIMARY: If an article is primarily about a specific company (Google, Apple, Microsoft, Tesla, Meta, Amazon, etc.), use the company name as the topic title
2. Group all articles about the same company together under that company's name
3. For articles not primarily about a single company, use a descriptive topic (e.g., "AI Development", "Privacy & Security", "Industry News")
4. Use concise topic names (1-3 words preferred, company names exactly as they are commonly known)

Articles:
{articles}

Format your response as JSON:
{{
  "topics": [
    {{
      "title": "Apple",
      "article_indices": [0, 3, 7]
    }},
    {{
      "title": "Google",
      "article_indices": [1, 5]
    }}
  ]
}}

Important: Every article index from 0 to {last_index} must appear in exactly one topic."""


class Clusterer:
    def __init__(
        self,
        reasoning: Reasoning,
        *,
        retry: RetryPolicy = REASONING_RETRY_POLICY,
        failure_log: FailureLog | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.reasoning = reasoning
        self.retry = retry
        self.failure_log = failure_log or MemoryFailureLog()
        self.sleep = sleep

    def cluster(self, items: Sequence[EnrichedItem]) -> PipelineResult:
        """Partition ``items`` into topics, degrading to one topic if the service fails."""
        if not items:
            return PipelineResult(topics=())
        if len(items) == 1:
            return PipelineResult(topics=(Topic(title=SINGLE_TOPIC_TITLE, items=tuple(items)),))

        prompt = build_cluster_prompt(items)

        def _call() -> list[tuple[str, list[int]]]:
            reply = self.reasoning.complete(prompt, max_tokens=MAX_TOKENS, label="cluster")
            return parse_groups(reply, len(items))

        try:
            groups = retry_call(
                _call,
                self.retry,
                classify=classify_reasoning_failure,
                label="cluster",
                sleep=self.sleep,
            )
        except PipelineError as exc:
            raise_for_credentials(exc)
            reason = f"Clustering failed, using chronological fallback: {exc}"
            LOGGER.warning("%s", reason)
            self.failure_log.record(FailureRecord(stage="cluster", reason=reason))
            return fallback_result(items, reason)

        topics = tuple(
            Topic(title=title, items=tuple(items[index] for index in indices))
            for title, indices in groups
        )
        LOGGER.info("Organized %s items into %s topics", len(items), len(topics))
        return PipelineResult(topics=topics)


def build_cluster_prompt(items: Sequence[EnrichedItem]) -> str:
    lines = []
    for index, enriched in enumerate(items):
        digest = enriched.digest
        first_point = digest.bullets[0] if isinstance(digest, Complete) else ""
        lines.append(f"{index}: {enriched.item.title} - {first_point}")
    return CLUSTER_PROMPT.format(articles="\n".join(lines), last_index=len(items) - 1)


def parse_groups(reply: str, item_count: int) -> list[tuple[str, list[int]]]:
    """Parse and validate a clustering reply.

    Every index in ``range(item_count)`` must appear exactly once across all
    groups. Groups without indices are dropped.

    Raises:
        MalformedResponseError: unparseable JSON, wrong shape, an out-of-range or
            repeated index, or an index that no group claims.
    """
    payload = parse_json_object(reply)
    raw_topics = payload.get("topics")
    if not isinstance(raw_topics, list) or not raw_topics:
        raise MalformedResponseError("Clustering reply has no 'topics' list")

    seen: set[int] = set()
    groups: list[tuple[str, list[int]]] = []
    for raw in raw_topics:
        title, indices = _parse_group(raw)
        for index in indices:
            if not 0 <= index < item_count:
                raise MalformedResponseError(f"Index {index} out of range for {item_count} items")
            if index in seen:
                raise MalformedResponseError(f"Index {index} assigned to more than one topic")
            seen.add(index)
        if indices:
            groups.append((title, indices))

    missing = sorted(set(range(item_count)) - seen)
    if missing:
        raise MalformedResponseError(f"Items missing from clustering reply: {missing}")
    return groups


def _parse_group(raw: Any) -> tuple[str, list[int]]:
    if not isinstance(raw, dict):
        raise MalformedResponseError("Topic entry is not an object")
    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        raise MalformedResponseError("Topic entry has no title")
    indices = raw.get("article_indices")
    if not isinstance(indices, list):
        raise MalformedResponseError(f"Topic {title!r} has no 'article_indices' list")
    for index in indices:
        # bool is an int subclass; true/false are not indices.
        if isinstance(index, bool) or not isinstance(index, int):
            raise MalformedResponseError(f"Topic {title!r} has non-integer index {index!r}")
    return title.strip(), indices


def fallback_result(items: Sequence[EnrichedItem], reason: str) -> PipelineResult:
    """One topic with every item: dated items oldest first, then undated in input order."""
    ordered = sorted(items, key=_chronological_key)
    return PipelineResult(
        topics=(Topic(title=FALLBACK_TOPIC_TITLE, items=tuple(ordered)),),
        degraded=True,
        degraded_reason=reason,
    )


def _chronological_key(enriched: EnrichedItem) -> tuple[bool, float]:
    published = enriched.published_at
    if published is None:
        # sorted() is stable, so undated items keep their input order.
        return (True, 0.0)
    return (False, published.timestamp())
