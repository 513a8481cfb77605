"""Runs fetch → enrich → cluster and guarantees every input item comes out."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, Collection, Iterable, Sequence

import requests

from clusterer import Clusterer
from config import PipelineOptions
from content_fetcher import ContentFetcher, CredentialLookup
from enricher import Enricher
from errors import CompletenessError
from failure_log import FailureLog, MemoryFailureLog
from models import EnrichedItem, PipelineResult, ReferenceItem
from reasoning_client import Reasoning, ReasoningClient
from worker_pool import project

LOGGER = logging.getLogger(__name__)


def run(
    items: Sequence[ReferenceItem],
    credentials: CredentialLookup | None = None,
    options: PipelineOptions | None = None,
    *,
    reasoning: Reasoning | None = None,
    failure_log: FailureLog | None = None,
    session: requests.Session | None = None,
    sleep: Callable[[float], None] | None = None,
) -> PipelineResult:
    """Enrich and group ``items``; the result always holds each item exactly once.

    Args:
        items: Reference items with unique URLs, in discovery order.
        credentials: Optional domain -> credential header value lookup.
        options: Pool sizes, retry policies and provider settings.
        reasoning: Reasoning client; built from ``options`` when omitted.
        failure_log: Sink for per-item terminal failures.
        session: HTTP session for document fetches.
        sleep: Replacement for ``time.sleep`` (backoff and call spacing).

    Raises:
        ConfigurationError: no API key configured, or the reasoning service
            rejected it.
        ValueError: two items share a URL.
        CompletenessError: a stage lost or invented an item.
    """
    options = options or PipelineOptions()
    failure_log = failure_log or MemoryFailureLog()

    keys = [item.key for item in items]
    duplicates = sorted(key for key, count in Counter(keys).items() if count > 1)
    if duplicates:
        raise ValueError(f"Duplicate reference items: {duplicates}")

    if reasoning is None:
        reasoning = ReasoningClient(
            options.require_reasoning_key(),
            provider=options.reasoning_provider,
            model=options.reasoning_model,
            timeout=options.reasoning_timeout,
        )

    LOGGER.info("Pipeline start: %s items", len(items))

    fetcher = ContentFetcher(
        credentials=credentials,
        policy=options.fetch,
        session=session,
        failure_log=failure_log,
        min_chars=options.min_content_chars,
        timeout=options.fetch_timeout,
        credential_header=options.credential_header,
        sleep=sleep,
    )
    contents = fetcher.fetch_all(items)
    _check_stage("fetch", keys, contents.keys())
    ordered_contents = project(items, contents, key=lambda item: item.key)

    enricher = Enricher(
        reasoning,
        policy=options.enrich,
        failure_log=failure_log,
        spacing_seconds=options.call_spacing_seconds,
        char_budget=options.content_char_budget,
        min_chars=options.min_content_chars,
        sleep=sleep,
    )
    digests = enricher.enrich_all(list(zip(items, ordered_contents)))
    _check_stage("enrich", keys, digests.keys())

    enriched = [
        EnrichedItem(item=item, content=content, digest=digests[item.key])
        for item, content in zip(items, ordered_contents)
    ]

    clusterer = Clusterer(
        reasoning,
        retry=options.cluster_retry,
        failure_log=failure_log,
        sleep=sleep,
    )
    result = clusterer.cluster(enriched)
    _check_stage("cluster", keys, (member.key for member in result.items()))

    if result.degraded:
        LOGGER.warning("Pipeline finished in degraded mode: %s", result.degraded_reason)
    LOGGER.info(
        "Pipeline complete: items=%s topics=%s degraded=%s",
        len(enriched),
        len(result.topics),
        result.degraded,
    )
    return result


def _check_stage(stage: str, keys: Collection[str], produced: Iterable[str]) -> None:
    """Every input key must be produced exactly once."""
    counts = Counter(produced)
    missing = sorted(set(keys) - counts.keys())
    extra = sorted(counts.keys() - set(keys))
    repeated = sorted(key for key, count in counts.items() if count > 1)
    if missing or extra or repeated:
        raise CompletenessError(
            f"{stage} stage broke completeness: "
            f"missing={missing} extra={extra} repeated={repeated}"
        )
