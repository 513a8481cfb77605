"""Per-item digests (bullets + optional quote) from the reasoning service."""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, Sequence

from errors import MalformedResponseError, PipelineError
from failure_log import FailureLog, FailureRecord, MemoryFailureLog
from models import MAX_BULLETS, Complete, Digest, ExtractedContent, Failed, Insufficient, ReferenceItem
from reasoning_client import Reasoning, classify_reasoning_failure, raise_for_credentials
from retry import REASONING_RETRY_POLICY, retry_call
from worker_pool import StagePolicy, run_bounded

LOGGER = logging.getLogger(__name__)

DEFAULT_ENRICH_POLICY = StagePolicy(pool_size=2, retry=REASONING_RETRY_POLICY)
CALL_SPACING_SECONDS = 0.5
CONTENT_CHAR_BUDGET = 10_000
MIN_CONTENT_CHARS = 100
MAX_TOKENS = 512

INSUFFICIENT_MARKER = "Insufficient content for summary"

_NUMBERED_RE = re.compile(r"^\d+[.)]\s*(.*)$")
_BULLET_MARKERS = ("-", "*", "•")

SUMMARY_PROMPT = """You are a text summarization specialist. Extract exactly 5 key points from the article below, and if there are any direct quotes, extract the most important one with attribution.

RULES:
1. Each point must be under 20 words
2. Use ONLY text from the article - no external knowledge
3. Each point must be supported by specific article content
4. If fewer than 5 valid points exist, respond with: "Insufficient content for summary"
5. Format: Bullet points using dashes (-)
6. Use only factual statements from the article text
7. If there are direct quotes in the article, select the most important one (often the first quote, but use your judgment)
8. The quote should be on a line starting with "QUOTE: " followed by the quote text in quotation marks and attribution
9. Format for quotes: QUOTE: "quote text" -- Speaker Name

Article:
{article}

Format your response as:
QUOTE: "the most important quote if one exists" -- Speaker Name
- First key point
- Second key point
- Third key point
- Fourth key point
- Fifth key point

If there are no quotes in the article, omit the QUOTE line entirely.
If there's a quote but no clear speaker attribution in the article, omit the QUOTE line."""


class Enricher:
    """Summarizes fetched items on a small pool sized for the provider's quota."""

    def __init__(
        self,
        reasoning: Reasoning,
        *,
        policy: StagePolicy = DEFAULT_ENRICH_POLICY,
        failure_log: FailureLog | None = None,
        spacing_seconds: float = CALL_SPACING_SECONDS,
        char_budget: int = CONTENT_CHAR_BUDGET,
        min_chars: int = MIN_CONTENT_CHARS,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.reasoning = reasoning
        self.policy = policy
        self.failure_log = failure_log or MemoryFailureLog()
        self.spacing_seconds = spacing_seconds
        self.char_budget = char_budget
        self.min_chars = min_chars
        self.sleep = sleep

    def enrich_all(
        self, pairs: Sequence[tuple[ReferenceItem, ExtractedContent | None]]
    ) -> dict[str, Digest]:
        """Return exactly one digest per item, keyed by item key."""
        digests: dict[str, Digest] = {}
        pending: list[tuple[ReferenceItem, ExtractedContent]] = []
        for item, content in pairs:
            if content is None or len(content.text.strip()) < self.min_chars:
                digests[item.key] = Insufficient()
            else:
                pending.append((item, content))

        LOGGER.info(
            "Summarizing %s items (pool=%s, skipped_without_content=%s)",
            len(pending),
            self.policy.pool_size,
            len(digests),
        )
        summarized = run_bounded(
            pending,
            self._summarize_pair,
            key=lambda pair: pair[0].key,
            max_workers=self.policy.pool_size,
            label="enrich",
        )
        digests.update(summarized)

        counts = {kind: 0 for kind in ("complete", "insufficient", "failed")}
        for digest in digests.values():
            counts[digest.kind] += 1
        LOGGER.info("Summaries: %s", ", ".join(f"{k}={v}" for k, v in counts.items()))
        return digests

    def _summarize_pair(self, pair: tuple[ReferenceItem, ExtractedContent]) -> Digest:
        item, content = pair
        return self.summarize(item, content.text)

    def summarize(self, item: ReferenceItem, text: str) -> Digest:
        prompt = SUMMARY_PROMPT.format(article=truncate(text, self.char_budget))
        label = f"summarize {item.url}"

        def _call() -> Digest:
            reply = self.reasoning.complete(prompt, max_tokens=MAX_TOKENS, label=label)
            return parse_digest(reply, label=label)

        try:
            digest = retry_call(
                _call,
                self.policy.retry,
                classify=classify_reasoning_failure,
                label=label,
                sleep=self.sleep,
            )
        except PipelineError as exc:
            raise_for_credentials(exc)
            LOGGER.error("Summarization failed for %s: %s", item.url, exc)
            self.failure_log.record(
                FailureRecord(stage="enrich", reason=str(exc), item_key=item.key)
            )
            return Failed(reason=str(exc))

        # Holds the pool slot so successive calls stay spaced out.
        (self.sleep or time.sleep)(self.spacing_seconds)
        return digest


def truncate(text: str, budget: int) -> str:
    """Cut text to at most ``budget`` characters (code points, never mid-character)."""
    if len(text) <= budget:
        return text
    return text[:budget]


def parse_digest(reply: str, *, label: str = "digest") -> Digest:
    """Turn a free-text summary reply into a digest.

    Accepts ``-``, ``*``, ``•`` and numbered bullets and an optional ``QUOTE:``
    line. Keeps at most five bullets; fewer are accepted with a warning.

    Raises:
        MalformedResponseError: the reply held no bullets at all.
    """
    if INSUFFICIENT_MARKER.lower() in reply.lower():
        return Insufficient()

    quote, bullets = parse_bullets_and_quote(reply)

    if not bullets:
        raise MalformedResponseError(f"No bullet points found in reply ({label})")
    if len(bullets) > MAX_BULLETS:
        LOGGER.info("Dropping %s extra bullets (%s)", len(bullets) - MAX_BULLETS, label)
        bullets = bullets[:MAX_BULLETS]
    elif len(bullets) < MAX_BULLETS:
        LOGGER.warning("Expected %s bullets, got %s (%s)", MAX_BULLETS, len(bullets), label)

    return Complete(bullets=tuple(bullets), quote=quote)


def parse_bullets_and_quote(text: str) -> tuple[str | None, list[str]]:
    quote: str | None = None
    bullets: list[str] = []

    for line in text.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue

        if trimmed.upper().startswith("QUOTE:"):
            quote_text = trimmed[len("QUOTE:"):].strip()
            if quote_text and quote is None:
                quote = quote_text
            continue

        if trimmed[0].isdigit():
            match = _NUMBERED_RE.match(trimmed)
            stripped = match.group(1).strip() if match else ""
            if stripped:
                bullets.append(stripped)
            continue

        if trimmed.startswith(_BULLET_MARKERS):
            stripped = trimmed[1:].strip()
            if stripped:
                bullets.append(stripped)

    return quote, bullets
