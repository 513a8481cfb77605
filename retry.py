"""Retry loop and backoff schedules shared by every remote call."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Literal, TypeVar

from errors import RetryExhaustedError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    TERMINAL = "terminal"


@dataclass(frozen=True, slots=True)
class BackoffSchedule:
    """Delay before retry number ``attempt`` (1-based, counting the failed call)."""

    kind: Literal["exponential", "linear"]
    base_seconds: float
    cap_seconds: float | None = None

    def delay(self, attempt: int) -> float:
        if self.kind == "exponential":
            seconds = self.base_seconds * (2 ** (attempt - 1))
        else:
            seconds = self.base_seconds * attempt
        if self.cap_seconds is not None:
            seconds = min(seconds, self.cap_seconds)
        return seconds


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int
    backoff: BackoffSchedule
    rate_limit_backoff: BackoffSchedule | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def delay_for(self, kind: FailureKind, attempt: int) -> float:
        if kind is FailureKind.RATE_LIMITED and self.rate_limit_backoff is not None:
            return self.rate_limit_backoff.delay(attempt)
        return self.backoff.delay(attempt)


# 500ms, 1s, 2s
FETCH_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    backoff=BackoffSchedule("exponential", 0.5),
)

# Generic failures: 1, 2, 4, 8, 16s. Rate limits: 15, 30, 45, 60s.
REASONING_RETRY_POLICY = RetryPolicy(
    max_attempts=5,
    backoff=BackoffSchedule("exponential", 1.0),
    rate_limit_backoff=BackoffSchedule("linear", 15.0, cap_seconds=60.0),
)


def retry_call(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    classify: Callable[[Exception], FailureKind],
    label: str,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Run ``operation`` until it succeeds, fails terminally, or runs out of attempts.

    Terminal failures are re-raised unchanged on the first occurrence. Retryable
    failures sleep according to the policy before the next attempt; there is no
    sleep after the final attempt.

    Raises:
        RetryExhaustedError: every attempt failed with a retryable error.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return operation()
        except Exception as exc:
            kind = classify(exc)
            if kind is FailureKind.TERMINAL:
                LOGGER.debug("%s failed terminally on attempt %s: %s", label, attempt, exc)
                raise
            if attempt == policy.max_attempts:
                raise RetryExhaustedError(label, attempt, exc) from exc
            delay = policy.delay_for(kind, attempt)
            if kind is FailureKind.RATE_LIMITED:
                LOGGER.warning(
                    "%s rate limited on attempt %s/%s, waiting %.1fs",
                    label,
                    attempt,
                    policy.max_attempts,
                    delay,
                )
            else:
                LOGGER.info(
                    "%s failed on attempt %s/%s, retrying in %.1fs: %s",
                    label,
                    attempt,
                    policy.max_attempts,
                    delay,
                    exc,
                )
            (sleep or time.sleep)(delay)

    raise RuntimeError(f"{label}: retry policy allows no attempts")
