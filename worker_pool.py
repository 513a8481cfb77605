"""Bounded-concurrency map keyed by stable item identity."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Hashable, Mapping, Sequence, TypeVar

from errors import CompletenessError
from retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")
K = TypeVar("K", bound=Hashable)


@dataclass(frozen=True, slots=True)
class StagePolicy:
    """Concurrency and retry settings for one pipeline stage."""

    pool_size: int
    retry: RetryPolicy


def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], R],
    *,
    key: Callable[[T], K],
    max_workers: int,
    label: str,
) -> dict[K, R]:
    """Run ``worker`` over ``items`` with at most ``max_workers`` in flight.

    Results are collected in completion order into a dict keyed by ``key(item)``;
    use ``project`` to restore input order. Workers are expected to turn their
    own failures into terminal results, so an escaping exception is re-raised.
    """
    keys = [key(item) for item in items]
    if len(set(keys)) != len(keys):
        raise ValueError(f"{label}: duplicate item keys in input")

    results: dict[K, R] = {}
    if not items:
        return results

    workers = max(1, min(max_workers, len(items)))
    LOGGER.debug("%s: %s items on %s workers", label, len(items), workers)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=label) as executor:
        futures = {executor.submit(worker, item): item_key for item, item_key in zip(items, keys)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()

    return results


def project(items: Sequence[T], results: Mapping[K, R], *, key: Callable[[T], K]) -> list[R]:
    """Return ``results`` in the order of ``items``."""
    ordered: list[R] = []
    for item in items:
        item_key = key(item)
        if item_key not in results:
            raise CompletenessError(f"No result for item {item_key!r}")
        ordered.append(results[item_key])
    return ordered
