"""Append-only failure log for items that ended without enrichment."""

from __future__ import annotations

import csv
import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

LOGGER = logging.getLogger(__name__)

CSV_COLUMNS = [
    "timestamp",
    "item_key",
    "domain",
    "stage",   # fetch | enrich | cluster
    "reason",
]


@dataclass(frozen=True, slots=True)
class FailureRecord:
    stage: str
    reason: str
    item_key: str | None = None
    domain: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class FailureLog(Protocol):
    def record(self, record: FailureRecord) -> None: ...


class MemoryFailureLog:
    """Keeps records in a list; used by tests and dry runs."""

    def __init__(self) -> None:
        self.records: list[FailureRecord] = []

    def record(self, record: FailureRecord) -> None:
        self.records.append(record)


class CsvFailureLog:
    """Appends one CSV row per record, creating the file with a header if needed."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, record: FailureRecord) -> None:
        row = {
            "timestamp": record.timestamp.isoformat(),
            "item_key": record.item_key or "",
            "domain": record.domain or "",
            "stage": record.stage,
            "reason": _as_text(record.reason, max_len=400),
        }
        with self._lock:
            write_header = not self.path.exists() or self.path.stat().st_size == 0
            with self.path.open("a", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(fh, fieldnames=CSV_COLUMNS)
                if write_header:
                    writer.writeheader()
                writer.writerow(row)
        LOGGER.debug("Logged %s failure for %s to %s", record.stage, record.item_key, self.path)


def _as_text(value: str, max_len: int = 500) -> str:
    """Collapse newlines and truncate to max_len chars."""
    s = " ".join(value.split())
    if len(s) > max_len:
        return s[: max_len - 1] + "…"
    return s
