"""Health counters of the shipping pipeline itself."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class PipelineStats:
    """Point-in-time view of pipeline counters.

    Attributes:
        points_submitted: Points accepted for validation from call sites
        points_dropped: Points lost to overflow, shutdown, or malformed input
        points_filtered: Points below the configured minimum level
        points_written: Points acknowledged by the collector
        points_failed: Points in batches that exhausted their retries
        batches_sent: Batches acknowledged by the collector
        batches_failed: Batches dropped after a terminal transport error
        queued: Points waiting in the buffer
    """

    points_submitted: int = 0
    points_dropped: int = 0
    points_filtered: int = 0
    points_written: int = 0
    points_failed: int = 0
    batches_sent: int = 0
    batches_failed: int = 0
    queued: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class StatsCollector:
    """Thread-safe counters shared by producers and the batch worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._submitted = 0
        self._filtered = 0
        self._written = 0
        self._failed = 0
        self._batches_sent = 0
        self._batches_failed = 0

    def record_submitted(self) -> None:
        with self._lock:
            self._submitted += 1

    def record_filtered(self) -> None:
        with self._lock:
            self._filtered += 1

    def record_batch_sent(self, points: int) -> None:
        with self._lock:
            self._batches_sent += 1
            self._written += points

    def record_batch_failed(self, points: int) -> None:
        with self._lock:
            self._batches_failed += 1
            self._failed += points

    def snapshot(self, *, dropped: int, queued: int) -> PipelineStats:
        with self._lock:
            return PipelineStats(
                points_submitted=self._submitted,
                points_dropped=dropped,
                points_filtered=self._filtered,
                points_written=self._written,
                points_failed=self._failed,
                batches_sent=self._batches_sent,
                batches_failed=self._batches_failed,
                queued=queued,
            )
