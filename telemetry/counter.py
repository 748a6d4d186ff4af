"""Accumulating counters merged between flushes.

Counter increments are cheap: they only add to an in-memory total keyed by
``(name, bucket)``. At each flush the batch worker turns every pending
total into one point with an integer ``count`` field.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import structlog

from telemetry.errors import PointError
from telemetry.host import HOST_TAG
from telemetry.point import Point, now_ns

if TYPE_CHECKING:
    from telemetry.pipeline import MetricsPipeline

logger = structlog.get_logger(__name__)


class CounterStore:
    """Pending counter totals awaiting the next flush."""

    def __init__(self, max_keys: int = 10_000) -> None:
        self._max_keys = max_keys
        self._lock = threading.Lock()
        self._totals: dict[tuple[str, int], int] = {}
        self._rejected = 0

    def add(self, name: str, count: int, bucket: int = 0) -> bool:
        """Merge ``count`` into the pending total; False when the key space is full."""
        key = (name, bucket)
        with self._lock:
            if key not in self._totals and len(self._totals) >= self._max_keys:
                return False
            self._totals[key] = self._totals.get(key, 0) + count
        return True

    def take_points(self, host: str | None = None) -> list[Point]:
        """Remove all pending totals and return them as points.

        A total that cannot form a valid point is skipped and counted in
        :meth:`take_rejected`.
        """
        with self._lock:
            totals, self._totals = self._totals, {}
        timestamp = now_ns()
        points = []
        rejected = 0
        for (name, bucket), count in totals.items():
            tags = [("bucket", str(bucket))]
            if host is not None:
                tags.append((HOST_TAG, host))
            try:
                point = Point(
                    name=name,
                    timestamp_ns=timestamp,
                    tags=tuple(tags),
                    fields=(("count", count),),
                )
            except PointError as exc:
                rejected += 1
                logger.warning("telemetry.counter_invalid", metric_name=name, error=str(exc))
                continue
            points.append(point)
        if rejected:
            with self._lock:
                self._rejected += rejected
        return points

    def take_rejected(self) -> int:
        """Return and reset the number of totals skipped by :meth:`take_points`."""
        with self._lock:
            rejected, self._rejected = self._rejected, 0
        return rejected

    def __len__(self) -> int:
        with self._lock:
            return len(self._totals)


class Counter:
    """Named event counter.

    Every ``metricsrate`` increments, the accumulated delta is handed to the
    pipeline; every ``lograte`` increments the running total is logged.
    """

    def __init__(
        self,
        name: str,
        *,
        pipeline: MetricsPipeline | None = None,
        lograte: int = 1_000,
        metricsrate: int = 1,
    ) -> None:
        if not name:
            raise ValueError("counter name must not be empty")
        if lograte <= 0 or metricsrate <= 0:
            raise ValueError("lograte and metricsrate must be > 0")
        self.name = name
        self._pipeline = pipeline
        self._lograte = lograte
        self._metricsrate = metricsrate
        self._lock = threading.Lock()
        self._counts = 0
        self._times = 0
        self._unreported = 0

    def inc(self, events: int = 1, bucket: int = 0) -> None:
        with self._lock:
            self._counts += events
            self._times += 1
            self._unreported += events
            times, counts = self._times, self._counts
            delta = 0
            if times % self._metricsrate == 0:
                delta, self._unreported = self._unreported, 0

        if times % self._lograte == 0:
            logger.info("telemetry.counter", name=self.name, counts=counts, samples=times)
        if delta:
            self._target().submit_counter(self.name, delta, bucket)

    def _target(self) -> MetricsPipeline:
        if self._pipeline is not None:
            return self._pipeline
        from telemetry.api import get_pipeline

        return get_pipeline()

    @property
    def counts(self) -> int:
        with self._lock:
            return self._counts
