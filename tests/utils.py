from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from typing import Any

from telemetry.config import MetricsConfig
from telemetry.errors import TransportError
from telemetry.point import Batch, Point


class RecordingSender:
    """Sender that records every batch it is asked to deliver."""

    def __init__(self) -> None:
        self.batches: list[Batch] = []
        self.calls = 0
        self._lock = threading.Lock()
        self.sent = threading.Event()

    def send(self, batch: Batch) -> None:
        with self._lock:
            self.calls += 1
            self.batches.append(batch)
        self.sent.set()

    @property
    def points(self) -> list[Point]:
        with self._lock:
            return [point for batch in self.batches for point in batch]


class SlowSender(RecordingSender):
    """Sender that sleeps before recording, simulating a slow collector."""

    def __init__(self, delay_s: float) -> None:
        super().__init__()
        self.delay_s = delay_s

    def send(self, batch: Batch) -> None:
        time.sleep(self.delay_s)
        super().send(batch)


class FailingSender(RecordingSender):
    """Sender that raises the given errors in order, then succeeds."""

    def __init__(self, errors: Iterable[TransportError]) -> None:
        super().__init__()
        self._errors = list(errors)

    def send(self, batch: Batch) -> None:
        with self._lock:
            self.calls += 1
            error = self._errors.pop(0) if self._errors else None
            if error is None:
                self.batches.append(batch)
        if error is not None:
            raise error
        self.sent.set()


def make_point(name: str = "cpu", value: float = 1.0, **tags: str) -> Point:
    return Point.create(name, tags or {"env": "test"}, {"value": value}, timestamp_ns=1_000)


def build_test_config(**overrides: Any) -> MetricsConfig:
    data: dict[str, Any] = {
        "enabled": True,
        "url": "http://collector.test:8086",
        "database": "test",
        "buffer_capacity": 1_000,
        "max_batch_count": 100,
        "flush_interval_s": 60.0,
        "request_timeout_s": 1.0,
        "max_attempts": 3,
        "base_delay_s": 0.0,
        "max_delay_s": 0.0,
        "shutdown_grace_s": 2.0,
        "report_stats": False,
    }
    data.update(overrides)
    return MetricsConfig.model_validate(data)
