"""Tests for the background batch worker."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from telemetry.batcher import BatchWorker
from telemetry.buffer import PointBuffer
from telemetry.errors import FatalTransportError
from telemetry.point import Batch, Point
from telemetry.stats import StatsCollector
from tests.utils import FailingSender, RecordingSender, SlowSender, make_point


def _fill(buffer: PointBuffer, n: int) -> list[Point]:
    points = [make_point(value=float(i)) for i in range(n)]
    for p in points:
        buffer.offer(p)
    return points


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class TestTriggers:
    """Tests for count and interval flush triggers."""

    def test_full_batch_ships_without_waiting_for_interval(self) -> None:
        """Test a full batch ships before the interval elapses."""
        buffer = PointBuffer(capacity=1_000)
        sender = RecordingSender()
        worker = BatchWorker(buffer, sender, max_batch_count=10, flush_interval_s=60.0)
        worker.start()
        try:
            points = _fill(buffer, 10)
            assert _wait_for(lambda: sender.calls == 1, timeout=2.0)
            assert list(sender.batches[0]) == points
        finally:
            worker.stop(grace_s=2.0)

    def test_partial_batch_ships_after_interval(self) -> None:
        """Test a partial batch ships once the interval elapses."""
        buffer = PointBuffer(capacity=1_000)
        sender = RecordingSender()
        worker = BatchWorker(buffer, sender, max_batch_count=100, flush_interval_s=0.1)
        worker.start()
        try:
            start = time.monotonic()
            points = _fill(buffer, 3)
            assert sender.sent.wait(2.0)
            assert time.monotonic() - start < 1.0
            assert sender.points == points
        finally:
            worker.stop(grace_s=2.0)

    def test_large_backlog_is_split_into_bounded_batches(self) -> None:
        """Test a large backlog ships as several bounded batches."""
        buffer = PointBuffer(capacity=1_000)
        sender = RecordingSender()
        worker = BatchWorker(buffer, sender, max_batch_count=10, flush_interval_s=60.0)
        points = _fill(buffer, 35)
        worker.start()
        try:
            assert worker.request_flush().wait(5.0)
            assert [len(b) for b in sender.batches] == [10, 10, 10, 5]
            assert sender.points == points
        finally:
            worker.stop(grace_s=2.0)

    def test_byte_limit_bounds_batches(self) -> None:
        """Test max_batch_bytes bounds each batch."""
        buffer = PointBuffer(capacity=1_000)
        sender = RecordingSender()
        points = _fill(buffer, 6)
        line_bytes = len(points[0].name)  # any value smaller than one encoded line
        worker = BatchWorker(
            buffer, sender, max_batch_count=100, max_batch_bytes=line_bytes, flush_interval_s=60.0
        )
        worker.start()
        try:
            assert worker.request_flush().wait(5.0)
            assert [len(b) for b in sender.batches] == [1] * 6
        finally:
            worker.stop(grace_s=2.0)


class TestSerialization:
    """Tests for one-in-flight shipping."""

    def test_only_one_batch_in_flight(self) -> None:
        """Test sends never overlap."""
        buffer = PointBuffer(capacity=1_000)
        in_flight = 0
        peak = 0
        lock = threading.Lock()

        class CountingSender:
            def send(self, batch: Batch) -> None:
                nonlocal in_flight, peak
                with lock:
                    in_flight += 1
                    peak = max(peak, in_flight)
                time.sleep(0.01)
                with lock:
                    in_flight -= 1

        worker = BatchWorker(buffer, CountingSender(), max_batch_count=5, flush_interval_s=0.05)
        worker.start()
        try:
            _fill(buffer, 50)
            assert worker.request_flush().wait(5.0)
        finally:
            worker.stop(grace_s=2.0)
        assert peak == 1


class TestFailures:
    """Tests for failure containment."""

    def test_failed_batch_is_dropped_and_counted(self) -> None:
        """Test a terminal send failure drops the batch and counts it."""
        buffer = PointBuffer(capacity=1_000)
        stats = StatsCollector()
        sender = FailingSender([FatalTransportError("unauthorized", status_code=401)])
        worker = BatchWorker(
            buffer, sender, max_batch_count=100, flush_interval_s=60.0, stats=stats
        )
        worker.start()
        try:
            _fill(buffer, 4)
            assert worker.request_flush().wait(5.0)
            _fill(buffer, 2)
            assert worker.request_flush().wait(5.0)
        finally:
            worker.stop(grace_s=2.0)

        snapshot = stats.snapshot(dropped=0, queued=0)
        assert snapshot.batches_failed == 1
        assert snapshot.points_failed == 4
        assert snapshot.batches_sent == 1
        assert snapshot.points_written == 2

    def test_unexpected_sender_error_does_not_kill_worker(self) -> None:
        """Test the worker survives an unexpected sender exception."""
        buffer = PointBuffer(capacity=1_000)
        calls = 0

        class ExplodingSender:
            def send(self, batch: Batch) -> None:
                nonlocal calls
                calls += 1
                if calls == 1:
                    raise RuntimeError("boom")

        worker = BatchWorker(buffer, ExplodingSender(), max_batch_count=100, flush_interval_s=60.0)
        worker.start()
        try:
            _fill(buffer, 1)
            assert worker.request_flush().wait(5.0)
            _fill(buffer, 1)
            assert worker.request_flush().wait(5.0)
            assert worker.running
        finally:
            worker.stop(grace_s=2.0)
        assert calls == 2


class TestShutdown:
    """Tests for stop() and the grace period."""

    def test_stop_flushes_queued_points_in_one_call(self) -> None:
        """Test stop ships every queued point before returning."""
        buffer = PointBuffer(capacity=1_000)
        sender = RecordingSender()
        worker = BatchWorker(buffer, sender, max_batch_count=100, flush_interval_s=60.0)
        worker.start()
        points = _fill(buffer, 25)

        assert worker.stop(grace_s=5.0) is True
        assert sender.calls == 1
        assert sender.points == points
        assert not worker.running

    def test_stop_drops_points_left_after_grace(self) -> None:
        """Test points still queued after the grace period are dropped."""
        buffer = PointBuffer(capacity=1_000)
        sender = SlowSender(delay_s=0.5)
        worker = BatchWorker(buffer, sender, max_batch_count=5, flush_interval_s=60.0)
        worker.start()
        _fill(buffer, 20)

        assert worker.stop(grace_s=0.1) is False
        assert len(buffer) == 0
        shipped_or_in_flight = 20 - buffer.dropped
        assert 0 < buffer.dropped < 20
        assert shipped_or_in_flight % 5 == 0

    def test_flush_after_stop_completes_immediately(self) -> None:
        """Test a flush requested after stop is already done."""
        buffer = PointBuffer(capacity=10)
        worker = BatchWorker(buffer, RecordingSender(), max_batch_count=5, flush_interval_s=60.0)
        worker.start()
        worker.stop(grace_s=1.0)

        assert worker.request_flush().done

    def test_extra_points_are_appended_at_flush(self) -> None:
        """Test extra points ride along with the flushed batch."""
        buffer = PointBuffer(capacity=100)
        sender = RecordingSender()
        extra = Point.create("counter", fields={"count": 3}, timestamp_ns=1)
        worker = BatchWorker(
            buffer,
            sender,
            max_batch_count=100,
            flush_interval_s=60.0,
            extra_points=lambda: [extra],
        )
        worker.start()
        points = _fill(buffer, 2)
        worker.stop(grace_s=2.0)

        assert sender.points == [*points, extra]

    def test_failing_extra_points_do_not_block_queued_points(self) -> None:
        """Test queued points still ship when the extra points hook raises."""
        buffer = PointBuffer(capacity=100)
        sender = RecordingSender()

        def broken() -> list[Point]:
            raise RuntimeError("boom")

        worker = BatchWorker(
            buffer,
            sender,
            max_batch_count=100,
            flush_interval_s=60.0,
            extra_points=broken,
        )
        worker.start()
        points = _fill(buffer, 3)

        assert worker.request_flush().wait(5.0)
        assert sender.points == points
        worker.stop(grace_s=2.0)
