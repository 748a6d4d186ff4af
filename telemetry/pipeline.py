"""Composition root of the telemetry shipping pipeline.

``MetricsPipeline`` wires the point buffer, batch worker, and sender for one
collector. Producers call :meth:`MetricsPipeline.submit_point` from any
thread; the call validates the point, stamps host identity, and enqueues it
without waiting on I/O. Nothing in this module raises into producer code.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping

import structlog

from telemetry.batcher import BatchWorker
from telemetry.buffer import PointBuffer
from telemetry.config import MetricsConfig
from telemetry.counter import CounterStore
from telemetry.errors import PointError
from telemetry.host import HOST_TAG, host_id
from telemetry.point import FieldValue, Point, now_ns, validate_name
from telemetry.retry import BackoffConfig, RetryingSender
from telemetry.stats import PipelineStats, StatsCollector
from telemetry.transport import HttpTransport, Sender

logger = structlog.get_logger(__name__)

STATS_POINT_NAME = "metrics_pipeline"


class MetricsPipeline:
    """Buffer, batch worker, and transport for one collector.

    The worker starts lazily on first submission or on :meth:`ensure_started`.
    When the config is disabled every operation is a no-op.
    """

    def __init__(self, config: MetricsConfig, sender: Sender | None = None) -> None:
        self.config = config
        self._sender = sender
        self._start_lock = threading.Lock()
        self._started = False
        self._shut_down = False
        self._stats = StatsCollector()
        self._counters = CounterStore()
        self._last_report = PipelineStats()
        self._buffer = PointBuffer(config.buffer_capacity, config.drop_policy)
        self._worker: BatchWorker | None = None
        self._min_level = config.min_level_no

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.running

    def ensure_started(self) -> None:
        """Start the batch worker once; later calls return immediately."""
        if self._started or not self.config.enabled:
            return
        with self._start_lock:
            if self._started or self._shut_down:
                return
            sender = self._sender or self._build_sender()
            self._sender = sender
            self._worker = BatchWorker(
                self._buffer,
                sender,
                max_batch_count=self.config.max_batch_count,
                max_batch_bytes=self.config.max_batch_bytes,
                flush_interval_s=self.config.flush_interval_s,
                stats=self._stats,
                extra_points=self._extra_points,
            )
            self._worker.start()
            self._started = True
        logger.info(
            "telemetry.pipeline.started",
            url=self.config.url,
            database=self.config.database,
            buffer_capacity=self.config.buffer_capacity,
            max_batch_count=self.config.max_batch_count,
            flush_interval_s=self.config.flush_interval_s,
        )

    def _build_sender(self) -> Sender:
        return RetryingSender(
            HttpTransport(self.config),
            config=BackoffConfig.from_metrics_config(self.config),
        )

    def submit_point(
        self,
        name: str,
        tags: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        fields: Mapping[str, FieldValue] | Iterable[tuple[str, FieldValue]] | None = None,
        *,
        level: int = logging.INFO,
    ) -> None:
        """Build a point stamped with the current time and enqueue it."""
        if not self.config.enabled:
            return
        try:
            point = Point.create(name, tags, fields, level=level)
        except PointError as exc:
            self._stats.record_submitted()
            self._buffer.count_dropped(1)
            logger.warning("telemetry.point_invalid", metric_name=name, error=str(exc))
            return
        self.submit(point)

    def submit(self, point: Point) -> None:
        """Enqueue a prebuilt point, tagging it with the host identity."""
        if not self.config.enabled:
            return
        if point.level < self._min_level:
            self._stats.record_filtered()
            return
        self.ensure_started()
        self._stats.record_submitted()
        self._buffer.offer(point.with_tag(HOST_TAG, host_id()))

    def submit_counter(self, name: str, count: int, bucket: int = 0) -> None:
        """Merge ``count`` into the pending total for ``(name, bucket)``."""
        if not self.config.enabled or count == 0:
            return
        try:
            validate_name(name)
            if isinstance(count, bool) or not isinstance(count, int):
                raise PointError(f"counter count must be an int, got {type(count).__name__}")
        except PointError as exc:
            self._buffer.count_dropped(1)
            logger.warning("telemetry.counter_invalid", metric_name=name, error=str(exc))
            return
        self.ensure_started()
        if not self._counters.add(name, count, bucket):
            self._buffer.count_dropped(1)
            logger.debug("telemetry.counter_dropped", metric_name=name)

    def flush_and_wait(self, timeout: float) -> bool:
        """Force an out-of-cycle flush and wait up to ``timeout`` seconds for it.

        Returns:
            True if every point queued at call time reached a terminal outcome
        """
        if not self.config.enabled:
            return True
        worker = self._worker
        if worker is None or not worker.running:
            return len(self._buffer) == 0
        return worker.request_flush().wait(timeout)

    def shutdown(self, grace_s: float | None = None) -> bool:
        """Stop the worker after a final best-effort flush.

        Returns:
            True if the final flush completed within the grace period
        """
        with self._start_lock:
            if self._shut_down:
                return True
            self._shut_down = True
            worker = self._worker
        grace = self.config.shutdown_grace_s if grace_s is None else grace_s
        finished = True
        if worker is not None:
            finished = worker.stop(grace)
        else:
            self._buffer.close()
        close = getattr(self._sender, "close", None)
        if finished and callable(close):
            close()
        logger.info("telemetry.pipeline.shutdown", finished=finished, **self.stats().to_dict())
        return finished

    def stats(self) -> PipelineStats:
        return self._stats.snapshot(dropped=self._buffer.dropped, queued=len(self._buffer))

    def _extra_points(self) -> list[Point]:
        points = self._counters.take_points(host_id())
        rejected = self._counters.take_rejected()
        if rejected:
            self._buffer.count_dropped(rejected)
        if self.config.report_stats:
            report = self._stats_point()
            if report is not None:
                points.append(report)
        return points

    def _stats_point(self) -> Point | None:
        current = self.stats()
        last, self._last_report = self._last_report, current
        submitted = current.points_submitted - last.points_submitted
        dropped = current.points_dropped - last.points_dropped
        failed = current.batches_failed - last.batches_failed
        if not (submitted or dropped or failed):
            return None
        return Point(
            name=STATS_POINT_NAME,
            timestamp_ns=now_ns(),
            tags=((HOST_TAG, host_id()),),
            fields=(
                ("points_submitted", submitted),
                ("points_dropped", dropped),
                ("points_written", current.points_written - last.points_written),
                ("points_failed", current.points_failed - last.points_failed),
                ("batches_sent", current.batches_sent - last.batches_sent),
                ("batches_failed", failed),
                ("queued", current.queued),
            ),
        )
