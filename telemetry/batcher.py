"""Background worker that drains the point buffer into batches.

A batch is shipped when the buffer holds ``max_batch_count`` points, when
``flush_interval_s`` has elapsed since the last flush, on an explicit flush
request, or on stop. Sends are synchronous on the worker thread, so at most
one batch is in flight at any time.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import structlog

from telemetry.buffer import PointBuffer
from telemetry.errors import TransportError
from telemetry.point import Batch, Point
from telemetry.stats import StatsCollector
from telemetry.transport import Sender

logger = structlog.get_logger(__name__)


class FlushRequest:
    """Handle for an out-of-cycle flush; set once its batches reach a terminal outcome."""

    def __init__(self) -> None:
        self._done = threading.Event()

    def complete(self) -> None:
        self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    @property
    def done(self) -> bool:
        return self._done.is_set()


class BatchWorker:
    """Single consumer of a :class:`PointBuffer`."""

    def __init__(
        self,
        buffer: PointBuffer,
        sender: Sender,
        *,
        max_batch_count: int = 1_000,
        max_batch_bytes: int | None = None,
        flush_interval_s: float = 10.0,
        stats: StatsCollector | None = None,
        extra_points: Callable[[], list[Point]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_batch_count <= 0:
            raise ValueError(f"max_batch_count must be > 0, got {max_batch_count}")
        if flush_interval_s <= 0:
            raise ValueError(f"flush_interval_s must be > 0, got {flush_interval_s}")
        self._buffer = buffer
        self._sender = sender
        self._max_batch_count = max_batch_count
        self._max_batch_bytes = max_batch_bytes
        self._flush_interval_s = flush_interval_s
        self._stats = stats or StatsCollector()
        self._extra_points = extra_points
        self._clock = clock

        self._lock = threading.Lock()
        self._requests: list[FlushRequest] = []
        self._stopping = False
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(
                target=self._run, name="telemetry-batch-worker", daemon=True
            )
            self._thread.start()
        logger.debug("telemetry.worker.started")

    def request_flush(self) -> FlushRequest:
        """Ask the worker to ship everything queued now, outside the normal cycle."""
        request = FlushRequest()
        with self._lock:
            if self._stopping or self._thread is None:
                request.complete()
                return request
            self._requests.append(request)
        self._buffer.wake()
        return request

    def stop(self, grace_s: float) -> bool:
        """Signal a final flush and wait up to ``grace_s`` for the worker to exit.

        Points still queued after the grace period are discarded and counted
        as dropped.

        Returns:
            True if the worker finished its final flush in time
        """
        with self._lock:
            self._stopping = True
            thread = self._thread
        self._buffer.close()
        self._buffer.wake()

        if thread is None:
            self._buffer.discard()
            return True
        thread.join(grace_s)
        finished = not thread.is_alive()
        if not finished:
            lost = self._buffer.discard()
            logger.warning("telemetry.worker.grace_expired", grace_s=grace_s, points_lost=lost)
        return finished

    def _run(self) -> None:
        last_flush = self._clock()
        while True:
            timeout = last_flush + self._flush_interval_s - self._clock()
            self._buffer.wait(timeout, min_count=self._max_batch_count)

            with self._lock:
                stopping = self._stopping
                requests, self._requests = self._requests, []

            try:
                if stopping or requests:
                    self._flush(limit=None if stopping else len(self._buffer))
                    last_flush = self._clock()
                elif len(self._buffer) >= self._max_batch_count:
                    self._ship_next()
                    last_flush = self._clock()
                elif self._clock() - last_flush >= self._flush_interval_s:
                    self._flush(limit=self._max_batch_count)
                    last_flush = self._clock()
            except Exception:
                logger.exception("telemetry.worker.flush_error")
            finally:
                for request in requests:
                    request.complete()

            if stopping:
                with self._lock:
                    late = self._requests
                    self._requests = []
                for request in late:
                    request.complete()
                logger.debug("telemetry.worker.stopped")
                return

    def _ship_next(self) -> None:
        points = self._buffer.drain(self._max_batch_count, self._max_batch_bytes)
        if points:
            self._ship(points)

    def _flush(self, limit: int | None) -> None:
        """Ship queued points in successive batches, up to ``limit`` (None: until empty)."""
        extras = self._collect_extras()
        shipped = 0
        while True:
            if limit is not None and shipped >= limit:
                points: list[Point] = []
            else:
                count = self._max_batch_count
                if limit is not None:
                    count = min(count, limit - shipped)
                points = self._buffer.drain(count, self._max_batch_bytes)
                shipped += len(points)
            if extras:
                room = self._max_batch_count - len(points)
                points.extend(extras[:room])
                extras = extras[room:]
            if not points:
                return
            self._ship(points)

    def _collect_extras(self) -> list[Point]:
        if self._extra_points is None:
            return []
        try:
            return list(self._extra_points())
        except Exception:
            logger.exception("telemetry.worker.extra_points_error")
            return []

    def _ship(self, points: list[Point]) -> None:
        batch = Batch(points)
        try:
            self._sender.send(batch)
        except TransportError as exc:
            self._stats.record_batch_failed(len(batch))
            logger.error(
                "telemetry.batch_dropped",
                points=len(batch),
                retryable=exc.retryable,
                status=exc.status_code,
                error=str(exc),
            )
            return
        except Exception:
            self._stats.record_batch_failed(len(batch))
            logger.exception("telemetry.batch_dropped", points=len(batch))
            return
        self._stats.record_batch_sent(len(batch))
