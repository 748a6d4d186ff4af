"""Bounded point buffer between producer call sites and the batch worker."""

from __future__ import annotations

import threading
import time
from collections import deque
from enum import Enum
from itertools import islice
from typing import Literal

from telemetry.line_protocol import encoded_size
from telemetry.point import Point

DropPolicy = Literal["drop_newest", "drop_oldest"]


class Offer(Enum):
    """Outcome of offering a point to the buffer."""

    ACCEPTED = "accepted"
    BUFFER_FULL = "buffer_full"
    CLOSED = "closed"


class PointBuffer:
    """Bounded FIFO queue with drop-on-full overflow.

    Producers call :meth:`offer`, which only takes the internal lock and
    never waits for space. The single consumer (the batch worker) drains a
    prefix with :meth:`drain` and sleeps in :meth:`wait`.

    Attributes:
        capacity: Maximum number of queued points
        drop_policy: ``drop_newest`` rejects the incoming point when full,
            ``drop_oldest`` evicts the head of the queue to make room
    """

    def __init__(self, capacity: int = 20_000, drop_policy: DropPolicy = "drop_newest") -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        if drop_policy not in ("drop_newest", "drop_oldest"):
            raise ValueError(f"unknown drop_policy {drop_policy!r}")
        self.capacity = capacity
        self.drop_policy = drop_policy
        self._items: deque[Point] = deque()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._dropped = 0
        self._closed = False
        self._woken = False

    def offer(self, point: Point) -> Offer:
        """Enqueue ``point`` without blocking; never raises."""
        with self._lock:
            if self._closed:
                self._dropped += 1
                return Offer.CLOSED
            if len(self._items) >= self.capacity:
                self._dropped += 1
                if self.drop_policy == "drop_newest":
                    return Offer.BUFFER_FULL
                self._items.popleft()
                self._items.append(point)
                self._not_empty.notify()
                return Offer.BUFFER_FULL
            self._items.append(point)
            self._not_empty.notify()
            return Offer.ACCEPTED

    def drain(self, max_count: int, max_bytes: int | None = None) -> list[Point]:
        """Pop up to ``max_count`` points from the head of the queue.

        When ``max_bytes`` is given the drained prefix stays within that many
        encoded bytes, except that the first point is always taken.
        """
        with self._lock:
            count = min(max_count, len(self._items))
            if max_bytes is not None and count > 1:
                count = self._fitting_prefix(count, max_bytes)
            return [self._items.popleft() for _ in range(count)]

    def _fitting_prefix(self, count: int, max_bytes: int) -> int:
        # Caller holds the lock.
        size = 0
        for index, point in enumerate(islice(self._items, count)):
            size += encoded_size(point)
            if index > 0 and size > max_bytes:
                return index
        return count

    def wait(self, timeout: float, min_count: int = 1) -> bool:
        """Block the consumer until ``min_count`` points are queued, a wakeup, or timeout.

        Returns:
            True if the buffer holds at least ``min_count`` points on return
        """
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._not_empty:
            while len(self._items) < min_count and not self._woken and not self._closed:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._not_empty.wait(remaining)
            self._woken = False
            return len(self._items) >= min_count

    def wake(self) -> None:
        """Interrupt a consumer blocked in :meth:`wait`."""
        with self._not_empty:
            self._woken = True
            self._not_empty.notify_all()

    def close(self) -> None:
        """Reject further points; queued points stay drainable."""
        with self._not_empty:
            self._closed = True
            self._not_empty.notify_all()

    def discard(self) -> int:
        """Remove every queued point, counting each one as dropped."""
        with self._lock:
            lost = len(self._items)
            self._items.clear()
            self._dropped += lost
        return lost

    def count_dropped(self, count: int) -> None:
        """Add points lost outside :meth:`offer` to the dropped counter."""
        with self._lock:
            self._dropped += count

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
