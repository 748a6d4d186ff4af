"""Bounded exponential backoff around a :class:`~telemetry.transport.Sender`."""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from telemetry.config import MetricsConfig
from telemetry.errors import TransportError
from telemetry.point import Batch
from telemetry.transport import Sender


@dataclass(frozen=True)
class BackoffConfig:
    max_attempts: int = 5
    base_delay_s: float = 0.5
    max_delay_s: float = 10.0
    jitter: bool = False

    @classmethod
    def from_metrics_config(cls, config: MetricsConfig) -> BackoffConfig:
        return cls(
            max_attempts=config.max_attempts,
            base_delay_s=config.base_delay_s,
            max_delay_s=config.max_delay_s,
            jitter=config.jitter,
        )


class RetryingSender:
    """Wrap a sender with bounded exponential backoff on retryable errors."""

    def __init__(
        self,
        inner: Sender,
        *,
        config: BackoffConfig | None = None,
        sleep_fn: Callable[[float], None] | None = None,
        rand_fn: Callable[[], float] = random.random,
        logger: Any | None = None,
    ) -> None:
        self._inner = inner
        self._config = config or BackoffConfig()
        self._sleep = sleep_fn or time.sleep
        self._rand = rand_fn
        self._log = logger or structlog.get_logger(__name__)
        self.attempts = 0

    def send(self, batch: Batch) -> None:
        attempts = 0
        while True:
            attempts += 1
            self.attempts += 1
            try:
                self._inner.send(batch)
                return
            except TransportError as exc:
                if not exc.retryable or attempts >= self._config.max_attempts:
                    self._log.warning(
                        "telemetry.send_failed",
                        attempts=attempts,
                        retryable=exc.retryable,
                        status=exc.status_code,
                        error=str(exc),
                    )
                    raise
                delay = self.compute_delay(attempts, exc)
                self._log.info(
                    "telemetry.send_retry",
                    attempt=attempts,
                    delay=round(delay, 3),
                    status=exc.status_code,
                    error=str(exc),
                )
                if delay > 0:
                    self._sleep(delay)

    def compute_delay(self, attempts: int, exc: TransportError | None = None) -> float:
        """Delay before attempt ``attempts + 1``."""
        if exc is not None and exc.retry_after_s is not None:
            return min(self._config.max_delay_s, exc.retry_after_s)
        cap = min(
            self._config.max_delay_s,
            self._config.base_delay_s * (2 ** max(attempts - 1, 0)),
        )
        if self._config.jitter:
            cap *= float(self._rand())
        return float(max(0.0, cap))

    def close(self) -> None:
        close = getattr(self._inner, "close", None)
        if callable(close):
            close()
