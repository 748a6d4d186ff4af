"""Error taxonomy for the telemetry shipping pipeline."""

from __future__ import annotations


class MetricsError(Exception):
    """Base class for telemetry pipeline errors."""


class ConfigurationError(MetricsError):
    """Invalid collector URL, credentials, or pipeline options."""


class PointError(MetricsError, ValueError):
    """Malformed point or batch."""


class TransportError(MetricsError):
    """Failed delivery of a batch to the collector.

    Attributes:
        retryable: Whether the retry policy may re-attempt the send
        status_code: HTTP status returned by the collector, if any
        retry_after_s: Collector-requested delay before the next attempt
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after_s = retry_after_s


class RetryableTransportError(TransportError):
    """Network failure, timeout, or 5xx-equivalent response."""

    retryable = True


class FatalTransportError(TransportError):
    """Authentication failure, malformed request, or encoding failure."""

    retryable = False
