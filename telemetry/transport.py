"""HTTP transport shipping encoded batches to the collector."""

from __future__ import annotations

import gzip
import zlib
from typing import Protocol

import httpx
import structlog

from telemetry.config import MetricsConfig
from telemetry.errors import FatalTransportError, RetryableTransportError, TransportError
from telemetry.point import Batch

_RETRYABLE_STATUS = frozenset({408, 429})


class Sender(Protocol):
    """Anything that can deliver one batch.

    ``send`` returns on success and raises :class:`TransportError` otherwise.
    """

    def send(self, batch: Batch) -> None: ...


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def compress(payload: bytes, method: str) -> tuple[bytes, str | None]:
    """Compress ``payload`` and return it with its Content-Encoding."""
    if method == "gzip":
        return gzip.compress(payload, compresslevel=6), "gzip"
    if method == "deflate":
        return zlib.compress(payload), "deflate"
    return payload, None


def classify_response(response: httpx.Response) -> TransportError | None:
    """Map a collector response to None (success) or a TransportError."""
    status = response.status_code
    if 200 <= status < 300:
        return None
    body = response.text[:200]
    message = f"collector returned HTTP {status}: {body}"
    retry_after = _parse_retry_after(response.headers.get("Retry-After"))
    if status >= 500 or status in _RETRYABLE_STATUS:
        return RetryableTransportError(message, status_code=status, retry_after_s=retry_after)
    return FatalTransportError(message, status_code=status)


class HttpTransport:
    """POST one line-protocol batch per call to ``{url}/write``."""

    def __init__(self, config: MetricsConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=config.request_timeout_s)
        self._log = structlog.get_logger(__name__)
        self._params: dict[str, str] = {"db": config.database, "precision": "ns"}
        if config.username is not None and config.password is not None:
            self._params["u"] = config.username
            self._params["p"] = config.password

    def send(self, batch: Batch) -> None:
        try:
            payload = batch.encode()
            body, encoding = compress(payload, self._config.compression)
        except (ValueError, TypeError, UnicodeError) as exc:
            raise FatalTransportError(f"failed to encode batch: {exc}") from exc

        headers = {"Content-Type": "text/plain; charset=utf-8"}
        if encoding is not None:
            headers["Content-Encoding"] = encoding

        try:
            response = self._client.post(
                self._config.write_url,
                params=self._params,
                content=body,
                headers=headers,
                timeout=self._config.request_timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise RetryableTransportError(f"request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise RetryableTransportError(f"connection failed: {exc}") from exc
        except httpx.InvalidURL as exc:
            raise FatalTransportError(f"invalid collector url: {exc}") from exc

        error = classify_response(response)
        if error is not None:
            raise error
        self._log.debug(
            "telemetry.transport.sent",
            points=len(batch),
            payload_bytes=len(payload),
            wire_bytes=len(body),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
