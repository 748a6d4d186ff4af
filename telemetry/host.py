"""Process-wide host identity used to tag every point."""

from __future__ import annotations

import socket
import threading

import structlog

logger = structlog.get_logger(__name__)

UNKNOWN_HOST = "unknown-host"
HOST_TAG = "host_id"

_lock = threading.Lock()
_host_id: str | None = None


def _resolve() -> str:
    try:
        name = socket.gethostname()
    except OSError as exc:
        logger.warning("telemetry.host_id.resolve_failed", error=str(exc))
        return UNKNOWN_HOST
    if not name or not name.strip():
        return UNKNOWN_HOST
    return name.strip()


def host_id() -> str:
    """Return the cached host identity, resolving it on first use."""
    global _host_id
    if _host_id is None:
        with _lock:
            if _host_id is None:
                _host_id = _resolve()
                logger.info("telemetry.host_id.resolved", host_id=_host_id)
    return _host_id


def set_host_id(value: str) -> None:
    """Override the host identity for the rest of the process lifetime."""
    global _host_id
    if not value:
        raise ValueError("host id must not be empty")
    with _lock:
        _host_id = value
    logger.info("telemetry.host_id.set", host_id=value)


def reset_host_id() -> None:
    """Forget the cached identity so the next call resolves again."""
    global _host_id
    with _lock:
        _host_id = None
