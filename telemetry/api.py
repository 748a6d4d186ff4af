"""Process-wide access to the installed pipeline.

Applications call :func:`init` from their entry point. Call sites that have
no pipeline handle use :func:`submit_point`, which builds a pipeline from
``METRICS_CONFIG`` on first use when ``init`` was never called.
"""

from __future__ import annotations

import atexit
import logging
import threading
from collections.abc import Iterable, Mapping

import structlog

from telemetry.config import MetricsConfig, config_from_env
from telemetry.errors import ConfigurationError
from telemetry.pipeline import MetricsPipeline
from telemetry.point import FieldValue
from telemetry.stats import PipelineStats
from telemetry.transport import Sender

logger = structlog.get_logger(__name__)

_lock = threading.Lock()
_pipeline: MetricsPipeline | None = None
_atexit_registered = False
_shut_down = False


def init(config: MetricsConfig | None = None, sender: Sender | None = None) -> MetricsPipeline:
    """Install and start the process-wide pipeline.

    Raises:
        ConfigurationError: If ``config`` is None and METRICS_CONFIG is invalid
    """
    global _pipeline, _shut_down
    resolved = config if config is not None else config_from_env()
    pipeline = MetricsPipeline(resolved, sender=sender)
    with _lock:
        previous, _pipeline = _pipeline, pipeline
        _shut_down = False
        _register_atexit()
    if previous is not None:
        previous.shutdown()
    pipeline.ensure_started()
    return pipeline


def get_pipeline() -> MetricsPipeline:
    """Return the installed pipeline, building one from the environment on first use.

    A configuration error disables the pipeline instead of raising. After
    :func:`shutdown` the pipeline built here is already stopped, so its
    submissions are dropped and counted.
    """
    global _pipeline
    pipeline = _pipeline
    if pipeline is not None:
        return pipeline
    with _lock:
        if _pipeline is None:
            try:
                config = config_from_env()
            except ConfigurationError as exc:
                logger.error("telemetry.config_invalid", error=str(exc))
                config = MetricsConfig.disabled()
            pipeline = MetricsPipeline(config)
            if _shut_down:
                pipeline.shutdown(0.0)
            else:
                _register_atexit()
            _pipeline = pipeline
        return _pipeline


def _register_atexit() -> None:
    global _atexit_registered
    if not _atexit_registered:
        atexit.register(shutdown)
        _atexit_registered = True


def submit_point(
    name: str,
    tags: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
    fields: Mapping[str, FieldValue] | Iterable[tuple[str, FieldValue]] | None = None,
    *,
    level: int = logging.INFO,
) -> None:
    get_pipeline().submit_point(name, tags, fields, level=level)


def submit_counter(name: str, count: int, bucket: int = 0) -> None:
    get_pipeline().submit_counter(name, count, bucket)


def flush_and_wait(timeout: float) -> bool:
    pipeline = _pipeline
    if pipeline is None:
        return True
    return pipeline.flush_and_wait(timeout)


def shutdown(grace_s: float | None = None) -> bool:
    """Shut down the installed pipeline, if any.

    The stopped pipeline stays installed: later submissions are dropped and
    counted rather than starting a new worker. Only :func:`init` re-arms.
    """
    global _shut_down
    with _lock:
        pipeline = _pipeline
        _shut_down = True
    if pipeline is None:
        return True
    return pipeline.shutdown(grace_s)


def reset(grace_s: float | None = None) -> None:
    """Shut down and forget the installed pipeline; the next lookup starts fresh."""
    global _pipeline, _shut_down
    with _lock:
        pipeline, _pipeline = _pipeline, None
        _shut_down = False
    if pipeline is not None:
        pipeline.shutdown(grace_s)


def stats() -> PipelineStats:
    pipeline = _pipeline
    if pipeline is None:
        return PipelineStats()
    return pipeline.stats()
