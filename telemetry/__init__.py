"""Telemetry point submission and shipping pipeline."""

from telemetry.api import flush_and_wait, get_pipeline, init, shutdown, submit_counter, submit_point
from telemetry.counter import Counter
from telemetry.errors import (
    ConfigurationError,
    FatalTransportError,
    MetricsError,
    PointError,
    RetryableTransportError,
    TransportError,
)
from telemetry.fingerprint import fingerprint
from telemetry.host import host_id, set_host_id
from telemetry.panic import install_panic_hook
from telemetry.pipeline import MetricsPipeline
from telemetry.point import Batch, Point
from telemetry.stats import PipelineStats

__all__ = [
    "Batch",
    "ConfigurationError",
    "Counter",
    "FatalTransportError",
    "MetricsError",
    "MetricsPipeline",
    "PipelineStats",
    "Point",
    "PointError",
    "RetryableTransportError",
    "TransportError",
    "fingerprint",
    "flush_and_wait",
    "get_pipeline",
    "host_id",
    "init",
    "install_panic_hook",
    "set_host_id",
    "shutdown",
    "submit_counter",
    "submit_point",
]
