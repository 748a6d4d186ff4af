"""Collector and pipeline configuration."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, ClassVar, Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from telemetry.errors import ConfigurationError

ENV_CONFIG = "METRICS_CONFIG"
ENV_ENABLED = "METRICS_ENABLED"

# Short keys accepted in METRICS_CONFIG, e.g. "host=https://metrics:8086,db=app,u=writer,p=secret"
_ENV_KEYS = {"host": "url", "db": "database", "u": "username", "p": "password"}


class MetricsConfig(BaseModel):
    """Pipeline options: collector endpoint, buffering, batching, and retry."""

    model_config: ClassVar[dict[str, Any]] = {"extra": "forbid", "frozen": True}

    enabled: bool = True
    url: str = ""
    database: str = "metrics"
    username: str | None = None
    password: str | None = Field(default=None, repr=False)

    buffer_capacity: int = Field(default=20_000, gt=0)
    drop_policy: Literal["drop_newest", "drop_oldest"] = "drop_newest"
    max_batch_count: int = Field(default=1_000, gt=0)
    max_batch_bytes: int = Field(default=1_000_000, gt=0)
    flush_interval_s: float = Field(default=10.0, gt=0)

    request_timeout_s: float = Field(default=5.0, gt=0)
    compression: Literal["gzip", "deflate", "none"] = "gzip"
    max_attempts: int = Field(default=5, ge=1)
    base_delay_s: float = Field(default=0.5, ge=0)
    max_delay_s: float = Field(default=10.0, ge=0)
    jitter: bool = False

    shutdown_grace_s: float = Field(default=5.0, ge=0)
    min_level: str = "INFO"
    report_stats: bool = True

    @field_validator("min_level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @model_validator(mode="after")
    def check_endpoint(self) -> MetricsConfig:
        if self.max_delay_s < self.base_delay_s:
            raise ValueError("max_delay_s must be >= base_delay_s")
        if not self.enabled:
            return self
        parts = urlsplit(self.url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"url must be an http(s) URL, got {self.url!r}")
        if not self.database:
            raise ValueError("database must not be empty")
        if (self.username is None) != (self.password is None):
            raise ValueError("username and password must be set together")
        return self

    @property
    def min_level_no(self) -> int:
        return int(logging.getLevelName(self.min_level))

    @property
    def write_url(self) -> str:
        return self.url.rstrip("/") + "/write"

    @classmethod
    def disabled(cls) -> MetricsConfig:
        return cls(enabled=False)


def build_config(data: Mapping[str, Any]) -> MetricsConfig:
    """Validate ``data`` into a config, raising ConfigurationError on bad input."""
    try:
        return MetricsConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid metrics configuration: {exc}") from exc


def parse_env_config(value: str) -> dict[str, str]:
    """Parse the ``host=...,db=...,u=...,p=...`` connection string."""
    parsed: dict[str, str] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, raw = item.partition("=")
        if not sep:
            raise ConfigurationError(f"{ENV_CONFIG}: expected key=value, got {item!r}")
        key = key.strip()
        if key not in _ENV_KEYS:
            raise ConfigurationError(f"{ENV_CONFIG}: unknown key {key!r}")
        parsed[_ENV_KEYS[key]] = raw.strip()
    if "url" not in parsed:
        raise ConfigurationError(f"{ENV_CONFIG}: missing host")
    return parsed


def config_from_env(environ: Mapping[str, str] | None = None) -> MetricsConfig:
    """Build a config from METRICS_CONFIG; disabled when it is absent."""
    env = os.environ if environ is None else environ
    if env.get(ENV_ENABLED, "1") == "0":
        return MetricsConfig.disabled()
    raw = env.get(ENV_CONFIG)
    if not raw:
        return MetricsConfig.disabled()
    return build_config(parse_env_config(raw))


def _read_yaml(path: Path) -> dict[str, Any]:
    """Safe YAML read; returns {} if file missing/empty."""
    import yaml  # lazy import

    if not path.exists():
        return {}
    text = path.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data or {}


def load_metrics_config(
    base_dir: str | Path, environ: Mapping[str, str] | None = None
) -> MetricsConfig:
    """Load ``config/metrics.yaml`` and apply METRICS_CONFIG overrides."""

    base_path = Path(base_dir)
    metrics_yaml = base_path / "config" / "metrics.yaml"
    data = _read_yaml(metrics_yaml)
    if not data:
        msg = f"Missing or empty config file: {metrics_yaml}"
        raise FileNotFoundError(msg)

    section = data.get("metrics", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"{metrics_yaml}: 'metrics' must be a mapping")

    env = os.environ if environ is None else environ
    raw = env.get(ENV_CONFIG)
    if raw:
        section = {**section, **parse_env_config(raw)}
    if env.get(ENV_ENABLED) == "0":
        section = {**section, "enabled": False}

    return build_config(section)
