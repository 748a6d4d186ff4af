"""Entry point for the metrics benchmark module."""

from __future__ import annotations

from apps.metrics_bench.main import main

if __name__ == "__main__":
    raise SystemExit(main())
