from __future__ import annotations

from collections.abc import Iterator

import pytest
import structlog

from apps.metrics_bench.main import build_parser, run_bench
from telemetry import host


@pytest.fixture(autouse=True)
def fixed_host() -> Iterator[None]:
    host.set_host_id("bench-host")
    yield
    host.reset_host_id()
    structlog.reset_defaults()


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])

    assert args.threads == 4
    assert args.points == 100_000
    assert args.url is None


def test_run_bench_accounts_for_every_point() -> None:
    args = build_parser().parse_args(["--threads", "2", "--points", "500", "--capacity", "5000"])

    summary = run_bench(args)

    assert summary["points"] == 1_000
    assert summary["written"] + summary["dropped"] == 1_000
    assert summary["dropped"] == 0
    assert summary["p99_us"] > 0
