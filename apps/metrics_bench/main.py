"""Micro-benchmark for point submission.

Runs producer threads that submit points as fast as they can and reports
per-call latency, throughput, and pipeline stats. Without ``--url`` the
batches go to a sender that discards them, so only the producer path and
batching are measured.
"""

from __future__ import annotations

import argparse
import statistics
import threading
import time

import structlog

from core.logging import setup_logging
from telemetry.config import build_config
from telemetry.pipeline import MetricsPipeline
from telemetry.point import Batch

logger = structlog.get_logger(__name__)


class NullSender:
    """Sender that accepts every batch without I/O."""

    def __init__(self, delay_s: float = 0.0) -> None:
        self.delay_s = delay_s
        self.batches = 0

    def send(self, batch: Batch) -> None:
        if self.delay_s:
            time.sleep(self.delay_s)
        self.batches += 1


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(description="Telemetry submission benchmark")
    parser.add_argument("--threads", type=int, default=4, help="Producer threads (default: 4)")
    parser.add_argument(
        "--points", type=int, default=100_000, help="Points per thread (default: 100000)"
    )
    parser.add_argument("--capacity", type=int, default=20_000, help="Buffer capacity")
    parser.add_argument("--batch-count", type=int, default=1_000, help="Max points per batch")
    parser.add_argument(
        "--send-delay",
        type=float,
        default=0.0,
        help="Artificial per-batch delay of the null sender in seconds",
    )
    parser.add_argument("--url", default=None, help="Ship to a real collector at this URL")
    parser.add_argument("--database", default="bench", help="Collector database")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    return parser


def _produce(pipeline: MetricsPipeline, count: int, thread_no: int, out: list[float]) -> None:
    tags = {"thread": str(thread_no)}
    for i in range(count):
        start = time.perf_counter()
        pipeline.submit_point("bench", tags, {"i": i, "value": 0.5})
        out.append(time.perf_counter() - start)


def run_bench(args: argparse.Namespace) -> dict[str, float]:
    """Run the benchmark and return a summary."""
    config = build_config(
        {
            "enabled": True,
            "url": args.url or "http://localhost:8086",
            "database": args.database,
            "buffer_capacity": args.capacity,
            "max_batch_count": args.batch_count,
            "flush_interval_s": 1.0,
            "report_stats": False,
        }
    )
    sender = None if args.url else NullSender(args.send_delay)
    pipeline = MetricsPipeline(config, sender=sender)
    pipeline.ensure_started()

    latencies: list[list[float]] = [[] for _ in range(args.threads)]
    threads = [
        threading.Thread(target=_produce, args=(pipeline, args.points, n, latencies[n]))
        for n in range(args.threads)
    ]
    started = time.perf_counter()
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    elapsed = time.perf_counter() - started

    pipeline.flush_and_wait(timeout=30.0)
    pipeline.shutdown()
    stats = pipeline.stats()

    samples = sorted(sample for per_thread in latencies for sample in per_thread)
    total = len(samples)
    summary = {
        "points": float(total),
        "elapsed_s": elapsed,
        "points_per_s": total / elapsed if elapsed else 0.0,
        "mean_us": statistics.fmean(samples) * 1e6 if samples else 0.0,
        "p99_us": samples[max(int(total * 0.99) - 1, 0)] * 1e6 if samples else 0.0,
        "max_us": samples[-1] * 1e6 if samples else 0.0,
        "written": float(stats.points_written),
        "dropped": float(stats.points_dropped),
        "batches": float(stats.batches_sent),
    }
    return summary


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command line arguments

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    summary = run_bench(args)
    logger.info("metrics_bench_complete", **summary)
    for key, value in summary.items():
        print(f"{key:>12}: {value:,.2f}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
