"""Report uncaught exceptions as ``panic`` points before the default hooks run."""

from __future__ import annotations

import logging
import sys
import threading
import traceback
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from telemetry.pipeline import MetricsPipeline

logger = structlog.get_logger(__name__)

PANIC_POINT_NAME = "panic"


def _location(tb: TracebackType | None) -> str:
    frames = traceback.extract_tb(tb) if tb is not None else []
    if not frames:
        return "unknown"
    last = frames[-1]
    return f"{last.filename}:{last.lineno}"


def install_panic_hook(
    program: str,
    *,
    pipeline: MetricsPipeline | None = None,
    flush_timeout_s: float = 1.0,
) -> None:
    """Chain ``sys.excepthook`` and ``threading.excepthook`` to emit a panic point.

    The point carries the program name, thread name, exception message, and
    the innermost source location, then the pipeline is flushed for at most
    ``flush_timeout_s`` before the previous hook runs.
    """
    previous_sys_hook = sys.excepthook
    previous_thread_hook = threading.excepthook

    def report(exc: BaseException | None, tb: TracebackType | None, thread_name: str) -> None:
        if pipeline is not None:
            target = pipeline
        else:
            from telemetry.api import get_pipeline

            target = get_pipeline()
        try:
            target.submit_point(
                PANIC_POINT_NAME,
                fields={
                    "program": program,
                    "thread": thread_name,
                    "message": repr(exc),
                    "location": _location(tb),
                },
                level=logging.ERROR,
            )
            target.flush_and_wait(flush_timeout_s)
        except Exception:
            logger.exception("telemetry.panic_report_failed")

    def sys_hook(
        exc_type: type[BaseException], exc: BaseException, tb: TracebackType | None
    ) -> None:
        report(exc, tb, threading.current_thread().name)
        previous_sys_hook(exc_type, exc, tb)

    def thread_hook(args: Any) -> None:
        thread_name = args.thread.name if args.thread is not None else "unknown"
        report(args.exc_value, args.exc_traceback, thread_name)
        previous_thread_hook(args)

    sys.excepthook = sys_hook
    threading.excepthook = thread_hook
