"""Run metrics collection and reporting.

Provides RunMetrics for structured per-operation counts, StageTimer for
measuring operation durations, and log_run_metrics() for emitting the
counts as one JSON line to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime


@dataclass
class RunMetrics:
    """Counts collected for one top-level operation."""

    operation: str
    ok: bool
    total: int
    succeeded: int
    failed: int
    skipped: int
    duration_seconds: float
    error_message: str | None = None


class StageTimer:
    """Context manager that records wall-clock duration of an operation.

    Usage:
        timer = StageTimer("recover_error_files")
        with timer:
            do_work()
        print(timer.duration_seconds)
    """

    def __init__(self, stage_name: str) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.end_time = datetime.now(UTC)
        self.duration_seconds = time.monotonic() - self._mono_start


def log_run_metrics(metrics: RunMetrics) -> None:
    """Emit run metrics as a single structured JSON line to stdout."""
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO" if metrics.ok else "WARNING",
        "metric_type": "run_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry, ensure_ascii=False))
