"""Result types returned by the lifecycle operations.

Each operation kind has its own result type; all of them expose ``ok``
and ``message`` so entry points can log or print any result the same
way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol


class Outcome(Protocol):
    """Common summary shape shared by every operation result."""

    @property
    def ok(self) -> bool: ...

    @property
    def message(self) -> str: ...


@dataclass
class RecoveryDetail:
    """Per-candidate line in a recovery result."""

    name: str
    record_id: str
    status: Literal["recovered", "error", "skipped"]
    message: str


@dataclass
class RecoveryResult:
    """Aggregate of one multi-file recovery operation."""

    operation: str
    total: int = 0
    recovered: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[RecoveryDetail] = field(default_factory=list)
    message: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed == 0

    def add_success(self, name: str, record_id: str | None, message: str) -> None:
        self.recovered += 1
        self.details.append(
            RecoveryDetail(name, record_id or "unknown", "recovered", message)
        )

    def add_failure(self, name: str, record_id: str | None, message: str) -> None:
        self.failed += 1
        self.details.append(
            RecoveryDetail(name, record_id or "unknown", "error", message)
        )

    def add_skipped(self, name: str, record_id: str | None, message: str) -> None:
        self.skipped += 1
        self.details.append(
            RecoveryDetail(name, record_id or "unknown", "skipped", message)
        )

    def summarize(self, duration_seconds: float) -> str:
        """Build and store the duration-stamped summary line."""
        summary = (
            f"{self.operation} complete: total={self.total}, "
            f"recovered={self.recovered}, failed={self.failed}"
        )
        if self.skipped:
            summary += f", skipped={self.skipped}"
        summary += f", duration={duration_seconds:.1f}s"
        self.message = summary
        return summary

    def fail(self, error: str) -> str:
        """Mark the whole operation as failed (e.g. missing configuration)."""
        self.error = error
        self.message = f"{self.operation} failed: {error}"
        return self.message


@dataclass
class DetectionDetail:
    record_id: str
    issue: str
    file_found: bool
    status: Literal["recovered", "error"]
    message: str


@dataclass
class DetectionResult:
    """Aggregate of one partial-failure detection pass."""

    inspected: int = 0
    detected: int = 0
    failed: int = 0
    missing_transcripts: int = 0
    details: list[DetectionDetail] = field(default_factory=list)
    message: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed == 0

    def summarize(self, duration_seconds: float) -> str:
        self.message = (
            f"partial failure detection complete: inspected={self.inspected}, "
            f"detected={self.detected}, failed={self.failed}, "
            f"duration={duration_seconds:.1f}s"
        )
        return self.message

    def fail(self, error: str) -> str:
        self.error = error
        self.message = f"partial failure detection failed: {error}"
        return self.message


@dataclass
class FetchResult:
    """Outcome of one fetch invocation (window, ledger or continuation)."""

    success: bool = True
    fetched: int = 0
    saved: int = 0
    duplicates: int = 0
    download_errors: int = 0
    save_errors: int = 0
    skipped: int = 0
    interrupted: bool = False
    next_page: int | None = None
    error: str | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.success

    def summarize(self, label: str, duration_seconds: float) -> str:
        if not self.success:
            self.message = f"{label} failed: {self.error}"
            return self.message
        summary = (
            f"{label} complete: fetched={self.fetched}, saved={self.saved}, "
            f"duplicates={self.duplicates}, download_errors={self.download_errors}, "
            f"save_errors={self.save_errors}"
        )
        if self.interrupted:
            summary += f", continued_from_page={self.next_page}"
        summary += f", duration={duration_seconds:.1f}s"
        self.message = summary
        return summary


@dataclass
class CombinedRecoveryResult:
    """Steps of a combined recovery run, in execution order."""

    steps: list[RecoveryResult | DetectionResult] = field(default_factory=list)
    message: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and all(step.ok for step in self.steps)

    @property
    def has_activity(self) -> bool:
        for step in self.steps:
            if isinstance(step, DetectionResult):
                if step.detected or step.failed:
                    return True
            elif step.recovered or step.failed:
                return True
        return False
