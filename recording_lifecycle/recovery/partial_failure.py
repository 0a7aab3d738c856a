"""Audit of SUCCESS rows against their stored transcripts.

The transcription batch can report SUCCESS while the transcript holds an
error message in place of content. Such rows are re-opened: status
ERROR_DETECTED, and the blob (if it can still be found outside ERROR) is
moved to ERROR so error recovery retries it.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime

from recording_lifecycle.config import Settings
from recording_lifecycle.constants import (
    FAILURE_SIGNATURES,
    Location,
    TranscriptionStatus,
)
from recording_lifecycle.lifecycle.blob_mover import BlobMover
from recording_lifecycle.notify.email import (
    Notifier,
    build_partial_failure_email,
    notify_admins,
)
from recording_lifecycle.observability.metrics import (
    RunMetrics,
    StageTimer,
    log_run_metrics,
)
from recording_lifecycle.results import DetectionDetail, DetectionResult
from recording_lifecycle.storage.recordings import RecordingLedger
from recording_lifecycle.utils.clock import format_ledger_timestamp, now_utc
from recording_lifecycle.utils.errors import LifecycleError

logger = logging.getLogger(__name__)

SEARCH_LOCATIONS = (Location.SOURCE, Location.PROCESSING, Location.COMPLETED)


def detect_issue(transcript: str) -> str | None:
    """Return the issue label of the first signature found in ``transcript``."""
    if not transcript:
        return None
    for signature, issue in FAILURE_SIGNATURES:
        if signature in transcript:
            return issue
    return None


class PartialFailureDetector:
    def __init__(
        self,
        mover: BlobMover,
        ledger: RecordingLedger,
        settings: Settings,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.mover = mover
        self.ledger = ledger
        self.settings = settings
        self.notifier = notifier
        self.clock = clock

    def detect_and_recover(self) -> DetectionResult:
        """Flag SUCCESS rows whose transcript carries a failure signature.

        Returns:
            DetectionResult with one detail per flagged row.
        """
        result = DetectionResult()
        timer = StageTimer("partial_failure_detection")
        with timer:
            try:
                self.settings.require_locations(Location.ERROR, *SEARCH_LOCATIONS)
                self._scan(result)
            except LifecycleError as exc:
                result.fail(str(exc))
                logger.error("Partial failure detection failed: %s", exc)
            except Exception as exc:
                result.fail(f"{type(exc).__name__}: {exc}")
                logger.exception("Partial failure detection failed unexpectedly")

        if result.error is None:
            result.summarize(timer.duration_seconds)
        logger.info(
            result.message,
            extra={
                "operation": "partial_failure_detection",
                "duration_seconds": timer.duration_seconds,
            },
        )
        log_run_metrics(
            RunMetrics(
                operation="partial_failure_detection",
                ok=result.ok,
                total=result.inspected,
                succeeded=result.detected - result.failed,
                failed=result.failed,
                skipped=result.missing_transcripts,
                duration_seconds=round(timer.duration_seconds, 3),
                error_message=result.error,
            )
        )

        if result.detected:
            subject, body = build_partial_failure_email(
                result, self.settings.timezone, self.clock()
            )
            notify_admins(self.notifier, self.settings.admin_emails, subject, body)
        return result

    def _scan(self, result: DetectionResult) -> None:
        transcripts = self.ledger.transcripts_by_record_id()
        for _, recording in self.ledger.list_recordings():
            if recording.transcription_status != TranscriptionStatus.SUCCESS:
                continue
            result.inspected += 1
            record_id = recording.record_id
            call = transcripts.get(record_id)
            if call is None:
                result.missing_transcripts += 1
                continue
            issue = detect_issue(call.transcript)
            if issue is None:
                continue

            result.detected += 1
            logger.warning(
                "Partial failure detected: %s", issue, extra={"record_id": record_id}
            )
            try:
                self.ledger.update_transcription_status(
                    record_id,
                    TranscriptionStatus.ERROR_DETECTED,
                    process_end=format_ledger_timestamp(
                        self.clock(), self.settings.timezone
                    ),
                )
                blob = self.mover.find(record_id, SEARCH_LOCATIONS)
                if blob is not None:
                    self.mover.move_with_fallback(blob, Location.ERROR)
                    message = f"status ERROR_DETECTED, moved {blob.name} to error"
                else:
                    message = "status ERROR_DETECTED, file not found"
                result.details.append(
                    DetectionDetail(
                        record_id, issue, blob is not None, "recovered", message
                    )
                )
            except Exception as exc:
                result.failed += 1
                result.details.append(
                    DetectionDetail(record_id, issue, False, "error", str(exc))
                )
                logger.error(
                    "Failed to recover partial failure: %s",
                    exc,
                    extra={"record_id": record_id, "error": str(exc)},
                )

    def check_record(self, record_id: str) -> str | None:
        """Return the issue label found in one record's transcript, if any.

        Read-only: the row and its blob are left untouched.
        """
        record = self.ledger.transcripts_by_record_id().get(str(record_id))
        if record is None:
            return None
        return detect_issue(record.transcript)

    def statistics(self) -> dict[str, int]:
        """Count rows by transcription status bucket."""
        counts: Counter[str] = Counter()
        buckets = {
            TranscriptionStatus.SUCCESS: "success",
            TranscriptionStatus.ERROR: "error",
            TranscriptionStatus.ERROR_DETECTED: "error_detected",
            TranscriptionStatus.PENDING: "pending",
        }
        for _, recording in self.ledger.list_recordings():
            counts[buckets.get(recording.transcription_status, "other")] += 1
        return {
            "total": sum(counts.values()),
            **{name: counts[name] for name in (*buckets.values(), "other")},
        }
