"""Drives stuck blobs and rows back to a re-processable state.

Each operation enumerates candidates, remediates them one at a time and
aggregates a RecoveryResult. A failing candidate is recorded and the
scan goes on; only a configuration problem fails a whole operation.

Blob moves and ledger writes are separate calls with no transaction
between them. Moves go first, so an interruption leaves a blob in SOURCE
with a stale status, which the batch picks up again anyway.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from recording_lifecycle.config import Settings
from recording_lifecycle.constants import Location, RetryMark, TranscriptionStatus
from recording_lifecycle.lifecycle.blob_mover import BlobMover
from recording_lifecycle.lifecycle.lease import Lease
from recording_lifecycle.models import BlobInfo, Recording, is_audio_blob
from recording_lifecycle.notify.email import Notifier, build_recovery_email, notify_admins
from recording_lifecycle.observability.metrics import (
    RunMetrics,
    StageTimer,
    log_run_metrics,
)
from recording_lifecycle.recovery.partial_failure import PartialFailureDetector
from recording_lifecycle.results import CombinedRecoveryResult, RecoveryResult
from recording_lifecycle.storage.interface import StateStore
from recording_lifecycle.storage.recordings import RecordingLedger
from recording_lifecycle.utils.clock import (
    format_ledger_timestamp,
    now_utc,
    parse_ledger_timestamp,
)
from recording_lifecycle.utils.errors import LifecycleError

logger = logging.getLogger(__name__)

INTERRUPTED_RECOVERY = "interrupted recovery"
ERROR_RECOVERY = "error recovery"
PENDING_RESET = "pending reset"
FORCE_RECOVERY = "force recovery"

RESET_SEARCH_LOCATIONS = (Location.ERROR, Location.PROCESSING, Location.COMPLETED)
INTERRUPTED_SEARCH_LOCATIONS = (
    Location.PROCESSING,
    Location.ERROR,
    Location.COMPLETED,
)


class RecoveryOrchestrator:
    """Interrupted, error, pending and forced recovery over one BlobMover."""

    def __init__(
        self,
        mover: BlobMover,
        ledger: RecordingLedger,
        state: StateStore,
        settings: Settings,
        detector: PartialFailureDetector | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.mover = mover
        self.blobs = mover.store
        self.ledger = ledger
        self.settings = settings
        self.detector = detector
        self.notifier = notifier
        self.clock = clock
        self.lease = Lease(
            state, "recovery", ttl_seconds=settings.lease_ttl_seconds, clock=clock
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def recover_interrupted_files(self) -> RecoveryResult:
        return self._standalone(INTERRUPTED_RECOVERY, self._recover_interrupted)

    def recover_error_files(self) -> RecoveryResult:
        return self._standalone(ERROR_RECOVERY, self._recover_errors)

    def reset_pending_transcriptions(self) -> RecoveryResult:
        return self._standalone(PENDING_RESET, self._reset_pending)

    def force_recover_all_error_files(self) -> RecoveryResult:
        return self._standalone(FORCE_RECOVERY, self._force_recover)

    def run_full_recovery(self) -> CombinedRecoveryResult:
        """Run detection, pending reset, error and interrupted recovery.

        Steps run in that order under one lease. A failing step is
        recorded in its own result and the later steps still run.
        """
        combined = CombinedRecoveryResult()
        try:
            self.lease.acquire()
        except LifecycleError as exc:
            combined.error = str(exc)
            combined.message = f"full recovery skipped: {exc}"
            logger.warning(combined.message)
            return combined

        try:
            if self.detector is not None:
                combined.steps.append(self.detector.detect_and_recover())
            for operation, step in (
                (PENDING_RESET, self._reset_pending),
                (ERROR_RECOVERY, self._recover_errors),
                (INTERRUPTED_RECOVERY, self._recover_interrupted),
            ):
                combined.steps.append(self._execute(operation, step))
        finally:
            self._release()

        combined.message = "\n".join(step.message for step in combined.steps)
        if combined.has_activity:
            subject, body = build_recovery_email(
                combined, self.settings.timezone, self.clock()
            )
            notify_admins(self.notifier, self.settings.admin_emails, subject, body)
        return combined

    # ------------------------------------------------------------------
    # Operation bodies
    # ------------------------------------------------------------------

    def _recover_interrupted(self, result: RecoveryResult) -> None:
        self.settings.require_locations(Location.PROCESSING, Location.SOURCE)

        candidates: list[tuple[str, BlobInfo | None, str | None]] = []
        seen: set[str] = set()
        # Blob name -> candidate index, so a row never re-lists a blob.
        listed: dict[str, int] = {}
        for blob in self._audio_blobs(Location.PROCESSING):
            record_id = blob.record_id
            if record_id:
                seen.add(record_id)
            listed[blob.name] = len(candidates)
            candidates.append((blob.name, blob, record_id))

        for _, recording in self.ledger.list_recordings():
            if recording.transcription_status != TranscriptionStatus.INTERRUPTED:
                continue
            if recording.record_id in seen:
                continue
            seen.add(recording.record_id)
            blob = self.mover.find(recording.record_id, INTERRUPTED_SEARCH_LOCATIONS)
            if blob is not None and blob.name in listed:
                # Name had no parseable id; the row supplies it.
                index = listed[blob.name]
                name, listed_blob, _ = candidates[index]
                candidates[index] = (name, listed_blob, recording.record_id)
                continue
            name = blob.name if blob else recording.record_id
            candidates.append((name, blob, recording.record_id))

        result.total = len(candidates)
        for name, blob, record_id in candidates:
            try:
                parts = []
                if blob is not None:
                    self.mover.move_with_fallback(blob, Location.SOURCE)
                    parts.append("moved to source")
                else:
                    parts.append("no file found")
                if record_id:
                    updated = self.ledger.update_transcription_status(
                        record_id,
                        TranscriptionStatus.PENDING,
                        process_end=self._now_cell(),
                    )
                    parts.append("status PENDING" if updated else "no ledger row")
                else:
                    parts.append("record id not found in name")
                result.add_success(name, record_id, ", ".join(parts))
            except Exception as exc:
                self._record_failure(result, name, record_id, exc)

    def _recover_errors(self, result: RecoveryResult) -> None:
        self.settings.require_locations(Location.ERROR, Location.SOURCE)

        blobs = self._audio_blobs(Location.ERROR)
        result.total = len(blobs)
        for blob in blobs:
            record_id = blob.record_id
            if blob.has_mark(RetryMark.RETRIED):
                logger.info(
                    "Already retried once, leaving %s in error",
                    blob.name,
                    extra={"record_id": record_id},
                )
                result.add_skipped(
                    blob.name, record_id, "already retried; use force recovery"
                )
                continue
            try:
                self.mover.move_with_fallback(blob, Location.SOURCE, RetryMark.RETRIED)
                message = self._set_status(record_id, TranscriptionStatus.RETRY)
                result.add_success(blob.name, record_id, f"moved to source, {message}")
            except Exception as exc:
                self._record_failure(result, blob.name, record_id, exc)

    def _reset_pending(self, result: RecoveryResult) -> None:
        self.settings.require_locations(Location.SOURCE, *RESET_SEARCH_LOCATIONS)

        cutoff = self.clock() - timedelta(minutes=self.settings.pending_timeout_minutes)
        stale = [
            recording
            for _, recording in self.ledger.list_recordings()
            if recording.transcription_status == TranscriptionStatus.PENDING
            and self._is_stale(recording, cutoff)
        ]

        result.total = len(stale)
        for recording in stale:
            record_id = recording.record_id
            name = record_id
            try:
                stamp = self._now_cell()
                self.ledger.update_transcription_status(
                    record_id,
                    TranscriptionStatus.RESET_PENDING,
                    process_start=stamp,
                    process_end=stamp,
                )
                blob = self.mover.find(record_id, RESET_SEARCH_LOCATIONS)
                if blob is None:
                    message = "status RESET_PENDING, no file found"
                elif blob.location == Location.COMPLETED:
                    name = blob.name
                    message = "status RESET_PENDING, file found in completed"
                else:
                    name = blob.name
                    self.mover.move_with_fallback(
                        blob, Location.SOURCE, RetryMark.RESET_RETRY
                    )
                    message = (
                        f"status RESET_PENDING, moved from {blob.location.value} "
                        "to source"
                    )
                result.add_success(name, record_id, message)
            except Exception as exc:
                self._record_failure(result, name, record_id, exc)

    def _force_recover(self, result: RecoveryResult) -> None:
        self.settings.require_locations(Location.ERROR, Location.SOURCE)

        blobs = self._audio_blobs(Location.ERROR)
        result.total = len(blobs)
        for blob in blobs:
            record_id = blob.record_id
            try:
                self.mover.move_with_fallback(
                    blob, Location.SOURCE, RetryMark.FORCE_RETRY
                )
                message = self._set_status(record_id, TranscriptionStatus.FORCE_RETRY)
                result.add_success(blob.name, record_id, f"moved to source, {message}")
            except Exception as exc:
                self._record_failure(result, blob.name, record_id, exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audio_blobs(self, location: Location) -> list[BlobInfo]:
        return [blob for blob in self.blobs.list(location) if is_audio_blob(blob)]

    def _set_status(self, record_id: str | None, status: TranscriptionStatus) -> str:
        if not record_id:
            return "record id not found in name"
        if self.ledger.update_transcription_status(record_id, status):
            return f"status {status}"
        return "no ledger row"

    def _is_stale(self, recording: Recording, cutoff: datetime) -> bool:
        tz = self.settings.timezone
        for value in (
            recording.process_start,
            recording.timestamp_fetch,
            recording.timestamp_recording,
        ):
            moment = parse_ledger_timestamp(value, tz)
            if moment is not None:
                return moment < cutoff
        return True

    def _now_cell(self) -> str:
        return format_ledger_timestamp(self.clock(), self.settings.timezone)

    @staticmethod
    def _record_failure(
        result: RecoveryResult, name: str, record_id: str | None, exc: Exception
    ) -> None:
        result.add_failure(name, record_id, str(exc))
        logger.error(
            "%s failed for %s: %s",
            result.operation,
            name,
            exc,
            extra={"record_id": record_id, "error": str(exc)},
        )

    def _standalone(
        self, operation: str, body: Callable[[RecoveryResult], None]
    ) -> RecoveryResult:
        try:
            self.lease.acquire()
        except LifecycleError as exc:
            result = RecoveryResult(operation)
            result.fail(str(exc))
            logger.warning(result.message)
            return result
        try:
            return self._execute(operation, body)
        finally:
            self._release()

    def _release(self) -> None:
        try:
            self.lease.release()
        except LifecycleError as exc:
            logger.warning("Could not release recovery lease: %s", exc)

    def _execute(
        self, operation: str, body: Callable[[RecoveryResult], None]
    ) -> RecoveryResult:
        result = RecoveryResult(operation)
        timer = StageTimer(operation)
        with timer:
            try:
                body(result)
            except LifecycleError as exc:
                result.fail(str(exc))
                logger.error(result.message, extra={"operation": operation})
            except Exception as exc:
                result.fail(f"{type(exc).__name__}: {exc}")
                logger.exception("%s failed unexpectedly", operation)

        if result.error is None:
            result.summarize(timer.duration_seconds)
            logger.info(
                result.message,
                extra={
                    "operation": operation,
                    "duration_seconds": timer.duration_seconds,
                },
            )
        log_run_metrics(
            RunMetrics(
                operation=operation,
                ok=result.ok,
                total=result.total,
                succeeded=result.recovered,
                failed=result.failed,
                skipped=result.skipped,
                duration_seconds=round(timer.duration_seconds, 3),
                error_message=result.error,
            )
        )
        return result
