"""Tests for RecoveryOrchestrator operations and the combined run."""

from __future__ import annotations

import pytest

from fakes import (
    InMemoryBlobStore,
    InMemoryLedger,
    InMemoryStateStore,
    RecordingNotifier,
    fixed_clock,
    make_settings,
)
from recording_lifecycle.constants import Location, RetryMark, TranscriptionStatus
from recording_lifecycle.lifecycle.blob_mover import BlobMover
from recording_lifecycle.lifecycle.lease import Lease
from recording_lifecycle.models import Recording
from recording_lifecycle.notify.email import PARTIAL_FAILURE_SUBJECT, RECOVERY_SUBJECT
from recording_lifecycle.recovery.orchestrator import (
    ERROR_RECOVERY,
    INTERRUPTED_RECOVERY,
    PENDING_RESET,
    RecoveryOrchestrator,
)
from recording_lifecycle.recovery.partial_failure import PartialFailureDetector
from recording_lifecycle.results import DetectionResult
from recording_lifecycle.storage.recordings import RecordingLedger

NOW_CELL = "2025/01/31 09:00:00"


def blob_name(record_id: str) -> str:
    return f"zoom_call_20250130120000_{record_id}.mp3"


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def state():
    return InMemoryStateStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def orchestrator(blobs, ledger, state, settings, notifier):
    mover = BlobMover(blobs)
    recordings = RecordingLedger(ledger)
    detector = PartialFailureDetector(
        mover, recordings, settings, notifier=notifier, clock=fixed_clock
    )
    return RecoveryOrchestrator(
        mover,
        recordings,
        state,
        settings,
        detector=detector,
        notifier=notifier,
        clock=fixed_clock,
    )


class TestInterruptedRecovery:
    """Tests for recovering interrupted transcriptions."""

    def test_processing_blob_returns_to_source_as_pending(
        self, orchestrator, blobs, ledger
    ):
        """A PROCESSING blob returns to SOURCE and its row to PENDING."""
        blobs.add(Location.PROCESSING, blob_name("abc123"))
        ledger.add_recording(
            Recording("abc123", transcription_status=TranscriptionStatus.PROCESSING)
        )

        result = orchestrator.recover_interrupted_files()

        assert result.ok
        assert result.total == 1
        assert result.recovered == 1
        assert blobs.where(blob_name("abc123")) == [Location.SOURCE]
        row = ledger.recording("abc123")
        assert row.transcription_status == TranscriptionStatus.PENDING
        assert row.process_end == NOW_CELL

    def test_interrupted_rows_are_recovered_from_any_location(
        self, orchestrator, blobs, ledger
    ):
        """INTERRUPTED rows are recovered wherever their blob is."""
        blobs.add(Location.ERROR, blob_name("def456"))
        ledger.add_recording(
            Recording("def456", transcription_status=TranscriptionStatus.INTERRUPTED)
        )
        ledger.add_recording(
            Recording("gone", transcription_status=TranscriptionStatus.INTERRUPTED)
        )

        result = orchestrator.recover_interrupted_files()

        assert result.recovered == 2
        assert blobs.where(blob_name("def456")) == [Location.SOURCE]
        assert ledger.recording("gone").transcription_status == "PENDING"
        messages = {d.record_id: d.message for d in result.details}
        assert messages["gone"] == "no file found, status PENDING"

    def test_unparseable_processing_blob_matched_by_row_is_listed_once(
        self, orchestrator, blobs, ledger
    ):
        """An INTERRUPTED row that finds an already listed blob reuses it."""
        blobs.add(Location.PROCESSING, "upload_abc.mp3")
        ledger.add_recording(
            Recording("abc", transcription_status=TranscriptionStatus.INTERRUPTED)
        )

        result = orchestrator.recover_interrupted_files()

        assert result.total == 1
        assert result.recovered == 1
        assert result.failed == 0
        assert blobs.where("upload_abc.mp3") == [Location.SOURCE]
        assert ledger.recording("abc").transcription_status == "PENDING"
        assert result.details[0].record_id == "abc"

    def test_non_audio_blobs_are_ignored(self, orchestrator, blobs):
        """Non-audio blobs in PROCESSING are left alone."""
        blobs.add(Location.PROCESSING, "notes.txt", content_type="text/plain")
        result = orchestrator.recover_interrupted_files()
        assert result.total == 0
        assert blobs.where("notes.txt") == [Location.PROCESSING]


class TestErrorRecovery:
    """Tests for bounded error recovery."""

    def test_first_retry_marks_blob_and_row(self, orchestrator, blobs, ledger):
        """A first retry marks the blob and sets the row to RETRY."""
        blobs.add(Location.ERROR, blob_name("abc123"), description="fetched")
        ledger.add_recording(
            Recording("abc123", transcription_status=TranscriptionStatus.ERROR)
        )

        result = orchestrator.recover_error_files()

        assert result.recovered == 1
        info = blobs.info(Location.SOURCE, blob_name("abc123"))
        assert info.description == "fetched [RETRIED]"
        assert ledger.recording("abc123").transcription_status == "RETRY"

    def test_second_failure_stays_in_error_until_forced(
        self, orchestrator, blobs, ledger
    ):
        """A blob that failed again after one retry needs force recovery."""
        name = blob_name("abc123")
        blobs.add(Location.ERROR, name)
        ledger.add_recording(
            Recording("abc123", transcription_status=TranscriptionStatus.ERROR)
        )
        orchestrator.recover_error_files()
        # The transcription batch fails it again.
        blobs.move(blobs.info(Location.SOURCE, name), Location.ERROR)

        second = orchestrator.recover_error_files()

        assert second.skipped == 1
        assert second.recovered == 0
        assert second.details[0].message == "already retried; use force recovery"
        assert blobs.where(name) == [Location.ERROR]

        forced = orchestrator.force_recover_all_error_files()

        assert forced.recovered == 1
        info = blobs.info(Location.SOURCE, name)
        assert info.has_mark(RetryMark.RETRIED)
        assert info.has_mark(RetryMark.FORCE_RETRY)
        assert ledger.recording("abc123").transcription_status == "FORCE_RETRY"

    def test_unparseable_name_still_moves(self, orchestrator, blobs):
        """A blob without a parseable id is still moved."""
        blobs.add(Location.ERROR, "upload.mp3")
        result = orchestrator.recover_error_files()
        assert result.recovered == 1
        assert result.details[0].record_id == "unknown"
        assert "record id not found in name" in result.details[0].message

    def test_failing_candidate_does_not_stop_scan(self, orchestrator, blobs):
        """One failing blob does not stop the others."""
        blobs.add(Location.ERROR, blob_name("a1"))
        blobs.add(Location.ERROR, blob_name("b2"))
        blobs.fail_move = True
        blobs.fail_copy = True

        result = orchestrator.recover_error_files()

        assert result.total == 2
        assert result.failed == 2
        assert not result.ok
        assert result.error is None

    def test_missing_location_fails_operation(self, orchestrator, blobs, settings):
        """A missing location fails the operation."""
        settings.location_ids[Location.ERROR] = ""
        blobs.add(Location.ERROR, blob_name("abc123"))

        result = orchestrator.recover_error_files()

        assert "ERROR_FOLDER_ID is required" in result.error
        assert result.message.startswith(f"{ERROR_RECOVERY} failed")
        assert blobs.where(blob_name("abc123")) == [Location.ERROR]

    def test_held_lease_skips_operation(self, orchestrator, blobs, state):
        """A recovery lease held elsewhere skips the operation."""
        Lease(state, "recovery", holder="other", clock=fixed_clock).acquire()
        blobs.add(Location.ERROR, blob_name("abc123"))

        result = orchestrator.recover_error_files()

        assert "other" in result.error
        assert blobs.where(blob_name("abc123")) == [Location.ERROR]

    def test_lease_released_after_run(self, orchestrator, state):
        """The recovery lease is released after the run."""
        orchestrator.recover_error_files()
        assert state.get_json("lease_recovery") is None


class TestPendingReset:
    """Tests for resetting stale pending transcriptions."""

    def _pending(self, ledger, record_id: str, process_start: str) -> None:
        ledger.add_recording(
            Recording(
                record_id,
                transcription_status=TranscriptionStatus.PENDING,
                process_start=process_start,
            )
        )

    def test_stale_row_reset_and_blob_returned(self, orchestrator, blobs, ledger):
        """A stale row is reset and its blob returned to SOURCE."""
        self._pending(ledger, "abc123", "2025/01/31 08:00:00")
        blobs.add(Location.ERROR, blob_name("abc123"))

        result = orchestrator.reset_pending_transcriptions()

        assert result.recovered == 1
        row = ledger.recording("abc123")
        assert row.transcription_status == "RESET_PENDING"
        assert row.process_start == NOW_CELL
        assert row.process_end == NOW_CELL
        info = blobs.info(Location.SOURCE, blob_name("abc123"))
        assert info.has_mark(RetryMark.RESET_RETRY)

    def test_recent_row_left_alone(self, orchestrator, ledger):
        """A row inside the timeout is left alone."""
        self._pending(ledger, "abc123", "2025/01/31 08:50:00")
        result = orchestrator.reset_pending_transcriptions()
        assert result.total == 0
        assert ledger.recording("abc123").transcription_status == "PENDING"

    def test_row_without_timestamps_is_stale(self, orchestrator, ledger):
        """A row without timestamps counts as stale."""
        self._pending(ledger, "abc123", "")
        result = orchestrator.reset_pending_transcriptions()
        assert result.total == 1
        assert result.details[0].message == "status RESET_PENDING, no file found"

    def test_completed_blob_is_not_moved(self, orchestrator, blobs, ledger):
        """A blob already in COMPLETED stays there."""
        self._pending(ledger, "abc123", "2025/01/31 08:00:00")
        blobs.add(Location.COMPLETED, blob_name("abc123"))

        result = orchestrator.reset_pending_transcriptions()

        assert result.recovered == 1
        assert blobs.where(blob_name("abc123")) == [Location.COMPLETED]


class TestFullRecovery:
    """Tests for the combined recovery run."""

    def test_steps_run_in_order(self, orchestrator):
        """Steps run in their fixed order."""
        run = orchestrator.run_full_recovery()

        assert isinstance(run.steps[0], DetectionResult)
        assert [step.operation for step in run.steps[1:]] == [
            PENDING_RESET,
            ERROR_RECOVERY,
            INTERRUPTED_RECOVERY,
        ]
        assert run.ok
        assert not run.has_activity

    def test_quiet_run_sends_no_email(self, orchestrator, notifier):
        """A run with no activity sends no email."""
        orchestrator.run_full_recovery()
        assert notifier.sent == []

    def test_detected_failure_flows_back_to_source(
        self, orchestrator, blobs, ledger, notifier
    ):
        """A partial failure is moved to ERROR and then retried in one run."""
        blobs.add(Location.COMPLETED, blob_name("abc123"))
        ledger.add_recording(
            Recording("abc123", transcription_status=TranscriptionStatus.SUCCESS)
        )
        ledger.add_transcript("abc123", "GPT-4o-mini API呼び出しエラー: timeout")

        run = orchestrator.run_full_recovery()

        assert run.has_activity
        assert run.steps[0].detected == 1
        assert blobs.where(blob_name("abc123")) == [Location.SOURCE]
        assert ledger.recording("abc123").transcription_status == "RETRY"
        subjects = [subject for _, subject, _ in notifier.sent]
        assert subjects == [PARTIAL_FAILURE_SUBJECT, RECOVERY_SUBJECT]
        assert run.message.count("\n") == 3

    def test_failed_step_does_not_stop_later_steps(
        self, orchestrator, blobs, settings
    ):
        """A failed step does not stop later steps."""
        settings.location_ids[Location.COMPLETED] = ""
        blobs.add(Location.PROCESSING, blob_name("abc123"))

        run = orchestrator.run_full_recovery()

        assert run.steps[0].error is not None
        assert run.steps[1].error is not None
        assert run.steps[3].recovered == 1
        assert blobs.where(blob_name("abc123")) == [Location.SOURCE]
        assert not run.ok

    def test_held_lease_skips_run(self, orchestrator, state):
        """A recovery lease held elsewhere skips the run."""
        Lease(state, "recovery", holder="other", clock=fixed_clock).acquire()
        run = orchestrator.run_full_recovery()
        assert run.steps == []
        assert "other" in run.error
