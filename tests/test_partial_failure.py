"""Tests for PartialFailureDetector."""

from __future__ import annotations

import pytest

from fakes import (
    InMemoryBlobStore,
    InMemoryLedger,
    RecordingNotifier,
    fixed_clock,
    make_settings,
)
from recording_lifecycle.constants import Location, TranscriptionStatus
from recording_lifecycle.lifecycle.blob_mover import BlobMover
from recording_lifecycle.models import Recording
from recording_lifecycle.notify.email import PARTIAL_FAILURE_SUBJECT
from recording_lifecycle.recovery.partial_failure import (
    PartialFailureDetector,
    detect_issue,
)
from recording_lifecycle.storage.recordings import RecordingLedger

NAME = "zoom_call_20250130120000_abc123.mp3"


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def detector(blobs, ledger, notifier):
    return PartialFailureDetector(
        BlobMover(blobs),
        RecordingLedger(ledger),
        make_settings(),
        notifier=notifier,
        clock=fixed_clock,
    )


def add_success(ledger, record_id: str, transcript: str | None) -> None:
    ledger.add_recording(
        Recording(record_id, transcription_status=TranscriptionStatus.SUCCESS)
    )
    if transcript is not None:
        ledger.add_transcript(record_id, transcript)


class TestDetectIssue:
    """Tests for failure signature matching."""

    def test_known_signature(self):
        """A known signature maps to its issue label."""
        assert detect_issue("要約: GPT-4o-mini API呼び出しエラー (500)") == (
            "GPT-4o-mini APIエラー"
        )

    def test_first_signature_wins(self):
        """The first matching signature in order wins."""
        text = "エラー発生： insufficient_quota"
        assert detect_issue(text) == "OpenAI APIクォータ制限"

    @pytest.mark.parametrize("text", ["", "お客様から見積もりの依頼がありました。"])
    def test_clean_transcript(self, text):
        """Text without a signature has no issue."""
        assert detect_issue(text) is None


class TestDetectAndRecover:
    """Tests for flagging SUCCESS rows."""

    def test_flags_row_and_moves_blob_to_error(self, detector, blobs, ledger, notifier):
        """A flagged row becomes ERROR_DETECTED and its blob moves to ERROR."""
        blobs.add(Location.COMPLETED, NAME)
        add_success(ledger, "abc123", "GPT-4o-mini API呼び出しエラー: timeout")

        result = detector.detect_and_recover()

        assert result.ok
        assert result.inspected == 1
        assert result.detected == 1
        detail = result.details[0]
        assert detail.issue == "GPT-4o-mini APIエラー"
        assert detail.file_found
        assert detail.message == f"status ERROR_DETECTED, moved {NAME} to error"
        assert blobs.where(NAME) == [Location.ERROR]
        row = ledger.recording("abc123")
        assert row.transcription_status == "ERROR_DETECTED"
        assert row.process_end == "2025/01/31 09:00:00"

        assert len(notifier.sent) == 1
        recipient, subject, body = notifier.sent[0]
        assert recipient == "ops@example.com"
        assert subject == PARTIAL_FAILURE_SUBJECT
        assert "重要な見逃しエラー: 1件" in body
        assert "Record ID: abc123" in body

    def test_second_run_is_noop(self, detector, blobs, ledger, notifier):
        """Flagged rows are no longer SUCCESS, so nothing moves again."""
        blobs.add(Location.COMPLETED, NAME)
        add_success(ledger, "abc123", "【文字起こし失敗: timeout】")
        detector.detect_and_recover()

        second = detector.detect_and_recover()

        assert second.inspected == 0
        assert second.detected == 0
        assert blobs.where(NAME) == [Location.ERROR]
        assert len(notifier.sent) == 1

    def test_rerun_on_unchanged_row_does_not_move_blob_again(
        self, detector, blobs, ledger
    ):
        """With the blob already in ERROR, a rerun only rewrites the status."""
        blobs.add(Location.COMPLETED, NAME)
        add_success(ledger, "abc123", "GPT-4o-mini API呼び出しエラー: timeout")
        detector.detect_and_recover()
        ledger.tables["Recordings"][0][11] = TranscriptionStatus.SUCCESS

        second = detector.detect_and_recover()

        assert second.detected == 1
        assert second.details[0].file_found is False
        assert blobs.where(NAME) == [Location.ERROR]
        assert ledger.recording("abc123").transcription_status == "ERROR_DETECTED"

    def test_missing_blob_still_updates_status(self, detector, ledger):
        """The status is updated even when no blob is found."""
        add_success(ledger, "abc123", "JSONの解析に失敗しました")

        result = detector.detect_and_recover()

        assert result.details[0].file_found is False
        assert result.details[0].message == "status ERROR_DETECTED, file not found"
        assert ledger.recording("abc123").transcription_status == "ERROR_DETECTED"

    def test_missing_and_clean_transcripts(self, detector, ledger, notifier):
        """Clean and missing transcripts are not flagged."""
        add_success(ledger, "clean", "通常の会話内容です。")
        add_success(ledger, "missing", None)

        result = detector.detect_and_recover()

        assert result.inspected == 2
        assert result.detected == 0
        assert result.missing_transcripts == 1
        assert notifier.sent == []

    def test_move_failure_counts_as_failed(self, detector, blobs, ledger):
        """A failed move counts the row as failed."""
        blobs.add(Location.SOURCE, NAME)
        add_success(ledger, "abc123", "情報抽出に失敗しました")
        blobs.fail_move = True
        blobs.fail_copy = True

        result = detector.detect_and_recover()

        assert result.detected == 1
        assert result.failed == 1
        assert result.details[0].status == "error"
        assert not result.ok

    def test_missing_location_fails(self, blobs, ledger):
        """A missing ERROR location fails the run."""
        settings = make_settings()
        settings.location_ids[Location.ERROR] = ""
        detector = PartialFailureDetector(
            BlobMover(blobs), RecordingLedger(ledger), settings, clock=fixed_clock
        )

        result = detector.detect_and_recover()

        assert "ERROR_FOLDER_ID is required" in result.error
        assert result.message.startswith("partial failure detection failed")


def test_statistics(detector, ledger):
    """Rows are counted per transcription status bucket."""
    for record_id, status in [
        ("a", "SUCCESS"),
        ("b", "SUCCESS"),
        ("c", "ERROR"),
        ("d", "PENDING"),
        ("e", "ERROR_DETECTED"),
        ("f", "RETRY"),
    ]:
        ledger.add_recording(Recording(record_id, transcription_status=status))

    assert detector.statistics() == {
        "total": 6,
        "success": 2,
        "error": 1,
        "error_detected": 1,
        "pending": 1,
        "other": 1,
    }


class TestCheckRecord:
    """Tests for the read-only single-record check."""

    def test_reports_issue_without_changing_row(self, detector, blobs, ledger):
        """The issue label is returned and nothing is moved or rewritten."""
        blobs.add(Location.COMPLETED, NAME)
        add_success(ledger, "abc123", "OpenAI APIからのレスポンスエラー")

        issue = detector.check_record("abc123")

        assert issue is not None
        assert ledger.recording("abc123").transcription_status == "SUCCESS"
        assert blobs.where(NAME) == [Location.COMPLETED]

    def test_clean_transcript(self, detector, ledger):
        """A transcript without a failure signature has no issue."""
        add_success(ledger, "abc123", "通常の会話内容です。")
        assert detector.check_record("abc123") is None

    def test_unknown_record(self, detector):
        """A record without a call record row has no issue."""
        assert detector.check_record("missing") is None
