"""Typed accessor over the Recordings and call_records ledger tables.

Every lookup re-reads the table. Writes touch a single row so that a
crash between two writes leaves at most one row stale, which the
recovery operations repair on their next pass.
"""

from __future__ import annotations

import logging

from recording_lifecycle.constants import (
    CALL_RECORDS_TABLE,
    COL_PROCESS_END,
    COL_PROCESS_START,
    COL_RECORD_ID,
    COL_STATUS_FETCH,
    COL_STATUS_TRANSCRIPTION,
    COL_TIMESTAMP_FETCH,
    COL_TIMESTAMP_TRANSCRIPTION,
    RECORDINGS_TABLE,
)
from recording_lifecycle.models import CallRecord, Recording
from recording_lifecycle.storage.interface import LedgerStore

logger = logging.getLogger(__name__)


class RecordingLedger:
    """Read and write Recording rows by record id."""

    def __init__(
        self,
        store: LedgerStore,
        table: str = RECORDINGS_TABLE,
        call_records_table: str = CALL_RECORDS_TABLE,
    ) -> None:
        self.store = store
        self.table = table
        self.call_records_table = call_records_table

    def list_recordings(self) -> list[tuple[int, Recording]]:
        """Return ``(row_index, recording)`` for every row with a record id."""
        recordings = []
        for index, row in enumerate(self.store.read_rows(self.table)):
            recording = Recording.from_row(row)
            if recording.record_id:
                recordings.append((index, recording))
        return recordings

    def find(self, record_id: str) -> tuple[int, Recording] | None:
        """Locate the row for ``record_id``, or None when it has none."""
        if not record_id:
            return None
        for index, row in enumerate(self.store.read_rows(self.table)):
            if row and str(row[COL_RECORD_ID]) == record_id:
                return index, Recording.from_row(row)
        return None

    def upsert(self, recording: Recording) -> bool:
        """Write ``recording`` over its existing row or append a new one.

        Returns:
            True if an existing row was updated, False if a row was appended.
        """
        found = self.find(recording.record_id)
        values = recording.to_row()
        if found is None:
            self.store.append_row(self.table, values)
            return False
        index, _ = found
        self.store.update_cells(
            self.table, index, {col: value for col, value in enumerate(values)}
        )
        return True

    def update_fetch_status(
        self, record_id: str, status: str, timestamp_fetch: str | None = None
    ) -> bool:
        found = self.find(record_id)
        if found is None:
            return False
        cells: dict[int, str] = {COL_STATUS_FETCH: status}
        if timestamp_fetch is not None:
            cells[COL_TIMESTAMP_FETCH] = timestamp_fetch
        self.store.update_cells(self.table, found[0], cells)
        return True

    def update_transcription_status(
        self,
        record_id: str,
        status: str,
        process_start: str | None = None,
        process_end: str | None = None,
        timestamp_transcription: str | None = None,
    ) -> bool:
        """Set the transcription status (and optional timestamps) of a row.

        Args:
            record_id: Recording id.
            status: New transcription status.
            process_start: Value for ``process_start`` when given.
            process_end: Value for ``process_end`` when given.
            timestamp_transcription: Value for ``timestamp_transcription``
                when given.

        Returns:
            False when no row matches ``record_id``.
        """
        found = self.find(record_id)
        if found is None:
            logger.warning(
                "No ledger row for transcription status update",
                extra={"record_id": record_id},
            )
            return False
        cells: dict[int, str] = {COL_STATUS_TRANSCRIPTION: status}
        if process_start is not None:
            cells[COL_PROCESS_START] = process_start
        if process_end is not None:
            cells[COL_PROCESS_END] = process_end
        if timestamp_transcription is not None:
            cells[COL_TIMESTAMP_TRANSCRIPTION] = timestamp_transcription
        self.store.update_cells(self.table, found[0], cells)
        return True

    def transcripts_by_record_id(self) -> dict[str, CallRecord]:
        """Load call_records once, keyed by record id (last row wins)."""
        records: dict[str, CallRecord] = {}
        for row in self.store.read_rows(self.call_records_table):
            record = CallRecord.from_row(row)
            if record.record_id:
                records[record.record_id] = record
        return records
