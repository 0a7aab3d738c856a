"""Ledger rows, blob descriptors and blob naming.

Recording mirrors one row of the Recordings table; CallRecord carries the
transcript columns of the call_records table that the lifecycle audits.
Blob names embed the capture timestamp and recording id so a blob can be
mapped back to its row without a ledger lookup.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import UTC, datetime
from typing import Any

from recording_lifecycle.constants import (
    AUDIO_CONTENT_TYPES,
    AUDIO_EXTENSIONS,
    BLOB_EXTENSION,
    BLOB_NAME_FALLBACK_PATTERN,
    BLOB_NAME_PATTERN,
    BLOB_PREFIX,
    CALL_COL_CALL_DATE,
    CALL_COL_CALL_TIME,
    CALL_COL_RECORD_ID,
    CALL_COL_TRANSCRIPT,
    RECORDING_COLUMNS,
    Location,
)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class Recording:
    """One row of the Recordings table, in column order."""

    record_id: str
    timestamp_recording: str = ""
    download_url: str = ""
    call_date: str = ""
    call_time: str = ""
    duration: str = ""
    sales_phone_number: str = ""
    customer_phone_number: str = ""
    timestamp_fetch: str = ""
    fetch_status: str = ""
    timestamp_transcription: str = ""
    transcription_status: str = ""
    process_start: str = ""
    process_end: str = ""

    @classmethod
    def from_row(cls, row: list[Any]) -> Recording:
        """Build a Recording from a positional ledger row.

        Short rows are padded; extra trailing cells are ignored.
        """
        width = len(RECORDING_COLUMNS)
        cells = [_cell(v) for v in list(row)[:width]]
        cells.extend([""] * (width - len(cells)))
        return cls(*cells)

    def to_row(self) -> list[str]:
        return [_cell(getattr(self, f.name)) for f in fields(self)]


@dataclass
class CallRecord:
    """Transcript-bearing subset of a call_records row."""

    record_id: str
    call_date: str
    call_time: str
    transcript: str

    @classmethod
    def from_row(cls, row: list[Any]) -> CallRecord:
        cells = [_cell(v) for v in row]
        cells.extend([""] * (CALL_COL_TRANSCRIPT + 1 - len(cells)))
        return cls(
            record_id=cells[CALL_COL_RECORD_ID],
            call_date=cells[CALL_COL_CALL_DATE],
            call_time=cells[CALL_COL_CALL_TIME],
            transcript=cells[CALL_COL_TRANSCRIPT],
        )


@dataclass
class BlobInfo:
    """A blob as seen in one lifecycle location."""

    name: str
    location: Location
    description: str = ""
    size: int = 0
    content_type: str = ""
    created_at: datetime | None = None

    @property
    def record_id(self) -> str | None:
        return extract_record_id(self.name)

    def has_mark(self, mark: str) -> bool:
        return mark in self.description


@dataclass
class ParsedBlobName:
    prefix: str
    captured_at: datetime
    record_id: str
    extension: str


def build_blob_name(record_id: str, captured_at: datetime) -> str:
    """Build ``zoom_call_<YYYYMMDDHHMMSS>_<record_id>.mp3`` (UTC stamp)."""
    if captured_at.tzinfo is None:
        captured_at = captured_at.replace(tzinfo=UTC)
    stamp = captured_at.astimezone(UTC).strftime("%Y%m%d%H%M%S")
    return f"{BLOB_PREFIX}_{stamp}_{record_id}.{BLOB_EXTENSION}"


def parse_blob_name(name: str) -> ParsedBlobName | None:
    match = BLOB_NAME_PATTERN.match(name or "")
    if not match:
        return None
    try:
        captured_at = datetime.strptime(
            match.group("timestamp"), "%Y%m%d%H%M%S"
        ).replace(tzinfo=UTC)
    except ValueError:
        return None
    return ParsedBlobName(
        prefix=match.group("prefix"),
        captured_at=captured_at,
        record_id=match.group("record_id"),
        extension=match.group("ext"),
    )


def extract_record_id(name: str) -> str | None:
    """Extract the recording id from a blob name.

    Tries the full naming convention first, then a broader pattern that
    only requires a 32-hex or UUID id before the extension.
    """
    parsed = parse_blob_name(name)
    if parsed:
        return parsed.record_id
    match = BLOB_NAME_FALLBACK_PATTERN.search(name or "")
    return match.group("record_id") if match else None


def is_audio_blob(blob: BlobInfo) -> bool:
    content_type = (blob.content_type or "").lower()
    if any(content_type.startswith(prefix) for prefix in AUDIO_CONTENT_TYPES):
        return True
    lowered = blob.name.lower()
    return any(lowered.endswith(ext) for ext in AUDIO_EXTENSIONS)
