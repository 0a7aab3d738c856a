"""In-memory stores, provider, trigger scheduler and notifier for tests."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from recording_lifecycle.config import Settings
from recording_lifecycle.constants import (
    CALL_COL_RECORD_ID,
    CALL_COL_TRANSCRIPT,
    CALL_RECORDS_TABLE,
    RECORDINGS_TABLE,
    Location,
)
from recording_lifecycle.lifecycle.triggers import TriggerScheduler
from recording_lifecycle.models import BlobInfo, Recording
from recording_lifecycle.notify.email import Notifier
from recording_lifecycle.provider.interface import (
    ProviderRecording,
    RecordingPage,
    RecordingProvider,
)
from recording_lifecycle.storage.interface import BlobStore, LedgerStore, StateStore
from recording_lifecycle.utils.errors import NotificationError, StorageError

FIXED_NOW = datetime(2025, 1, 31, 0, 0, 0, tzinfo=UTC)


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_settings(**overrides: Any) -> Settings:
    settings = Settings(
        location_ids={
            Location.SOURCE: "source",
            Location.PROCESSING: "processing",
            Location.COMPLETED: "completed",
            Location.ERROR: "error",
        },
        admin_emails=["ops@example.com"],
        rate_limit_seconds=0.0,
    )
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


class Ticker:
    """Monotonic clock that advances by ``step`` on every read."""

    def __init__(self, step: float = 0.0) -> None:
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class InMemoryBlobStore(BlobStore):
    def __init__(self) -> None:
        self.blobs: dict[Location, dict[str, tuple[bytes, BlobInfo]]] = {
            location: {} for location in Location
        }
        self.fail_move = False
        self.fail_copy = False
        self.fail_delete = False
        self.fail_list: set[Location] = set()

    def add(
        self,
        location: Location,
        name: str,
        data: bytes = b"audio",
        description: str = "",
        content_type: str = "audio/mpeg",
    ) -> BlobInfo:
        return self.put(location, name, data, description, content_type)

    def where(self, name: str) -> list[Location]:
        return [loc for loc, blobs in self.blobs.items() if name in blobs]

    def info(self, location: Location, name: str) -> BlobInfo:
        return replace(self.blobs[location][name][1])

    def data(self, location: Location, name: str) -> bytes:
        return self.blobs[location][name][0]

    def list(self, location: Location) -> list[BlobInfo]:
        if location in self.fail_list:
            raise StorageError(f"cannot list {location.value}", operation="list")
        return [replace(info) for _, info in self.blobs[location].values()]

    def get_bytes(self, blob: BlobInfo) -> bytes:
        try:
            return self.blobs[blob.location][blob.name][0]
        except KeyError as exc:
            raise StorageError(f"missing {blob.name}", operation="get") from exc

    def put(
        self,
        location: Location,
        name: str,
        data: bytes,
        description: str = "",
        content_type: str = "",
    ) -> BlobInfo:
        info = BlobInfo(
            name=name,
            location=location,
            description=description,
            size=len(data),
            content_type=content_type,
        )
        self.blobs[location][name] = (data, info)
        return replace(info)

    def move(
        self, blob: BlobInfo, location: Location, description: str | None = None
    ) -> BlobInfo:
        if self.fail_move:
            raise StorageError("direct move unavailable", operation="move")
        data, info = self.blobs[blob.location].pop(blob.name)
        moved = replace(
            info,
            location=location,
            description=info.description if description is None else description,
        )
        self.blobs[location][blob.name] = (data, moved)
        return replace(moved)

    def copy(
        self, blob: BlobInfo, location: Location, description: str | None = None
    ) -> BlobInfo:
        if self.fail_copy:
            raise StorageError("copy unavailable", operation="copy")
        data = self.get_bytes(blob)
        return self.put(
            location,
            blob.name,
            data,
            blob.description if description is None else description,
            blob.content_type,
        )

    def delete(self, blob: BlobInfo) -> None:
        if self.fail_delete:
            raise StorageError("delete unavailable", operation="delete")
        self.blobs[blob.location].pop(blob.name, None)


class InMemoryLedger(LedgerStore):
    def __init__(self) -> None:
        self.tables: dict[str, list[list[Any]]] = {
            RECORDINGS_TABLE: [],
            CALL_RECORDS_TABLE: [],
        }

    def add_recording(self, recording: Recording) -> None:
        self.tables[RECORDINGS_TABLE].append(recording.to_row())

    def add_transcript(self, record_id: str, transcript: str) -> None:
        row = [""] * (CALL_COL_TRANSCRIPT + 1)
        row[CALL_COL_RECORD_ID] = record_id
        row[CALL_COL_TRANSCRIPT] = transcript
        self.tables[CALL_RECORDS_TABLE].append(row)

    def recordings(self) -> list[Recording]:
        return [Recording.from_row(row) for row in self.tables[RECORDINGS_TABLE]]

    def recording(self, record_id: str) -> Recording:
        matches = [r for r in self.recordings() if r.record_id == record_id]
        assert len(matches) == 1, f"expected one row for {record_id}, got {matches}"
        return matches[0]

    def read_rows(self, table: str) -> list[list[Any]]:
        return [list(row) for row in self.tables.setdefault(table, [])]

    def update_cells(self, table: str, row_index: int, cells: dict[int, Any]) -> None:
        row = self.tables[table][row_index]
        for col, value in cells.items():
            if col >= len(row):
                row.extend([""] * (col + 1 - len(row)))
            row[col] = value

    def append_row(self, table: str, values: list[Any]) -> None:
        self.tables.setdefault(table, []).append(list(values))


class InMemoryStateStore(StateStore):
    """Values are round-tripped through JSON like a real store."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.writes: list[str] = []

    def get_json(self, key: str) -> Any | None:
        raw = self.values.get(key)
        return None if raw is None else json.loads(raw)

    def put_json(self, key: str, value: Any) -> None:
        self.values[key] = json.dumps(value)
        self.writes.append(key)

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


class FakeProvider(RecordingProvider):
    """Serves a fixed recording list in pages; downloads come from a dict."""

    def __init__(
        self,
        recordings: list[ProviderRecording] | None = None,
        downloads: dict[str, bytes | None] | None = None,
    ) -> None:
        self.recordings = recordings or []
        self.downloads = downloads
        self.pages_requested: list[int] = []
        self.downloaded: list[str] = []

    def list_recordings(
        self, from_time: datetime, to_time: datetime, page: int, page_size: int
    ) -> RecordingPage:
        self.pages_requested.append(page)
        start = (page - 1) * page_size
        items = self.recordings[start:start + page_size]
        more = start + page_size < len(self.recordings)
        return RecordingPage(
            recordings=items,
            next_page_token=f"token-{page + 1}" if more else "",
            page_number=page,
        )

    def download(self, url: str) -> bytes | None:
        self.downloaded.append(url)
        if self.downloads is None:
            return f"bytes:{url}".encode()
        return self.downloads.get(url)


class FakeTriggers(TriggerScheduler):
    def __init__(self) -> None:
        self.scheduled: list[tuple[str, int]] = []

    def has_pending(self, handler: str) -> bool:
        return any(name == handler for name, _ in self.scheduled)

    def schedule(self, handler: str, delay_seconds: int) -> None:
        self.scheduled.append((handler, delay_seconds))


class RecordingNotifier(Notifier):
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_for = fail_for or set()

    def send(self, recipient: str, subject: str, body: str) -> None:
        if recipient in self.fail_for:
            raise NotificationError("mailbox unavailable", recipient=recipient)
        self.sent.append((recipient, subject, body))


def provider_recordings(count: int, start: int = 0) -> list[ProviderRecording]:
    return [
        ProviderRecording(
            id=f"rec{index:04d}",
            download_url=f"https://zoom.example.com/download/rec{index:04d}",
            start_time=datetime(2025, 1, 30, 12, 0, index % 60, tzinfo=UTC),
            duration=60,
            caller_number="+81312345678",
            callee_number="+819012345678",
            direction="outbound",
        )
        for index in range(start, start + count)
    ]
