"""Statuses, retry marks, failure signatures and ledger layout.

Column indexes are significant: the ledger is read and written by
position, matching the sheet layout the webhook receiver appends to.
"""

from __future__ import annotations

import re
from enum import StrEnum


class FetchStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    DUPLICATE = "DUPLICATE"
    DOWNLOAD_ERROR = "DOWNLOAD_ERROR"
    SAVE_ERROR = "SAVE_ERROR"


class TranscriptionStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    RETRY = "RETRY"
    FORCE_RETRY = "FORCE_RETRY"
    RESET_PENDING = "RESET_PENDING"
    ERROR_DETECTED = "ERROR_DETECTED"
    INTERRUPTED = "INTERRUPTED"


class Location(StrEnum):
    """The four lifecycle locations a blob can live in."""

    SOURCE = "source"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class RetryMark(StrEnum):
    RETRIED = "[RETRIED]"
    FORCE_RETRY = "[FORCE_RETRY]"
    RESET_RETRY = "[RESET_RETRY]"
    COPY_RECOVERED = "[COPY_RECOVERED]"


# Ordered: the first signature found in a transcript determines the issue.
FAILURE_SIGNATURES: tuple[tuple[str, str], ...] = (
    ("insufficient_quota", "OpenAI APIクォータ制限"),
    ("You exceeded your current quota", "OpenAI APIクォータ制限"),
    ("【文字起こし失敗:", "文字起こし処理失敗"),
    ("GPT-4o-mini API呼び出しエラー", "GPT-4o-mini APIエラー"),
    ("OpenAI APIからのレスポンスエラー", "OpenAI APIレスポンスエラー"),
    ("エラー発生：", "処理エラー"),
    ("情報抽出に失敗しました", "情報抽出エラー"),
    ("不明（抽出エラー）", "抽出エラー"),
    ("JSONの解析に失敗しました", "JSON解析エラー"),
)

# Issue labels that warrant operator attention in notifications.
HIGH_PRIORITY_ISSUES: frozenset[str] = frozenset(
    {
        "OpenAI APIクォータ制限",
        "GPT-4o-mini APIエラー",
        "OpenAI APIレスポンスエラー",
    }
)

RECORDINGS_TABLE = "Recordings"
CALL_RECORDS_TABLE = "call_records"

RECORDING_COLUMNS: tuple[str, ...] = (
    "record_id",
    "timestamp_recording",
    "download_url",
    "call_date",
    "call_time",
    "duration",
    "sales_phone_number",
    "customer_phone_number",
    "timestamp_fetch",
    "status_fetch",
    "timestamp_transcription",
    "status_transcription",
    "process_start",
    "process_end",
)

CALL_RECORD_COLUMNS: tuple[str, ...] = (
    "record_id",
    "call_date",
    "call_time",
    "sales_company",
    "sales_person",
    "customer_company",
    "customer_name",
    "call_status",
    "reason_for_refusal",
    "reason_for_appointment",
    "summary",
    "full_transcript",
)

COL_RECORD_ID = 0
COL_TIMESTAMP_RECORDING = 1
COL_DOWNLOAD_URL = 2
COL_CALL_DATE = 3
COL_CALL_TIME = 4
COL_DURATION = 5
COL_SALES_PHONE = 6
COL_CUSTOMER_PHONE = 7
COL_TIMESTAMP_FETCH = 8
COL_STATUS_FETCH = 9
COL_TIMESTAMP_TRANSCRIPTION = 10
COL_STATUS_TRANSCRIPTION = 11
COL_PROCESS_START = 12
COL_PROCESS_END = 13

CALL_COL_RECORD_ID = 0
CALL_COL_CALL_DATE = 1
CALL_COL_CALL_TIME = 2
CALL_COL_TRANSCRIPT = 11

LEDGER_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"

BLOB_PREFIX = "zoom_call"
BLOB_EXTENSION = "mp3"
BLOB_CONTENT_TYPE = "audio/mpeg"

AUDIO_CONTENT_TYPES: tuple[str, ...] = ("audio/", "application/octet-stream")
AUDIO_EXTENSIONS: tuple[str, ...] = (
    ".mp3",
    ".wav",
    ".m4a",
    ".aac",
    ".ogg",
    ".flac",
    ".wma",
)

# <prefix>_<YYYYMMDDHHMMSS>_<recordingId>.<ext>
BLOB_NAME_PATTERN = re.compile(
    r"^(?P<prefix>.+?)_(?P<timestamp>\d{14})_(?P<record_id>[A-Za-z0-9-]+)\.(?P<ext>\w+)$"
)
# Fallback for names that do not carry the capture timestamp.
BLOB_NAME_FALLBACK_PATTERN = re.compile(
    r"_(?P<record_id>[a-fA-F0-9]{32}|[a-fA-F0-9-]{36})\.\w+$"
)
