"""Timestamp formatting for ledger cells.

Ledger timestamps are local wall-clock strings in the configured
timezone. Both the ``2025/01/31 09:00:00`` form written by this package
and the ``2025-01-31 09:00:00`` form appended by the webhook receiver
are accepted when reading.
"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from recording_lifecycle.constants import LEDGER_TIMESTAMP_FORMAT

_READ_FORMATS = (
    LEDGER_TIMESTAMP_FORMAT,
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y-%m-%d %H:%M",
)


def now_utc() -> datetime:
    return datetime.now(UTC)


def format_ledger_timestamp(moment: datetime, tz_name: str) -> str:
    """Render an aware datetime as a ledger cell in ``tz_name``."""
    return moment.astimezone(ZoneInfo(tz_name)).strftime(LEDGER_TIMESTAMP_FORMAT)


def parse_ledger_timestamp(value: object, tz_name: str) -> datetime | None:
    """Parse a ledger cell into an aware datetime.

    Returns:
        The timestamp, or None when the cell is empty or unparseable.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=ZoneInfo(tz_name))
        return value
    text = str(value or "").strip()
    if not text:
        return None
    for fmt in _READ_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=ZoneInfo(tz_name))
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(tz_name))
    return parsed


def to_epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_epoch_millis(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)
