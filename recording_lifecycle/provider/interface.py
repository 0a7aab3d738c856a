"""Telephony provider abstraction.

The fetch scheduler pages through a provider's recording listing and
downloads each recording; it depends only on RecordingProvider so it
can run against an in-memory provider in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from recording_lifecycle.utils.clock import parse_ledger_timestamp

DOMESTIC_PREFIX = "+81"


@dataclass
class ProviderRecording:
    """One item of the provider's recording listing."""

    id: str
    download_url: str = ""
    start_time: datetime | None = None
    duration: int = 0
    caller_number: str = ""
    callee_number: str = ""
    direction: str = ""

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> ProviderRecording:
        """Build from a listing item or a webhook ``recordings[]`` entry."""
        raw_start = (
            item.get("start_time") or item.get("date_time") or item.get("created_at")
        )
        try:
            duration = int(item.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0
        return cls(
            id=str(item.get("id") or item.get("recording_id") or ""),
            download_url=str(
                item.get("download_url") or item.get("download_url_with_token") or ""
            ),
            start_time=parse_ledger_timestamp(raw_start, "UTC") if raw_start else None,
            duration=duration,
            caller_number=str(item.get("caller_number") or ""),
            callee_number=str(item.get("callee_number") or ""),
            direction=str(item.get("direction") or "").lower(),
        )

    def phone_numbers(self) -> tuple[str, str]:
        """Return ``(sales_number, customer_number)`` in domestic format.

        Outbound calls are placed by sales; inbound calls are answered by
        sales. Without a direction the caller is taken as sales.
        """
        if self.direction == "inbound":
            sales, customer = self.callee_number, self.caller_number
        else:
            sales, customer = self.caller_number, self.callee_number
        return to_domestic(sales), to_domestic(customer)


def to_domestic(number: str) -> str:
    number = (number or "").strip()
    if number.startswith(DOMESTIC_PREFIX):
        return "0" + number[len(DOMESTIC_PREFIX):]
    return number


@dataclass
class RecordingPage:
    recordings: list[ProviderRecording] = field(default_factory=list)
    next_page_token: str = ""
    page_number: int = 1


class RecordingProvider(ABC):
    @abstractmethod
    def list_recordings(
        self, from_time: datetime, to_time: datetime, page: int, page_size: int
    ) -> RecordingPage:
        """Return one page of recordings started within the window.

        Raises:
            ProviderError: If the listing call fails.
        """

    @abstractmethod
    def download(self, url: str) -> bytes | None:
        """Download a recording, returning None on any failure."""
