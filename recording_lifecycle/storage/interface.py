"""Abstract store interfaces.

The orchestration code depends only on these classes; concrete
implementations talk to an S3-compatible bucket and the ledger HTTP API.
None of the stores offers transactions, and no call is atomic with any
other.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from recording_lifecycle.constants import Location
from recording_lifecycle.models import BlobInfo


class BlobStore(ABC):
    """Hierarchical blob storage with four lifecycle locations."""

    @abstractmethod
    def list(self, location: Location) -> list[BlobInfo]:
        """List the blobs currently in a location."""

    @abstractmethod
    def get_bytes(self, blob: BlobInfo) -> bytes:
        """Read a blob's content."""

    @abstractmethod
    def put(
        self,
        location: Location,
        name: str,
        data: bytes,
        description: str = "",
        content_type: str = "",
    ) -> BlobInfo:
        """Store new content under ``name`` in a location."""

    @abstractmethod
    def move(
        self, blob: BlobInfo, location: Location, description: str | None = None
    ) -> BlobInfo:
        """Move a blob directly, optionally replacing its description."""

    @abstractmethod
    def copy(
        self, blob: BlobInfo, location: Location, description: str | None = None
    ) -> BlobInfo:
        """Copy a blob's bytes into a location under the same name."""

    @abstractmethod
    def delete(self, blob: BlobInfo) -> None:
        """Remove a blob from its location."""


class LedgerStore(ABC):
    """Row-oriented ledger addressed by table name and data-row index.

    Row indexes are zero-based and exclude the header row.
    """

    @abstractmethod
    def read_rows(self, table: str) -> list[list[Any]]:
        """Read every data row of a table."""

    @abstractmethod
    def update_cells(
        self, table: str, row_index: int, cells: dict[int, Any]
    ) -> None:
        """Write cells of one row, keyed by column index."""

    @abstractmethod
    def append_row(self, table: str, values: list[Any]) -> None:
        """Append a row at the end of a table."""


class StateStore(ABC):
    """Small persisted key/value store for JSON documents."""

    @abstractmethod
    def get_json(self, key: str) -> Any | None:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    def put_json(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete ``key``; deleting an absent key is not an error."""
