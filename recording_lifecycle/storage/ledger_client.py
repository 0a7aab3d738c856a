"""Ledger HTTP client.

The ledger (the Recordings and call_records tables) is served by an
internal HTTP API; this client reads whole tables and writes single rows
or cells. There are no multi-row or cross-store transactions.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from recording_lifecycle.storage.interface import LedgerStore
from recording_lifecycle.utils.errors import ConfigurationError, LedgerError

logger = logging.getLogger(__name__)


class LedgerClient(LedgerStore):
    """Client for ledger operations via the internal API.

    Reads configuration from environment variables:
        LEDGER_URL, LEDGER_SECRET
    """

    def __init__(
        self,
        ledger_url: str | None = None,
        secret: str | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.ledger_url = (ledger_url or os.environ.get("LEDGER_URL", "")).rstrip("/")
        self.secret = secret or os.environ.get("LEDGER_SECRET", "")

        if not self.ledger_url:
            raise ConfigurationError("LEDGER_URL is required", setting="LEDGER_URL")
        if not self.secret:
            raise ConfigurationError(
                "LEDGER_SECRET is required", setting="LEDGER_SECRET"
            )

        self._client = client or httpx.Client(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        """Build authentication headers for the internal ledger API."""
        return {
            "X-Internal-Secret": self.secret,
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        """Close the HTTP client and release the connection pool."""
        self._client.close()

    def _request(
        self, method: str, table: str, path: str, operation: str, **kwargs: Any
    ) -> httpx.Response:
        url = f"{self.ledger_url}/internal/ledger/{table}/{path}"
        try:
            response = self._client.request(
                method, url, headers=self._headers(), **kwargs
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise LedgerError(
                f"Ledger {operation} failed for '{table}': "
                f"HTTP {exc.response.status_code}",
                table=table,
            ) from exc
        except httpx.RequestError as exc:
            raise LedgerError(
                f"Ledger {operation} failed for '{table}': {exc}",
                table=table,
            ) from exc
        return response

    def read_rows(self, table: str) -> list[list[Any]]:
        """Read every data row of a table (header excluded).

        Raises:
            LedgerError: If the table cannot be read or the response is
                malformed.
        """
        response = self._request("GET", table, "rows", "read")
        try:
            rows = response.json()["rows"]
        except (ValueError, KeyError, TypeError) as exc:
            raise LedgerError(
                f"Malformed ledger response for '{table}'", table=table
            ) from exc
        if not isinstance(rows, list):
            raise LedgerError(f"Malformed ledger response for '{table}'", table=table)
        return [list(row) for row in rows]

    def update_cells(self, table: str, row_index: int, cells: dict[int, Any]) -> None:
        """Write cells of one row.

        Args:
            table: Table name.
            row_index: Zero-based data-row index.
            cells: Column index to value.

        Raises:
            LedgerError: If the write fails.
        """
        if not cells:
            return
        payload = {
            "row_index": row_index,
            "cells": {str(col): value for col, value in cells.items()},
        }
        self._request("POST", table, "cells", "update", json=payload)

    def append_row(self, table: str, values: list[Any]) -> None:
        """Append a row.

        Raises:
            LedgerError: If the append fails.
        """
        self._request("POST", table, "rows", "append", json={"values": values})
