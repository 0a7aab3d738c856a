"""Blob, ledger and state stores.

Public API:
    BlobStore       - Abstract lifecycle-location blob storage.
    LedgerStore     - Abstract row-oriented ledger.
    StateStore      - Abstract persisted JSON key/value store.
    RecordingLedger - Typed accessor over the Recordings tables.
"""

from recording_lifecycle.storage.interface import BlobStore, LedgerStore, StateStore
from recording_lifecycle.storage.recordings import RecordingLedger

__all__ = ["BlobStore", "LedgerStore", "StateStore", "RecordingLedger"]
