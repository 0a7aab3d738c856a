"""Bounded persisted set of recording ids that were already ingested.

Stored as a single JSON list, oldest first. Eviction is by insertion
order, so an id evicted from the front may be fetched again as a
duplicate blob.
"""

from __future__ import annotations

import logging

from recording_lifecycle.storage.interface import StateStore

logger = logging.getLogger(__name__)

DEDUP_CACHE_KEY = "processed_call_ids"
DEFAULT_LIMIT = 1000


class DedupCache:
    def __init__(
        self, state: StateStore, limit: int = DEFAULT_LIMIT, key: str = DEDUP_CACHE_KEY
    ) -> None:
        self.state = state
        self.limit = limit
        self.key = key

    def load(self) -> list[str]:
        value = self.state.get_json(self.key)
        if not isinstance(value, list):
            if value is not None:
                logger.warning("Ignoring malformed dedup cache under '%s'", self.key)
            return []
        return [str(item) for item in value]

    def is_processed(self, record_id: str) -> bool:
        return str(record_id) in self.load()

    def mark_processed(self, record_id: str) -> None:
        """Append ``record_id`` if absent, evicting the oldest beyond the cap."""
        ids = self.load()
        record_id = str(record_id)
        if record_id in ids:
            return
        ids.append(record_id)
        if len(ids) > self.limit:
            ids = ids[len(ids) - self.limit:]
        self.state.put_json(self.key, ids)
