"""Continuation checkpoints for time-boxed fetch loops.

Checkpoints form a small FIFO queue so that a second interruption before
the first continuation runs does not discard unprocessed pages. A
checkpoint is removed from the persisted queue before it is returned,
so it is consumed exactly once even if the continuation then fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from recording_lifecycle.storage.interface import StateStore
from recording_lifecycle.utils.clock import from_epoch_millis, to_epoch_millis

logger = logging.getLogger(__name__)

CHECKPOINT_KEY = "zoomphone_continuation"

MODE_WINDOW = "window"
MODE_LEDGER = "ledger"


@dataclass
class Checkpoint:
    """Resume point: ``page`` is the first page not yet processed."""

    mode: str
    from_time: datetime | None
    to_time: datetime | None
    page: int

    def to_json(self) -> dict:
        return {
            "mode": self.mode,
            "from": to_epoch_millis(self.from_time) if self.from_time else None,
            "to": to_epoch_millis(self.to_time) if self.to_time else None,
            "page": self.page,
        }

    @classmethod
    def from_json(cls, value: dict) -> Checkpoint:
        raw_from = value.get("from")
        raw_to = value.get("to")
        return cls(
            mode=str(value.get("mode") or MODE_WINDOW),
            from_time=from_epoch_millis(raw_from) if raw_from is not None else None,
            to_time=from_epoch_millis(raw_to) if raw_to is not None else None,
            page=max(int(value.get("page") or 1), 1),
        )

    def same_window(self, other: Checkpoint) -> bool:
        return (
            self.mode == other.mode
            and self.from_time == other.from_time
            and self.to_time == other.to_time
        )


class CheckpointQueue:
    def __init__(self, state: StateStore, key: str = CHECKPOINT_KEY) -> None:
        self.state = state
        self.key = key

    def _load(self) -> list[Checkpoint]:
        value = self.state.get_json(self.key)
        if value is None:
            return []
        # A single object is the legacy single-slot format.
        items = value if isinstance(value, list) else [value]
        checkpoints = []
        for item in items:
            try:
                checkpoints.append(Checkpoint.from_json(item))
            except (AttributeError, TypeError, ValueError):
                logger.warning("Dropping malformed checkpoint: %r", item)
        return checkpoints

    def _save(self, checkpoints: list[Checkpoint]) -> None:
        if checkpoints:
            self.state.put_json(self.key, [c.to_json() for c in checkpoints])
        else:
            self.state.delete(self.key)

    def pending(self) -> list[Checkpoint]:
        return self._load()

    def push(self, checkpoint: Checkpoint) -> None:
        """Queue ``checkpoint``; the same window keeps its lowest page."""
        checkpoints = self._load()
        for existing in checkpoints:
            if existing.same_window(checkpoint):
                existing.page = min(existing.page, checkpoint.page)
                break
        else:
            checkpoints.append(checkpoint)
        self._save(checkpoints)
        logger.info(
            "Saved continuation checkpoint mode=%s page=%d (%d queued)",
            checkpoint.mode,
            checkpoint.page,
            len(checkpoints),
        )

    def pop(self) -> Checkpoint | None:
        """Remove and return the oldest checkpoint, persisting first."""
        checkpoints = self._load()
        if not checkpoints:
            return None
        head, rest = checkpoints[0], checkpoints[1:]
        self._save(rest)
        return head
