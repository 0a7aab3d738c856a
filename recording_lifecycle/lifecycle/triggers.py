"""One-shot follow-up invocations.

The scheduler that runs this package polls ``run-due``; a trigger is a
persisted ``{handler, run_at}`` entry that becomes due after a delay.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta

from recording_lifecycle.storage.interface import StateStore
from recording_lifecycle.utils.clock import from_epoch_millis, now_utc, to_epoch_millis

logger = logging.getLogger(__name__)

TRIGGERS_KEY = "pending_triggers"


class TriggerScheduler(ABC):
    @abstractmethod
    def has_pending(self, handler: str) -> bool:
        """Return True if a trigger for ``handler`` is already scheduled."""

    @abstractmethod
    def schedule(self, handler: str, delay_seconds: int) -> None:
        """Schedule ``handler`` to run once after ``delay_seconds``."""


class StateTriggerScheduler(TriggerScheduler):
    """Triggers persisted as a JSON list in the state store."""

    def __init__(
        self,
        state: StateStore,
        key: str = TRIGGERS_KEY,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.state = state
        self.key = key
        self.clock = clock

    def _load(self) -> list[dict]:
        value = self.state.get_json(self.key)
        if not isinstance(value, list):
            return []
        return [t for t in value if isinstance(t, dict) and t.get("handler")]

    def _save(self, triggers: list[dict]) -> None:
        if triggers:
            self.state.put_json(self.key, triggers)
        else:
            self.state.delete(self.key)

    def has_pending(self, handler: str) -> bool:
        return any(t["handler"] == handler for t in self._load())

    def schedule(self, handler: str, delay_seconds: int) -> None:
        run_at = self.clock() + timedelta(seconds=delay_seconds)
        triggers = self._load()
        triggers.append({"handler": handler, "run_at": to_epoch_millis(run_at)})
        self._save(triggers)
        logger.info("Scheduled %s in %ds", handler, delay_seconds)

    def pop_due(self, now: datetime | None = None) -> list[str]:
        """Remove and return the handlers whose run time has passed."""
        now = now or self.clock()
        due: list[str] = []
        remaining: list[dict] = []
        for trigger in self._load():
            try:
                run_at = from_epoch_millis(int(trigger.get("run_at", 0)))
            except (TypeError, ValueError):
                run_at = now
            if run_at <= now:
                due.append(trigger["handler"])
            else:
                remaining.append(trigger)
        if due:
            self._save(remaining)
        return due
