"""Expiring lease record in the state store.

Overlapping scheduled invocations of the same job use a lease to skip
work another invocation is already doing. Acquisition is read, check,
write and confirm by re-reading; it is not atomic, so two invocations
that write within the same instant may both proceed. Idempotent
ingestion covers that window. The expiry releases a lease whose holder
was terminated without cleanup.
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from recording_lifecycle.storage.interface import StateStore
from recording_lifecycle.utils.clock import from_epoch_millis, now_utc, to_epoch_millis
from recording_lifecycle.utils.errors import LeaseUnavailableError

logger = logging.getLogger(__name__)


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class Lease:
    """Named lease stored as ``lease_<name>`` = ``{holder, expires_at}``.

    Usage:
        with Lease(state, "fetch", ttl_seconds=360):
            run_fetch()
    """

    def __init__(
        self,
        state: StateStore,
        name: str,
        ttl_seconds: int = 360,
        holder: str | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.state = state
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.holder = holder or default_holder()
        self.clock = clock
        self.key = f"lease_{name}"

    def current(self) -> dict | None:
        """Return the stored lease if it has not expired."""
        value = self.state.get_json(self.key)
        if not isinstance(value, dict):
            return None
        try:
            expires_at = from_epoch_millis(int(value["expires_at"]))
        except (KeyError, TypeError, ValueError):
            return None
        if expires_at <= self.clock():
            return None
        return value

    def acquire(self) -> None:
        """Take the lease.

        Raises:
            LeaseUnavailableError: If another holder has an unexpired lease.
        """
        existing = self.current()
        if existing and existing.get("holder") != self.holder:
            raise LeaseUnavailableError(
                f"Lease '{self.name}' is held by {existing.get('holder')}",
                holder=existing.get("holder"),
            )
        if existing is None:
            stored = self.state.get_json(self.key)
            if stored is not None:
                logger.info("Taking over expired lease '%s'", self.name)

        expires_at = self.clock() + timedelta(seconds=self.ttl_seconds)
        self.state.put_json(
            self.key,
            {"holder": self.holder, "expires_at": to_epoch_millis(expires_at)},
        )

        confirmed = self.current()
        if not confirmed or confirmed.get("holder") != self.holder:
            holder = confirmed.get("holder") if confirmed else None
            raise LeaseUnavailableError(
                f"Lease '{self.name}' was taken by {holder}", holder=holder
            )
        logger.debug("Acquired lease '%s' as %s", self.name, self.holder)

    def release(self) -> None:
        """Delete the lease if this holder still owns it."""
        value = self.state.get_json(self.key)
        if isinstance(value, dict) and value.get("holder") == self.holder:
            self.state.delete(self.key)
            logger.debug("Released lease '%s'", self.name)

    def __enter__(self) -> Lease:
        self.acquire()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.release()
