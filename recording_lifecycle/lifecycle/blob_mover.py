"""Blob relocation between lifecycle locations.

A direct move is attempted first. If it raises, the blob's bytes are
copied to the target under the same name with a ``[COPY_RECOVERED]``
mark and the original is deleted afterwards. A failed delete leaves a
duplicate behind, never a lost blob.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from recording_lifecycle.constants import Location, RetryMark
from recording_lifecycle.models import BlobInfo
from recording_lifecycle.storage.interface import BlobStore
from recording_lifecycle.utils.errors import BlobMoveError

logger = logging.getLogger(__name__)


def append_note(description: str, note: str | None) -> str:
    if not note:
        return description
    return f"{description} {note}"


class BlobMover:
    """Moves blobs through a BlobStore with a copy-then-delete fallback."""

    def __init__(self, store: BlobStore) -> None:
        self.store = store

    def move_with_fallback(
        self,
        blob: BlobInfo | None,
        target: Location | None,
        note: str | None = None,
    ) -> bool:
        """Move ``blob`` to ``target``, appending ``note`` to its description.

        Args:
            blob: Blob to move.
            target: Destination location.
            note: Optional retry mark appended to the description.

        Returns:
            True once the blob exists at the destination.

        Raises:
            BlobMoveError: If the blob or target is missing, or if both the
                direct move and the copy fallback fail.
        """
        if blob is None:
            raise BlobMoveError("No blob given to move")
        if target is None:
            raise BlobMoveError(
                "No target location given", blob_name=blob.name
            )

        original_description = blob.description or ""
        description = append_note(original_description, note)

        try:
            self.store.move(blob, target, description=description)
            logger.info(
                "Moved %s to %s",
                blob.name,
                target.value,
                extra={"record_id": blob.record_id, "location": target.value},
            )
            return True
        except Exception as exc:
            logger.warning(
                "Direct move of %s failed, falling back to copy: %s",
                blob.name,
                exc,
                extra={"record_id": blob.record_id, "location": target.value},
            )

        return self._copy_then_delete(blob, target, description)

    def _copy_then_delete(
        self, blob: BlobInfo, target: Location, description: str
    ) -> bool:
        recovered_description = description + RetryMark.COPY_RECOVERED
        try:
            self.store.copy(blob, target, description=recovered_description)
        except Exception as exc:
            raise BlobMoveError(
                f"Copy fallback failed for {blob.name}: {exc}",
                record_id=blob.record_id,
                blob_name=blob.name,
            ) from exc

        try:
            self.store.delete(blob)
        except Exception as exc:
            # The destination copy is authoritative; the source is a duplicate.
            logger.warning(
                "Copied %s but could not delete the original: %s",
                blob.name,
                exc,
                extra={"record_id": blob.record_id, "error": str(exc)},
            )

        logger.info(
            "Moved %s to %s via copy fallback",
            blob.name,
            target.value,
            extra={"record_id": blob.record_id, "location": target.value},
        )
        return True

    def find(
        self, record_id: str, locations: Iterable[Location]
    ) -> BlobInfo | None:
        """Return the first blob whose name contains ``record_id``.

        Locations are scanned in the given order. A location that cannot
        be listed is logged and skipped.
        """
        if not record_id:
            return None
        for location in locations:
            try:
                blobs = self.store.list(location)
            except Exception as exc:
                logger.warning(
                    "Could not list %s while searching: %s",
                    location.value,
                    exc,
                    extra={"record_id": record_id, "location": location.value},
                )
                continue
            for blob in blobs:
                if record_id in blob.name:
                    return blob
        return None
