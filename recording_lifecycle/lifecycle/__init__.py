"""Blob moves, dedup cache, leases, checkpoints and follow-up triggers."""

from recording_lifecycle.lifecycle.blob_mover import BlobMover
from recording_lifecycle.lifecycle.checkpoint import Checkpoint, CheckpointQueue
from recording_lifecycle.lifecycle.dedup_cache import DedupCache
from recording_lifecycle.lifecycle.lease import Lease
from recording_lifecycle.lifecycle.triggers import (
    StateTriggerScheduler,
    TriggerScheduler,
)

__all__ = [
    "BlobMover",
    "Checkpoint",
    "CheckpointQueue",
    "DedupCache",
    "Lease",
    "StateTriggerScheduler",
    "TriggerScheduler",
]
