"""Telephony provider clients."""

from recording_lifecycle.provider.interface import (
    ProviderRecording,
    RecordingPage,
    RecordingProvider,
)

__all__ = ["ProviderRecording", "RecordingPage", "RecordingProvider"]
