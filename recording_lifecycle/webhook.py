"""Inbound Zoom webhook handling.

``handle_webhook`` is framework-neutral: the HTTP layer passes the parsed
JSON body, the headers and the raw body, and sends back the returned
status code and payload.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
from collections.abc import Mapping
from typing import Any

from recording_lifecycle.fetch.scheduler import FetchScheduler
from recording_lifecycle.provider.interface import ProviderRecording
from recording_lifecycle.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

RECORDING_COMPLETED = "phone.recording_completed"
SIGNATURE_HEADERS = ("x-zm-signature", "x-zoom-signature")
TIMESTAMP_HEADERS = ("x-zm-request-timestamp", "x-zoom-request-timestamp")


def _digest(secret: str, message: str) -> str:
    return hmac.new(
        secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def _header(headers: Mapping[str, str], names: tuple[str, ...]) -> str:
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in names:
        if lowered.get(name):
            return lowered[name]
    return ""


def encrypt_plain_token(plain_token: str, secret: str) -> str:
    """Hex HMAC-SHA256 of the URL validation token."""
    return _digest(secret, plain_token)


def verify_signature(
    headers: Mapping[str, str], raw_body: bytes | str, secret: str
) -> bool:
    """Check ``x-zm-signature`` against ``v0:<timestamp>:<raw body>``."""
    signature = _header(headers, SIGNATURE_HEADERS)
    timestamp = _header(headers, TIMESTAMP_HEADERS)
    if not signature or not timestamp:
        return False
    if isinstance(raw_body, bytes):
        raw_body = raw_body.decode("utf-8")
    expected = _digest(secret, f"v0:{timestamp}:{raw_body}")
    received = signature[3:] if signature.startswith("v0=") else signature
    return hmac.compare_digest(expected, received)


def recording_from_event(payload: Mapping[str, Any]) -> ProviderRecording:
    """Take the first recording of a ``phone.recording_completed`` payload."""
    recordings = (payload.get("object") or {}).get("recordings") or []
    if recordings:
        return ProviderRecording.from_api(recordings[0])
    return ProviderRecording.from_api(payload)


def handle_webhook(
    body: Mapping[str, Any],
    headers: Mapping[str, str],
    raw_body: bytes | str,
    scheduler: FetchScheduler,
    secret: str | None = None,
) -> tuple[int, Any]:
    """Handle one webhook delivery.

    Returns:
        ``(status_code, payload)``. Processing failures still answer 200
        with ``"error"`` so the provider does not redeliver the event.
    """
    secret = secret or os.environ.get("ZOOM_WEBHOOK_SECRET", "")
    if not secret:
        raise ConfigurationError(
            "ZOOM_WEBHOOK_SECRET is required", setting="ZOOM_WEBHOOK_SECRET"
        )

    payload = body.get("payload") or {}
    plain_token = payload.get("plainToken")
    if plain_token:
        return 200, {
            "plainToken": plain_token,
            "encryptedToken": encrypt_plain_token(plain_token, secret),
        }

    if not verify_signature(headers, raw_body, secret):
        logger.warning("Rejected webhook with invalid signature")
        return 401, "invalid signature"

    event = body.get("event")
    if event != RECORDING_COMPLETED:
        logger.info("Ignoring webhook event %s", event)
        return 200, "ignored"

    try:
        recording = recording_from_event(payload)
        result = scheduler.ingest_webhook_recording(recording)
    except Exception:
        logger.exception("Webhook processing failed")
        return 200, "error"
    return 200, "ok" if result.ok else "error"
