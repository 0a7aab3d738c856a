"""Zoom Phone REST client.

Authenticates with the server-to-server OAuth ``account_credentials``
grant. The access token is held in a CachedToken on the client instance
and reused until five minutes before the provider's stated expiry.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from recording_lifecycle.provider.interface import (
    ProviderRecording,
    RecordingPage,
    RecordingProvider,
)
from recording_lifecycle.utils.clock import now_utc
from recording_lifecycle.utils.errors import ConfigurationError, ProviderError
from recording_lifecycle.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

TOKEN_URL = "https://zoom.us/oauth/token"
API_BASE_URL = "https://api.zoom.us/v2"
TOKEN_EXPIRY_MARGIN_SECONDS = 300


@dataclass
class CachedToken:
    value: str
    fetched_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


def _is_transient(exc: Exception) -> bool:
    return isinstance(exc, ProviderError) and exc.transient


class ZoomPhoneClient(RecordingProvider):
    """Client for the Zoom Phone recordings API.

    Reads configuration from environment variables:
        ZOOM_ACCOUNT_ID, ZOOM_CLIENT_ID, ZOOM_CLIENT_SECRET
    """

    def __init__(
        self,
        account_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.account_id = account_id or os.environ.get("ZOOM_ACCOUNT_ID", "")
        self.client_id = client_id or os.environ.get("ZOOM_CLIENT_ID", "")
        self.client_secret = client_secret or os.environ.get("ZOOM_CLIENT_SECRET", "")

        for setting, value in (
            ("ZOOM_ACCOUNT_ID", self.account_id),
            ("ZOOM_CLIENT_ID", self.client_id),
            ("ZOOM_CLIENT_SECRET", self.client_secret),
        ):
            if not value:
                raise ConfigurationError(f"{setting} is required", setting=setting)

        self._client = client or httpx.Client(timeout=timeout)
        self.token: CachedToken | None = None

    def close(self) -> None:
        self._client.close()

    def access_token(self) -> str:
        """Return a fresh access token, fetching a new one when needed.

        Raises:
            ProviderError: If the token endpoint rejects the credentials.
        """
        now = now_utc()
        if self.token is not None and self.token.is_fresh(now):
            return self.token.value

        try:
            response = self._client.post(
                TOKEN_URL,
                auth=(self.client_id, self.client_secret),
                data={
                    "grant_type": "account_credentials",
                    "account_id": self.account_id,
                },
            )
        except httpx.RequestError as exc:
            raise ProviderError(f"Token request failed: {exc}") from exc
        if response.status_code != 200:
            raise ProviderError(
                f"Token request failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        payload = response.json()
        expires_in = int(payload.get("expires_in") or 3600)
        self.token = CachedToken(
            value=payload["access_token"],
            fetched_at=now,
            expires_at=now
            + timedelta(seconds=expires_in - TOKEN_EXPIRY_MARGIN_SECONDS),
        )
        logger.info("Fetched Zoom access token")
        return self.token.value

    @retry_with_backoff(max_retries=3, base_delay=1.0, is_transient=_is_transient)
    def list_recordings(
        self, from_time: datetime, to_time: datetime, page: int, page_size: int
    ) -> RecordingPage:
        params = {
            "from": from_time.astimezone(UTC).strftime("%Y-%m-%d"),
            "to": to_time.astimezone(UTC).strftime("%Y-%m-%d"),
            "page_size": page_size,
            "page_number": page,
        }
        headers = {"Authorization": f"Bearer {self.access_token()}"}
        try:
            response = self._client.get(
                f"{API_BASE_URL}/phone/recordings", params=params, headers=headers
            )
        except httpx.RequestError as exc:
            raise ProviderError(f"Recording listing failed: {exc}") from exc
        if not response.is_success:
            raise ProviderError(
                f"Recording listing failed: HTTP {response.status_code} "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )

        payload = response.json()
        recordings = [
            ProviderRecording.from_api(item) for item in payload.get("recordings") or []
        ]
        return RecordingPage(
            recordings=recordings,
            next_page_token=payload.get("next_page_token") or "",
            page_number=page,
        )

    def download(self, url: str) -> bytes | None:
        if not url:
            return None
        try:
            headers = {"Authorization": f"Bearer {self.access_token()}"}
            response = self._client.get(url, headers=headers, follow_redirects=True)
        except (httpx.RequestError, ProviderError) as exc:
            logger.warning("Download failed: %s", exc)
            return None
        if not response.is_success:
            logger.warning("Download failed: HTTP %d", response.status_code)
            return None
        return response.content
