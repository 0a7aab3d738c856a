"""Runtime settings read from environment variables.

Location ids are the key prefixes of the four lifecycle locations in the
blob bucket. They are resolved lazily so an operation that does not need
a location can still run when it is unset.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from recording_lifecycle.constants import Location
from recording_lifecycle.utils.errors import ConfigurationError

LOCATION_ENV_VARS: dict[Location, str] = {
    Location.SOURCE: "SOURCE_FOLDER_ID",
    Location.PROCESSING: "PROCESSING_FOLDER_ID",
    Location.COMPLETED: "COMPLETED_FOLDER_ID",
    Location.ERROR: "ERROR_FOLDER_ID",
}


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    try:
        return int(raw) if raw else default
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} must be an integer, got '{raw}'", setting=name
        ) from exc


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    try:
        return float(raw) if raw else default
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} must be a number, got '{raw}'", setting=name
        ) from exc


@dataclass
class Settings:
    """Tuning knobs and identifiers shared by the lifecycle operations."""

    location_ids: dict[Location, str] = field(default_factory=dict)
    admin_emails: list[str] = field(default_factory=list)
    page_size: int = 30
    time_budget_seconds: float = 240.0
    rate_limit_seconds: float = 0.2
    continuation_delay_seconds: int = 60
    pending_timeout_minutes: int = 30
    lease_ttl_seconds: int = 360
    dedup_cache_limit: int = 1000
    timezone: str = "Asia/Tokyo"

    @classmethod
    def from_env(cls) -> Settings:
        location_ids = {
            location: os.environ.get(var, "").strip().strip("/")
            for location, var in LOCATION_ENV_VARS.items()
        }
        admin_emails = [
            email.strip()
            for email in os.environ.get("ADMIN_EMAILS", "").split(",")
            if email.strip()
        ]
        return cls(
            location_ids=location_ids,
            admin_emails=admin_emails,
            page_size=_int_env("FETCH_PAGE_SIZE", 30),
            time_budget_seconds=_float_env("FETCH_TIME_BUDGET_SECONDS", 240.0),
            rate_limit_seconds=_float_env("PROVIDER_RATE_LIMIT_SECONDS", 0.2),
            continuation_delay_seconds=_int_env("CONTINUATION_DELAY_SECONDS", 60),
            pending_timeout_minutes=_int_env("PENDING_TIMEOUT_MINUTES", 30),
            lease_ttl_seconds=_int_env("LEASE_TTL_SECONDS", 360),
            dedup_cache_limit=_int_env("DEDUP_CACHE_LIMIT", 1000),
            timezone=os.environ.get("TIMEZONE", "Asia/Tokyo"),
        )

    def location_id(self, location: Location) -> str:
        """Return the configured id for a location.

        Raises:
            ConfigurationError: If the location id is not set.
        """
        value = self.location_ids.get(location, "")
        if not value:
            var = LOCATION_ENV_VARS[location]
            raise ConfigurationError(f"{var} is required", setting=var)
        return value

    def require_locations(self, *locations: Location) -> None:
        for location in locations:
            self.location_id(location)
