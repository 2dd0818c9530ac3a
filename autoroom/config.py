"""Application configuration settings.

This module defines the ``Settings`` class using ``pydantic-settings`` to
load configuration from environment variables and an optional ``.env``
file. It centralises all runtime configuration for the tool, such as Google
API credentials, the building to book in and cache behaviour.

Settings are loaded once by the command line entry point and passed down
explicitly; the assignment engine only ever sees an ``AssignmentConfig``.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_cache_dir() -> Path:
    """Return the per-user cache directory for autoroom."""
    base = os.environ.get("XDG_CACHE_HOME") or os.path.join(Path.home(), ".cache")
    return Path(base) / "autoroom"


class Settings(BaseSettings):
    """Configuration values loaded from environment variables.

    Environment variable names map to fields by alias. The Google
    credentials and impersonated user are required to talk to Google; all
    other fields have defaults. Command line flags override these values.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Google authentication
    google_service_account_json: str = Field(..., alias="GOOGLE_SERVICE_ACCOUNT_JSON")
    google_impersonate_user: str = Field(..., alias="GOOGLE_IMPERSONATE_USER")

    # Directory API configuration
    google_customer: str = Field(
        default="my_customer",
        alias="GOOGLE_CUSTOMER",
        description="Customer ID for Directory API queries. 'my_customer' works for most domains.",
    )

    # Booking behaviour
    calendar_id: str = Field(
        default="primary",
        alias="ROOM_CALENDAR_ID",
        description="Calendar whose events get rooms.",
    )
    building: str = Field(
        default="",
        alias="ROOM_BUILDING",
        description="Free-text building query, e.g. 'tor-111'.",
    )
    floor: Optional[int] = Field(
        default=None,
        alias="ROOM_FLOOR",
        description="Preferred floor when no neighbouring booking anchors the search.",
    )
    section: Optional[int] = Field(
        default=None,
        alias="ROOM_SECTION",
        description="Preferred floor section, used together with ``floor``.",
    )
    lookahead_hours: float = Field(
        default=24,
        alias="LOOKAHEAD_HOURS",
        description="Process events starting within this many hours from now.",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log intended bookings without changing any calendar.",
    )

    # Cache and upstream tuning
    cache_dir: Path = Field(default_factory=default_cache_dir, alias="CACHE_DIR")
    cache_max_age_days: float = Field(
        default=7,
        alias="CACHE_MAX_AGE_DAYS",
        description="Rebuild cached building index and room catalogs older than this.",
    )
    freebusy_batch_size: int = Field(
        default=20,
        alias="FREEBUSY_BATCH_SIZE",
        description="Rooms per free/busy request. Larger batches are rejected upstream.",
    )


@dataclass(frozen=True)
class AssignmentConfig:
    """Spatial fallback for ranking rooms when no neighbour has a room.

    Floors and sections are compared numerically; ``None`` means unset.
    """

    preferred_floor: Optional[int] = None
    preferred_section: Optional[int] = None

    @property
    def has_preference(self) -> bool:
        # Floor or section 0 counts as unset.
        return bool(self.preferred_floor) and bool(self.preferred_section)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AssignmentConfig":
        return cls(preferred_floor=settings.floor, preferred_section=settings.section)
