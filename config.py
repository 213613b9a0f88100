"""Application configuration settings.

``Settings`` is loaded from environment variables with ``pydantic-settings``.
It holds the booking policy (court count, slot grid, durations, horizon) and
the tokens used by the admin and timer-trigger endpoints.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration values loaded from environment variables.

    Environment variable names map to fields by alias. Every value has a
    default so the service starts without any environment at all; the tokens
    default to empty, which rejects every privileged request.
    """

    # Business clock
    business_utc_offset_hours: int = Field(
        default=-3,
        alias="BUSINESS_UTC_OFFSET_HOURS",
        description="Fixed offset of the business local time from UTC, in hours.",
    )

    # Booking policy
    horizon_days: int = Field(
        default=15,
        alias="HORIZON_DAYS",
        description="Number of days after today kept populated with recurring bookings.",
    )
    slot_minutes: int = Field(
        default=30,
        alias="SLOT_MINUTES",
        description="Booking grid granularity. Start times must be multiples of this.",
    )
    court_count: int = Field(
        default=3,
        alias="COURT_COUNT",
        description="Number of interchangeable courts, numbered 1..N.",
    )
    allowed_durations: List[int] = Field(
        default=[60, 90, 120],
        alias="ALLOWED_DURATIONS",
        description="Allowed booking durations in minutes (JSON list in the environment).",
    )
    hold_minutes: int = Field(
        default=10,
        alias="HOLD_MINUTES",
        description="How long a pending booking holds its court before it stops counting.",
    )

    # Access
    admin_token: str = Field(
        default="",
        alias="ADMIN_TOKEN",
        description="Bearer token identifying the operator.",
    )
    cron_secret: str = Field(
        default="",
        alias="CRON_SECRET",
        description="Bearer token accepted by the timer-triggered endpoints.",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)
