"""Pydantic configuration schema for Cruso.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup and hot-reload.

Usage:
    from cruso.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


def _validate_timezone_name(v: str) -> str:
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown IANA timezone '{v}'") from e
    return v


class AvailabilityConfig(BaseModel):
    """Free/busy query and slot suggestion settings."""

    slot_step_minutes: int = Field(
        default=15,
        ge=1,
        le=240,
        description="Grid used when suggesting meeting slots (minutes)",
    )
    max_suggestions: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Maximum number of suggested slots returned",
    )
    max_query_days: int = Field(
        default=90,
        ge=1,
        le=366,
        description="Longest free/busy window accepted in one query (days)",
    )
    default_duration_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="Minimum free-slot length when the caller does not pass one",
    )


class ReschedulingConfig(BaseModel):
    """Rescheduling-to-create-availability settings."""

    search_horizon_hours: int = Field(
        default=72,
        ge=1,
        le=24 * 30,
        description="How far before/after an event to look for a new slot (hours)",
    )
    concurrency_limit: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum concurrent event moves against the provider",
    )
    block_summary: str = Field(
        default="Busy (held by Cruso)",
        description="Summary used for the blocking event created after rescheduling",
    )


class ExchangeConfig(BaseModel):
    """Inbound email exchange handling."""

    max_messages: int = Field(
        default=25,
        ge=1,
        le=500,
        description="An exchange with more messages than this is no longer a valid engagement",
    )
    max_age_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="An exchange whose first message is older than this is stale (days)",
    )
    assistant_name: str = Field(default="Cruso", description="Signature used on outbound email")
    assistant_address: str = Field(
        default="cruso@example.com",
        description="From address of outbound email",
    )
    support_address: str = Field(
        default="support@example.com",
        description="Address mentioned in failure notifications",
    )
    login_url: str = Field(
        default="https://example.com/login",
        description="Link included in the onboarding email",
    )
    onboarding_cc: list[str] = Field(
        default_factory=list,
        description="Addresses copied on every onboarding email (e.g. the founder)",
    )


class ProviderConfig(BaseModel):
    """Calendar provider (Google Calendar REST) settings."""

    base_url: str = Field(
        default="https://www.googleapis.com/calendar/v3",
        description="Calendar API base URL",
    )
    calendar_ids: list[str] = Field(
        default=["primary"],
        description="Calendars whose busy time is aggregated",
    )
    access_token_env: str = Field(
        default="CRUSO_CALENDAR_TOKEN",
        description="Environment variable holding the OAuth access token",
    )
    rate: float = Field(default=5.0, gt=0, description="Requests per second")
    capacity: int = Field(default=10, ge=1, description="Token bucket burst size")
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries for transient errors")
    timeout_seconds: float = Field(default=30.0, gt=0, le=300, description="Per-request timeout")

    @field_validator("calendar_ids")
    @classmethod
    def validate_calendar_ids(cls, v: list[str]) -> list[str]:
        """At least one non-empty calendar id is required."""
        cleaned = [c.strip() for c in v if c and c.strip()]
        if not cleaned:
            raise ValueError("At least one calendar id is required")
        return cleaned


class DatabaseConfig(BaseModel):
    """SQLite store settings."""

    path: str = Field(default="data/cruso.db", description="Path to the SQLite database")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure the database path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class LoggingConfig(BaseModel):
    """Log output settings."""

    level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    json_output: bool = Field(default=True, description="Emit JSON lines instead of console output")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"Unsupported log level '{v}'")
        return level


class AppConfig(BaseModel):
    """Root configuration schema for Cruso.

    If validation fails on startup, the application exits with a clear error.
    If validation fails on hot-reload, the previous valid config is kept.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )
    timezone: str = Field(
        default="UTC",
        description="Reporting timezone for human-readable output (IANA name)",
    )
    availability: AvailabilityConfig = Field(default_factory=AvailabilityConfig)
    rescheduling: ReschedulingConfig = Field(default_factory=ReschedulingConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject timezone names zoneinfo does not know."""
        return _validate_timezone_name(v)
