"""Pytest fixtures and configuration for Cruso tests.

Provides common fixtures for configuration, database, time ranges and a
fake calendar provider.
"""

import os
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from cruso.calendar.events import CalendarEvent
from cruso.calendar.intervals import BusyInterval, TimeRange
from cruso.config import reset_config
from cruso.config_schema import AppConfig
from cruso.core.errors import ProviderError
from cruso.core.rate_limiter import reset_buckets

DAY = datetime(2025, 1, 6, tzinfo=UTC)  # a Monday


def at(hour: int, minute: int = 0, day: datetime = DAY) -> datetime:
    """UTC instant on the test day."""
    return day + timedelta(hours=hour, minutes=minute)


def span(start: tuple[int, int] | int, end: tuple[int, int] | int) -> TimeRange:
    """TimeRange on the test day from hours or (hour, minute) tuples."""
    start_hm = start if isinstance(start, tuple) else (start, 0)
    end_hm = end if isinstance(end, tuple) else (end, 0)
    return TimeRange(at(*start_hm), at(*end_hm))


def bounds(ranges: list[TimeRange]) -> list[tuple[datetime, datetime]]:
    """Comparable (start, end) pairs, independent of the TimeRange subclass."""
    return [(r.start, r.end) for r in ranges]


def make_event(
    event_id: str,
    event_range: TimeRange,
    calendar_id: str = "primary",
    **kwargs: Any,
) -> CalendarEvent:
    return CalendarEvent(event_id=event_id, calendar_id=calendar_id, range=event_range, **kwargs)


class FakeCalendarProvider:
    """In-memory CalendarProvider for engine and rescheduling tests."""

    def __init__(self, events: list[CalendarEvent] | None = None):
        self.events = list(events or [])
        self.moves: list[tuple[str, TimeRange, Any]] = []
        self.created: list[CalendarEvent] = []
        self.failures: dict[str, ProviderError] = {}
        self.busy_queries: list[TimeRange] = []

    async def list_events(self, window: TimeRange) -> list[CalendarEvent]:
        return sorted(
            (e for e in self.events if e.range.overlaps(window)),
            key=lambda e: (e.range.start, e.range.end),
        )

    async def query_busy(self, window: TimeRange) -> list[BusyInterval]:
        self.busy_queries.append(window)
        return [
            e.busy_interval()
            for e in self.events
            if e.blocks_time and e.range.overlaps(window)
        ]

    async def move_event(self, event, new_range, scope):
        if event.event_id in self.failures:
            raise self.failures[event.event_id]
        self.moves.append((event.event_id, new_range, scope))
        event.range = new_range
        return event

    async def create_event(self, calendar_id, summary, event_range, description=""):
        created = make_event(f"block-{len(self.created) + 1}", event_range, calendar_id)
        created.summary = summary
        self.created.append(created)
        self.events.append(created)
        return created


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def reset_rate_limit_buckets() -> Generator[None, None, None]:
    """Each test starts with full token buckets."""
    reset_buckets()
    yield
    reset_buckets()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

timezone: "America/New_York"

availability:
  slot_step_minutes: 15
  max_suggestions: 3
  max_query_days: 90

rescheduling:
  search_horizon_hours: 8
  concurrency_limit: 2

provider:
  calendar_ids: ["primary", "work@example.com"]
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "timezone": "America/New_York",
        "availability": {
            "slot_step_minutes": 15,
            "max_suggestions": 3,
            "max_query_days": 90,
        },
        "rescheduling": {
            "search_horizon_hours": 8,
            "concurrency_limit": 2,
        },
        "provider": {
            "calendar_ids": ["primary", "work@example.com"],
        },
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the CRUSO_CONFIG_PATH environment variable."""
    old_value = os.environ.get("CRUSO_CONFIG_PATH")
    os.environ["CRUSO_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["CRUSO_CONFIG_PATH"]
    else:
        os.environ["CRUSO_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def fake_provider() -> FakeCalendarProvider:
    return FakeCalendarProvider()
