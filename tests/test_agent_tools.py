"""Tests for the scheduling agent tool executors."""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import FakeCalendarProvider, at, make_event, span

from cruso.agent.tools import AGENT_TOOLS, ToolExecutionContext, execute_tool
from cruso.calendar.engine import AvailabilityEngine
from cruso.core.errors import ProviderPermanent, ProviderTransient


@pytest.fixture
def provider() -> FakeCalendarProvider:
    return FakeCalendarProvider([make_event("planning", span(10, 11))])


@pytest.fixture
def ctx(provider, sample_config) -> ToolExecutionContext:
    return ToolExecutionContext(AvailabilityEngine(provider, sample_config), "America/New_York")


def test_every_tool_has_a_handler():
    names = {tool["name"] for tool in AGENT_TOOLS}
    assert names == {"check_availability", "suggest_slots", "create_availability"}


async def test_check_availability(ctx):
    result = await execute_tool(
        "check_availability", {"start": at(9).isoformat(), "end": at(13).isoformat()}, ctx
    )
    assert result.startswith("The user has 1 busy period(s) in this range.")
    # 09:00 UTC is 4 AM in New York in January
    assert "1. Mon, Jan 6 from 4:00 AM to 5:00 AM" in result


async def test_suggest_slots_respects_exclusions(ctx):
    args = {
        "start": "2025-01-06T09:00:00Z",
        "end": "2025-01-06T12:00:00Z",
        "duration_minutes": 60,
        "exclude": [{"start": "2025-01-06T11:00:00Z", "end": "2025-01-06T12:00:00Z"}],
    }
    result = await execute_tool("suggest_slots", args, ctx)
    assert result == "1. Mon, Jan 6 from 4:00 AM to 5:00 AM"


async def test_suggest_slots_none_found(ctx):
    args = {"start": at(10).isoformat(), "end": at(11).isoformat(), "duration_minutes": 30}
    result = await execute_tool("suggest_slots", args, ctx)
    assert result == "No available slots found in the specified time range."


async def test_create_availability_on_free_range_blocks_it(ctx, provider):
    midnight = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    start = midnight + timedelta(days=1, hours=14)
    args = {
        "start": start.isoformat(),
        "end": (start + timedelta(hours=1)).isoformat(),
        "block_summary": "Focus",
    }
    result = await execute_tool("create_availability", args, ctx)

    assert result.startswith(
        "The requested time was already free. The time is now blocked on the calendar."
    )
    assert provider.created[0].summary == "Focus"


async def test_unknown_tool(ctx):
    assert await execute_tool("delete_calendar", {}, ctx) == "Unknown tool: delete_calendar"


async def test_invalid_input_is_reported(ctx):
    result = await execute_tool("check_availability", {"start": "soon"}, ctx)
    assert result.startswith("Invalid input:")


async def test_naive_timestamp_is_reported(ctx):
    args = {"start": "2025-01-06T09:00:00", "end": "2025-01-06T10:00:00"}
    result = await execute_tool("check_availability", args, ctx)
    assert "naive" in result


async def test_transient_provider_error(ctx, provider, monkeypatch):
    async def _down(window):
        raise ProviderTransient("503 from calendar", status_code=503)

    monkeypatch.setattr(provider, "query_busy", _down)
    args = {"start": at(9).isoformat(), "end": at(13).isoformat()}
    result = await execute_tool("check_availability", args, ctx)
    assert result.startswith("The calendar is temporarily unavailable")


async def test_permanent_provider_error(ctx, provider, monkeypatch):
    async def _revoked(window):
        raise ProviderPermanent("token revoked", status_code=401)

    monkeypatch.setattr(provider, "query_busy", _revoked)
    args = {"start": at(9).isoformat(), "end": at(13).isoformat()}
    result = await execute_tool("check_availability", args, ctx)
    assert result == "The calendar needs to be reconnected: token revoked"
