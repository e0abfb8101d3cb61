"""Scheduling tool definitions and execution functions for the AI agent.

Defines the tools the scheduling agent can call:
- check_availability: Busy/free breakdown of a time range
- suggest_slots: Up to N grid-aligned meeting slots of a given length
- create_availability: Reschedule conflicting events to free a range

Every executor returns a string for the model. Errors are returned as text
rather than raised so the agent can relay them to the user.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from cruso.calendar.availability import SlotFormatter
from cruso.calendar.intervals import TimeRange, parse_instant
from cruso.core.errors import CrusoError, InvalidInput, ProviderPermanent, ProviderTransient
from cruso.core.logging import get_logger

if TYPE_CHECKING:
    from cruso.calendar.engine import AvailabilityEngine

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Tool execution context
# ---------------------------------------------------------------------------


@dataclass
class ToolExecutionContext:
    """Context passed to each tool execution function."""

    engine: AvailabilityEngine
    timezone: str = "UTC"


# ---------------------------------------------------------------------------
# Tool schemas (Anthropic API format)
# ---------------------------------------------------------------------------

_RANGE_PROPERTIES: dict[str, Any] = {
    "start": {
        "type": "string",
        "description": "Range start, ISO-8601 with UTC offset (e.g. 2025-01-06T09:00:00-05:00)",
    },
    "end": {
        "type": "string",
        "description": "Range end (exclusive), ISO-8601 with UTC offset",
    },
}

AGENT_TOOLS: list[dict[str, Any]] = [
    {
        "name": "check_availability",
        "description": (
            "Check whether the user is free during a time range. Returns the busy "
            "periods and the free slots of at least the requested length."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                **_RANGE_PROPERTIES,
                "min_duration_minutes": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Shortest free slot worth reporting (default 30)",
                },
                "include_events": {
                    "type": "boolean",
                    "description": "Also list the events in the range",
                },
            },
            "required": ["start", "end"],
        },
    },
    {
        "name": "suggest_slots",
        "description": (
            "Suggest meeting times of a given length inside a range, on a "
            "15-minute grid, avoiding busy time and any excluded ranges."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                **_RANGE_PROPERTIES,
                "duration_minutes": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Meeting length in minutes",
                },
                "exclude": {
                    "type": "array",
                    "description": "Ranges that must not be suggested (e.g. already proposed)",
                    "items": {
                        "type": "object",
                        "properties": _RANGE_PROPERTIES,
                        "required": ["start", "end"],
                    },
                },
            },
            "required": ["start", "end", "duration_minutes"],
        },
    },
    {
        "name": "create_availability",
        "description": (
            "Free up a time range by moving the events that conflict with it to "
            "the nearest open time. Events that cannot be moved are reported, "
            "the rest are moved anyway."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                **_RANGE_PROPERTIES,
                "search_horizon_hours": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "How far an event may move from its original time",
                },
                "create_block": {
                    "type": "boolean",
                    "description": "Block the freed range on the calendar (default true)",
                },
                "block_summary": {
                    "type": "string",
                    "description": "Title of the blocking event",
                },
                "recurring_scope": {
                    "type": "string",
                    "enum": ["instance", "series", "thisAndFuture"],
                    "description": (
                        "How to move a conflicting recurring event: only this occurrence "
                        "(default), the whole series, or this and all later occurrences"
                    ),
                },
            },
            "required": ["start", "end"],
        },
    },
]


# ---------------------------------------------------------------------------
# Tool execution functions
# ---------------------------------------------------------------------------


def _range_from(args: dict[str, Any]) -> TimeRange:
    start = parse_instant(args.get("start"), "start")
    end = parse_instant(args.get("end"), "end")
    return TimeRange(start, end)


async def execute_check_availability(args: dict[str, Any], ctx: ToolExecutionContext) -> str:
    requested = _range_from(args)
    window = ctx.engine.window(
        requested.start,
        requested.end,
        args.get("min_duration_minutes"),
        ctx.timezone,
    )
    report = await ctx.engine.check_availability(
        window, include_events=bool(args.get("include_events", False))
    )
    data = report.to_dict()
    if report.is_available:
        headline = "The user is free for the whole range."
    else:
        headline = f"The user has {len(report.busy)} busy period(s) in this range."
    return f"{headline}\nFree slots:\n{data['summary']}\n\n{json.dumps(data, indent=2)}"


async def execute_suggest_slots(args: dict[str, Any], ctx: ToolExecutionContext) -> str:
    requested = _range_from(args)
    duration = args.get("duration_minutes")
    window = ctx.engine.window(requested.start, requested.end, duration, ctx.timezone)
    exclude = [_range_from(item) for item in args.get("exclude") or []]
    slots = await ctx.engine.suggest_slots(window, duration, exclude=exclude)
    return SlotFormatter(ctx.timezone).format_slots(slots)


async def execute_create_availability(args: dict[str, Any], ctx: ToolExecutionContext) -> str:
    protect = _range_from(args)
    hours = args.get("search_horizon_hours")
    horizon = timedelta(hours=hours) if hours is not None else None
    result = await ctx.engine.create_availability(
        protect,
        horizon,
        create_block=bool(args.get("create_block", True)),
        block_summary=args.get("block_summary"),
        recurring_scope=args.get("recurring_scope") or "instance",
    )
    return f"{result.message}\n\n{json.dumps(result.to_dict(), indent=2)}"


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

_TOOL_HANDLERS: dict[str, Any] = {
    "check_availability": execute_check_availability,
    "suggest_slots": execute_suggest_slots,
    "create_availability": execute_create_availability,
}


async def execute_tool(
    tool_name: str,
    tool_input: dict[str, Any],
    ctx: ToolExecutionContext,
) -> str:
    """Execute a scheduling tool by name and return a result string for the agent.

    Args:
        tool_name: Name of the tool to execute.
        tool_input: Arguments dict from the model's tool call.
        ctx: Execution context with shared dependencies.

    Returns:
        Human-readable result string.
    """
    handler = _TOOL_HANDLERS.get(tool_name)
    if not handler:
        return f"Unknown tool: {tool_name}"

    try:
        return await handler(tool_input, ctx)
    except InvalidInput as e:
        return f"Invalid input: {e}"
    except ProviderTransient as e:
        logger.warning("agent_tool_provider_transient", tool=tool_name, error=str(e))
        return f"The calendar is temporarily unavailable, try again shortly: {e}"
    except ProviderPermanent as e:
        logger.error("agent_tool_provider_permanent", tool=tool_name, error=str(e))
        return f"The calendar needs to be reconnected: {e}"
    except CrusoError as e:
        logger.error("agent_tool_execution_failed", tool=tool_name, error=str(e))
        return f"Tool execution failed: {e}"
