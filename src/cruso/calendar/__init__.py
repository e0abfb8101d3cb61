"""Availability engine.

Provides:
- Interval math over half-open UTC instant ranges
- Free-slot search, range checks and grid-aligned slot suggestions
- Conflict-aware rescheduling with partial-success results
- The CalendarProvider interface and its Google Calendar implementation

Usage:
    from cruso.calendar import AvailabilityWindow, compute_free_slots

    window = AvailabilityWindow.between(start, end, min_duration_minutes=30)
    slots = compute_free_slots(window, busy_intervals)
"""

from cruso.calendar.availability import (
    AvailabilityWindow,
    BusyTimeline,
    FreeSlot,
    compute_free_slots,
    is_range_free,
    partition_window,
    suggest_slots,
)
from cruso.calendar.engine import AvailabilityEngine, AvailabilityReport
from cruso.calendar.events import (
    CalendarEvent,
    EditScope,
    InstanceScope,
    SeriesScope,
    ThisAndFutureScope,
)
from cruso.calendar.intervals import BusyInterval, TimeRange, all_day_range, merge_intervals
from cruso.calendar.provider import CalendarProvider, GoogleCalendarProvider
from cruso.calendar.rescheduling import ReschedulePlan, apply_plan, plan_rescheduling

__all__ = [
    "AvailabilityEngine",
    "AvailabilityReport",
    "AvailabilityWindow",
    "BusyInterval",
    "BusyTimeline",
    "CalendarEvent",
    "CalendarProvider",
    "EditScope",
    "FreeSlot",
    "GoogleCalendarProvider",
    "InstanceScope",
    "ReschedulePlan",
    "SeriesScope",
    "ThisAndFutureScope",
    "TimeRange",
    "all_day_range",
    "apply_plan",
    "compute_free_slots",
    "is_range_free",
    "merge_intervals",
    "partition_window",
    "plan_rescheduling",
    "suggest_slots",
]
