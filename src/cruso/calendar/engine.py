"""Availability engine: free/busy queries and rescheduling against a provider.

Ties the pure interval math to an injected CalendarProvider. Provider errors
propagate unmodified; retry policy belongs to the provider's client.

Usage:
    engine = AvailabilityEngine(provider, config)
    report = await engine.check_availability(window)
    result = await engine.create_availability(protect_range)
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from cruso.calendar.availability import (
    AvailabilityWindow,
    BusyTimeline,
    FreeSlot,
    SlotFormatter,
    compute_free_slots,
    suggest_slots,
)
from cruso.calendar.events import CalendarEvent, check_scope_kind
from cruso.calendar.intervals import TimeRange
from cruso.calendar.provider import CalendarProvider
from cruso.calendar.rescheduling import ReschedulePlan, apply_plan, plan_rescheduling
from cruso.config_schema import AppConfig
from cruso.core.errors import InvalidInput, ProviderError
from cruso.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AvailabilityReport:
    """Answer to a check-availability query."""

    window: AvailabilityWindow
    busy: list[TimeRange]
    free: list[FreeSlot]
    events: list[CalendarEvent] | None = None

    @property
    def is_available(self) -> bool:
        return not self.busy

    def to_dict(self) -> dict[str, Any]:
        formatter = SlotFormatter(self.window.timezone)
        data: dict[str, Any] = {
            "is_available": self.is_available,
            "timezone": self.window.timezone,
            "window": self.window.range.to_dict(),
            "busy_slots": [r.to_dict() for r in self.busy],
            "free_slots": [r.to_dict() for r in self.free],
            "summary": formatter.format_slots(self.free),
        }
        if self.events is not None:
            data["events"] = [e.to_dict() for e in self.events]
        return data


@dataclass
class CreateAvailabilityResult:
    """Outcome of rescheduling to free a range."""

    plan: ReschedulePlan
    block_event: CalendarEvent | None = None
    block_error: str | None = None

    @property
    def state(self) -> str:
        if self.plan.fully_resolved and self.block_error is None:
            return "success"
        return "partial"

    @property
    def message(self) -> str:
        moved = len(self.plan.moved)
        unresolved = len(self.plan.unresolved)
        if not moved and not unresolved:
            text = "The requested time was already free."
        else:
            text = f"Rescheduled {moved} event(s)."
            if unresolved:
                text += f" {unresolved} event(s) could not be moved."
        if self.block_event is not None:
            text += " The time is now blocked on the calendar."
        elif self.block_error is not None:
            text += f" The time could not be blocked on the calendar: {self.block_error}"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "message": self.message,
            "rescheduled_event_count": len(self.plan.moved),
            **self.plan.to_dict(),
            "block_event": self.block_event.to_dict() if self.block_event else None,
            "block_error": self.block_error,
        }


class AvailabilityEngine:
    """Availability queries and rescheduling for one user's calendars."""

    def __init__(self, provider: CalendarProvider, config: AppConfig):
        self.provider = provider
        self.config = config

    def _check_span(self, window: TimeRange) -> None:
        max_days = self.config.availability.max_query_days
        if window.duration > timedelta(days=max_days):
            raise InvalidInput(
                f"Availability range of {window.duration.days} days exceeds the "
                f"{max_days}-day limit. Split the query into smaller ranges.",
                field="window",
            )

    def window(
        self,
        start: datetime,
        end: datetime,
        min_duration_minutes: int | float | None = None,
        timezone: str | None = None,
    ) -> AvailabilityWindow:
        """Build a window with configured defaults filled in."""
        if min_duration_minutes is None:
            min_duration_minutes = self.config.availability.default_duration_minutes
        return AvailabilityWindow.between(
            start, end, min_duration_minutes, timezone or self.config.timezone
        )

    async def check_availability(
        self, window: AvailabilityWindow, include_events: bool = False
    ) -> AvailabilityReport:
        """Busy runs, free slots and (optionally) the events inside ``window``."""
        self._check_span(window.range)
        busy = await self.provider.query_busy(window.range)
        timeline = BusyTimeline(busy, window=window.range)
        report = AvailabilityReport(
            window=window,
            busy=timeline.runs,
            free=compute_free_slots(window, busy),
        )
        if include_events:
            report.events = [
                e for e in await self.provider.list_events(window.range) if e.blocks_time
            ]
        logger.info(
            "availability_checked",
            is_available=report.is_available,
            busy_runs=len(report.busy),
            free_slots=len(report.free),
        )
        return report

    async def find_free_slots(self, window: AvailabilityWindow) -> list[FreeSlot]:
        self._check_span(window.range)
        busy = await self.provider.query_busy(window.range)
        return compute_free_slots(window, busy)

    async def is_range_free(self, candidate: TimeRange) -> bool:
        self._check_span(candidate)
        busy = await self.provider.query_busy(candidate)
        return BusyTimeline(busy).is_free(candidate)

    async def suggest_slots(
        self,
        window: AvailabilityWindow,
        duration_minutes: int | float | None = None,
        exclude: Sequence[TimeRange] = (),
    ) -> list[FreeSlot]:
        """Grid-aligned meeting suggestions avoiding busy time and ``exclude``."""
        self._check_span(window.range)
        busy = await self.provider.query_busy(window.range)
        settings = self.config.availability
        return suggest_slots(
            window,
            busy,
            duration_minutes,
            exclude=exclude,
            step_minutes=settings.slot_step_minutes,
            limit=settings.max_suggestions,
        )

    async def create_availability(
        self,
        protect_range: TimeRange,
        search_horizon: timedelta | None = None,
        *,
        create_block: bool = True,
        block_summary: str | None = None,
        calendar_id: str | None = None,
        recurring_scope: str = "instance",
        now: datetime | None = None,
    ) -> CreateAvailabilityResult:
        """Move conflicting events out of ``protect_range``.

        When every conflict is resolved and ``create_block`` is set, a blocking
        event is created over the range so it stays free. If creating the block
        fails, the applied moves are still reported and ``block_error`` says why.

        ``recurring_scope`` picks how conflicting occurrences of a recurring
        event are moved (see plan_rescheduling).
        """
        settings = self.config.rescheduling
        horizon = (
            search_horizon
            if search_horizon is not None
            else timedelta(hours=settings.search_horizon_hours)
        )
        check_scope_kind(recurring_scope)
        self._check_span(protect_range)

        conflicting = await self.provider.list_events(protect_range)
        search_start = min([protect_range.start, *(e.range.start for e in conflicting)])
        search_end = max([protect_range.end, *(e.range.end for e in conflicting)])
        search_range = TimeRange(search_start - horizon, search_end + horizon)
        self._check_span(search_range)
        nearby = await self.provider.list_events(search_range)

        plan = plan_rescheduling(
            protect_range,
            nearby,
            horizon,
            not_before=now or datetime.now(UTC),
            recurring_scope=recurring_scope,
        )
        outcome = await apply_plan(plan, self.provider, settings.concurrency_limit)

        result = CreateAvailabilityResult(plan=outcome)
        if create_block and outcome.fully_resolved:
            # The moves are already applied; a failed block must not hide them
            try:
                result.block_event = await self.provider.create_event(
                    calendar_id or self.config.provider.calendar_ids[0],
                    block_summary or settings.block_summary,
                    protect_range,
                )
            except ProviderError as e:
                logger.warning(
                    "availability_block_failed",
                    error_type=type(e).__name__,
                    error=str(e),
                )
                result.block_error = f"{type(e).__name__}: {e}"
        logger.info(
            "availability_created",
            state=result.state,
            moved=len(outcome.moved),
            unresolved=len(outcome.unresolved),
            blocked=result.block_event is not None,
        )
        return result
