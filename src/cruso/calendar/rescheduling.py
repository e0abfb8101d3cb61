"""Rescheduling events to free up a protected range.

Planning is pure: ``plan_rescheduling`` decides where each conflicting event
should go without touching any calendar. ``apply_plan`` then issues the moves
through a CalendarProvider with bounded concurrency.

Partial success is a normal outcome. Events that cannot be placed, or whose
move fails at the provider, are listed in ``unresolved`` with a reason; the
remaining events are still moved.
"""

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from cruso.calendar.availability import BusyTimeline
from cruso.calendar.events import CalendarEvent, EditScope, check_scope_kind
from cruso.calendar.intervals import TimeRange, ensure_utc
from cruso.calendar.provider import CalendarProvider
from cruso.core.errors import InvalidInput, ProviderError, ProviderTransient
from cruso.core.logging import get_logger

logger = get_logger(__name__)

REASON_NO_SLOT = "no_free_slot_within_horizon"
REASON_ALL_DAY = "all_day_event"


@dataclass(frozen=True)
class MovedEvent:
    """An event with its planned new range."""

    event: CalendarEvent
    new_range: TimeRange
    scope: EditScope | None = None

    @property
    def event_id(self) -> str:
        return self.event.event_id

    @property
    def original(self) -> TimeRange:
        return self.event.range

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "calendar_id": self.event.calendar_id,
            "summary": self.event.summary,
            "original_range": self.original.to_dict(),
            "new_range": self.new_range.to_dict(),
            "scope": self.scope.kind if self.scope else None,
        }


@dataclass(frozen=True)
class UnresolvedEvent:
    """An event that stays where it is, and why."""

    event_id: str
    reason: str
    calendar_id: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"event_id": self.event_id, "calendar_id": self.calendar_id, "reason": self.reason}


@dataclass
class ReschedulePlan:
    """Result of planning (and, after apply_plan, of executing) a rescheduling."""

    protect_range: TimeRange
    moved: list[MovedEvent] = field(default_factory=list)
    unresolved: list[UnresolvedEvent] = field(default_factory=list)

    @property
    def fully_resolved(self) -> bool:
        return not self.unresolved

    def to_dict(self) -> dict[str, Any]:
        return {
            "protect_range": self.protect_range.to_dict(),
            "moved": [m.to_dict() for m in self.moved],
            "unresolved": [u.to_dict() for u in self.unresolved],
        }


def _check_horizon(search_horizon: timedelta) -> timedelta:
    if not isinstance(search_horizon, timedelta) or search_horizon < timedelta(0):
        raise InvalidInput(
            f"search_horizon must be a non-negative timedelta, got {search_horizon!r}",
            field="search_horizon",
        )
    return search_horizon


def plan_rescheduling(
    protect_range: TimeRange,
    affected_events: Sequence[CalendarEvent],
    search_horizon: timedelta,
    *,
    busy: Iterable[TimeRange] = (),
    not_before: datetime | None = None,
    recurring_scope: str = "instance",
) -> ReschedulePlan:
    """Plan where to move every event that conflicts with ``protect_range``.

    Events that don't intersect the protected range are left untouched and do
    not appear in the result. Each conflicting event is placed, in
    chronological order, in the nearest free range of the same length: first
    searching forward from its original start, then backward from its original
    end, never further than ``search_horizon`` from the original range.

    Occupied time while planning is the protected range, ``busy``, the
    original ranges of the other events, and targets already planned.

    Args:
        protect_range: Range that must end up free
        affected_events: Candidate events (typically everything near the range)
        search_horizon: How far before/after an event a new slot may be
        busy: Other busy time that must not be double-booked
        not_before: Earliest allowed new start (e.g. now)
        recurring_scope: How a recurring occurrence is moved: "instance" (only
            that occurrence), "series" or "thisAndFuture"

    Returns:
        ReschedulePlan with ``moved`` and ``unresolved`` entries

    Raises:
        InvalidInput: On a malformed range, horizon or event
    """
    if not isinstance(protect_range, TimeRange):
        raise InvalidInput("protect_range must be a TimeRange", field="protect_range")
    horizon = _check_horizon(search_horizon)
    floor = ensure_utc(not_before, "not_before") if not_before is not None else None
    check_scope_kind(recurring_scope)
    for event in affected_events:
        if not isinstance(event, CalendarEvent):
            raise InvalidInput(
                f"affected_events must hold CalendarEvent values, got {type(event).__name__}",
                field="affected_events",
            )

    plan = ReschedulePlan(protect_range=protect_range)
    conflicting = sorted(
        (e for e in affected_events if e.blocks_time and e.range.overlaps(protect_range)),
        key=lambda e: (e.range.start, e.range.end, e.event_id),
    )
    # Keyed by object identity: the same id can show up on two calendars
    others = [(id(e), e.range) for e in affected_events if e.blocks_time]
    base_busy = [protect_range, *busy]
    planned: list[TimeRange] = []

    for event in conflicting:
        if event.all_day:
            plan.unresolved.append(
                UnresolvedEvent(event.event_id, REASON_ALL_DAY, event.calendar_id)
            )
            continue

        occupied = base_busy + planned + [r for key, r in others if key != id(event)]
        timeline = BusyTimeline(occupied)
        duration = event.range.duration
        lower = event.range.start - horizon
        if floor is not None:
            lower = max(lower, floor)
        upper = event.range.end + horizon

        target = timeline.earliest_fit(duration, max(event.range.start, lower), upper)
        if target is None:
            target = timeline.latest_fit(duration, event.range.end, lower)

        if target is None:
            logger.info(
                "reschedule_event_unresolved",
                event_id=event.event_id,
                reason=REASON_NO_SLOT,
            )
            plan.unresolved.append(
                UnresolvedEvent(event.event_id, REASON_NO_SLOT, event.calendar_id)
            )
            continue

        planned.append(target)
        plan.moved.append(MovedEvent(event, target, event.scope_for(recurring_scope)))
        logger.debug(
            "reschedule_event_planned",
            event_id=event.event_id,
            new_start=target.start.isoformat(),
        )

    logger.info(
        "reschedule_planned",
        conflicting=len(conflicting),
        moved=len(plan.moved),
        unresolved=len(plan.unresolved),
    )
    return plan


async def apply_plan(
    plan: ReschedulePlan,
    provider: CalendarProvider,
    concurrency_limit: int,
) -> ReschedulePlan:
    """Execute the moves of ``plan`` through ``provider``.

    Moves run concurrently, at most ``concurrency_limit`` at a time. A move the
    provider rejects becomes an unresolved entry; the others still go through.

    Returns:
        A new plan: the moves that succeeded, plus every unresolved event
    """
    if isinstance(concurrency_limit, bool) or not isinstance(concurrency_limit, int):
        raise InvalidInput("concurrency_limit must be an integer", field="concurrency_limit")
    if concurrency_limit < 1:
        raise InvalidInput("concurrency_limit must be at least 1", field="concurrency_limit")

    semaphore = asyncio.Semaphore(concurrency_limit)

    async def _move(move: MovedEvent) -> MovedEvent | UnresolvedEvent:
        async with semaphore:
            try:
                await provider.move_event(move.event, move.new_range, move.scope)
            except ProviderError as e:
                transient = isinstance(e, ProviderTransient)
                kind = "provider_transient" if transient else "provider_permanent"
                logger.warning(
                    "reschedule_move_failed",
                    event_id=move.event_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return UnresolvedEvent(move.event_id, f"{kind}: {e}", move.event.calendar_id)
            return move

    results = await asyncio.gather(*(_move(m) for m in plan.moved))

    outcome = ReschedulePlan(protect_range=plan.protect_range, unresolved=list(plan.unresolved))
    for result in results:
        if isinstance(result, MovedEvent):
            outcome.moved.append(result)
        else:
            outcome.unresolved.append(result)

    logger.info(
        "reschedule_applied",
        moved=len(outcome.moved),
        unresolved=len(outcome.unresolved),
    )
    return outcome
