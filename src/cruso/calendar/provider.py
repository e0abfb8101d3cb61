"""Calendar provider interface and its Google Calendar implementation.

The availability engine and rescheduler only see ``CalendarProvider``; tests
inject fakes, production injects ``GoogleCalendarProvider``.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from cruso.calendar.client import GoogleCalendarClient
from cruso.calendar.events import (
    CalendarEvent,
    EditScope,
    InstanceScope,
    SeriesScope,
    ThisAndFutureScope,
    event_time_payload,
    parse_free_busy,
    parse_google_event,
)
from cruso.calendar.intervals import BusyInterval, TimeRange
from cruso.core.errors import InvalidInput, ProviderPermanent
from cruso.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class CalendarProvider(Protocol):
    """Authenticated calendar read/write operations for one user."""

    async def list_events(self, window: TimeRange) -> list[CalendarEvent]:
        """Events overlapping ``window`` on every configured calendar, instances expanded."""
        ...

    async def query_busy(self, window: TimeRange) -> list[BusyInterval]:
        """Busy time on every configured calendar, one interval per calendar report."""
        ...

    async def move_event(
        self, event: CalendarEvent, new_range: TimeRange, scope: EditScope | None
    ) -> CalendarEvent:
        """Move ``event`` to ``new_range`` with the given edit scope."""
        ...

    async def create_event(
        self,
        calendar_id: str,
        summary: str,
        event_range: TimeRange,
        description: str = "",
    ) -> CalendarEvent:
        ...


def _rrule_until(instant: datetime) -> str:
    return instant.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def truncate_recurrence(recurrence: list[str], until: datetime) -> list[str]:
    """Cap every RRULE so the series ends before ``until``.

    COUNT and any existing UNTIL are replaced; EXDATE/RDATE lines are kept.
    """
    capped = []
    for line in recurrence:
        if not line.startswith("RRULE:"):
            capped.append(line)
            continue
        parts = [
            p for p in line[len("RRULE:"):].split(";")
            if p and not p.startswith(("COUNT=", "UNTIL="))
        ]
        parts.append(f"UNTIL={_rrule_until(until - timedelta(seconds=1))}")
        capped.append("RRULE:" + ";".join(parts))
    return capped


class GoogleCalendarProvider:
    """CalendarProvider backed by the Google Calendar REST API.

    Client calls block, so each one runs in a worker thread.
    """

    def __init__(
        self,
        client: GoogleCalendarClient,
        calendar_ids: list[str],
        timezone: str = "UTC",
    ):
        if not calendar_ids:
            raise InvalidInput("At least one calendar id is required", field="calendar_ids")
        self.client = client
        self.calendar_ids = list(calendar_ids)
        self.timezone = timezone

    async def _call(self, func: Any, *args: Any) -> Any:
        return await asyncio.to_thread(func, *args)

    def _parse(self, payload: dict[str, Any], calendar_id: str, tz: str) -> CalendarEvent:
        event = parse_google_event(payload, calendar_id, tz)
        if event is None:
            raise ProviderPermanent(
                f"Calendar returned cancelled event {payload.get('id')} after an update",
                error_code="cancelled",
            )
        return event

    async def list_events(self, window: TimeRange) -> list[CalendarEvent]:
        events: list[CalendarEvent] = []
        for calendar_id in self.calendar_ids:
            items, calendar_tz = await self._call(
                self.client.list_events, calendar_id, window.start, window.end
            )
            for item in items:
                event = parse_google_event(item, calendar_id, calendar_tz or self.timezone)
                if event is not None:
                    events.append(event)
        events.sort(key=lambda e: (e.range.start, e.range.end))
        return events

    async def query_busy(self, window: TimeRange) -> list[BusyInterval]:
        payload = await self._call(
            self.client.free_busy, self.calendar_ids, window.start, window.end
        )
        busy, errors = parse_free_busy(payload)
        if errors:
            failed = ", ".join(f"{cid} ({'/'.join(r)})" for cid, r in errors.items())
            raise ProviderPermanent(
                f"Free/busy lookup failed for calendar(s): {failed}. "
                "Check the calendar ids and sharing permissions.",
                error_code="free_busy_calendar_error",
            )
        return busy

    async def move_event(
        self, event: CalendarEvent, new_range: TimeRange, scope: EditScope | None
    ) -> CalendarEvent:
        logger.info(
            "calendar_event_moving",
            event_id=event.event_id,
            calendar_id=event.calendar_id,
            scope=scope.kind if scope else None,
            new_start=new_range.start.isoformat(),
        )
        if scope is None or isinstance(scope, InstanceScope):
            target_id = await self._instance_id(event, scope)
            return await self._patch_times(event, target_id, new_range)
        if isinstance(scope, SeriesScope):
            return await self._move_series(event, new_range)
        if isinstance(scope, ThisAndFutureScope):
            return await self._split_series(event, new_range, scope)
        raise InvalidInput(f"Unsupported edit scope {scope!r}", field="scope")

    async def _instance_id(self, event: CalendarEvent, scope: InstanceScope | None) -> str:
        """Event id to patch for a single-occurrence edit."""
        if scope is None or event.recurring_event_id is not None:
            # Expanded instances already carry their own instance id
            return event.event_id
        instances = await self._call(
            self.client.list_instances, event.calendar_id, event.event_id, scope.occurrence_start
        )
        if not instances:
            raise ProviderPermanent(
                f"No occurrence of {event.event_id} starts at "
                f"{scope.occurrence_start.isoformat()}",
                status_code=404,
                error_code="instance_not_found",
            )
        return instances[0]["id"]

    async def _patch_times(
        self, event: CalendarEvent, event_id: str, new_range: TimeRange
    ) -> CalendarEvent:
        body = event_time_payload(new_range, event.timezone)
        payload = await self._call(self.client.patch_event, event.calendar_id, event_id, body)
        return self._parse(payload, event.calendar_id, event.timezone)

    async def _move_series(self, event: CalendarEvent, new_range: TimeRange) -> CalendarEvent:
        series_id = event.recurring_event_id or event.event_id
        master = await self._call(self.client.get_event, event.calendar_id, series_id)
        master_event = self._parse(master, event.calendar_id, event.timezone)
        offset = new_range.start - event.range.start
        shifted = TimeRange(master_event.range.start + offset, master_event.range.end + offset)
        return await self._patch_times(master_event, series_id, shifted)

    async def _split_series(
        self, event: CalendarEvent, new_range: TimeRange, scope: ThisAndFutureScope
    ) -> CalendarEvent:
        """End the series before ``from_instant`` and start a moved copy from there."""
        series_id = event.recurring_event_id or event.event_id
        master = await self._call(self.client.get_event, event.calendar_id, series_id)
        recurrence = master.get("recurrence") or []
        if not recurrence:
            raise InvalidInput(
                f"Event {series_id} has no recurrence; use an instance edit instead",
                field="scope",
            )

        await self._call(
            self.client.patch_event,
            event.calendar_id,
            series_id,
            {"recurrence": truncate_recurrence(recurrence, scope.from_instant)},
        )

        body = {
            key: master[key]
            for key in ("summary", "description", "location", "attendees", "reminders")
            if key in master
        }
        body.update(event_time_payload(new_range, event.timezone))
        body["recurrence"] = [
            line for line in recurrence if line.startswith(("RRULE:", "EXRULE:"))
        ]
        payload = await self._call(self.client.insert_event, event.calendar_id, body)
        return self._parse(payload, event.calendar_id, event.timezone)

    async def create_event(
        self,
        calendar_id: str,
        summary: str,
        event_range: TimeRange,
        description: str = "",
    ) -> CalendarEvent:
        body: dict[str, Any] = {"summary": summary, "description": description}
        body.update(event_time_payload(event_range, self.timezone))
        payload = await self._call(self.client.insert_event, calendar_id, body)
        return self._parse(payload, calendar_id, self.timezone)
