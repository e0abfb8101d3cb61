"""Calendar events, recurring-edit scopes and Google Calendar payload parsing.

Every edit against a recurring event names its scope explicitly:

- ``InstanceScope(occurrence_start)``: only the occurrence starting then
- ``SeriesScope()``: every occurrence of the series
- ``ThisAndFutureScope(from_instant)``: the occurrence at ``from_instant`` and all later ones

A non-recurring event is edited with ``scope=None``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from cruso.calendar.intervals import (
    BusyInterval,
    TimeRange,
    all_day_range,
    ensure_utc,
    parse_instant,
)
from cruso.core.errors import InvalidInput
from cruso.core.logging import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Edit scopes
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class InstanceScope:
    """Edit a single occurrence of a recurring event."""

    occurrence_start: datetime
    kind: str = field(default="instance", init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "occurrence_start", ensure_utc(self.occurrence_start, "occurrence_start")
        )


@dataclass(frozen=True)
class SeriesScope:
    """Edit every occurrence of a recurring event."""

    kind: str = field(default="series", init=False)


@dataclass(frozen=True)
class ThisAndFutureScope:
    """Edit the occurrence at ``from_instant`` and every later one."""

    from_instant: datetime
    kind: str = field(default="thisAndFuture", init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "from_instant", ensure_utc(self.from_instant, "from_instant"))


EditScope = InstanceScope | SeriesScope | ThisAndFutureScope


SCOPE_KINDS = ("instance", "series", "thisAndFuture")


def check_scope_kind(kind: str) -> str:
    """Validate the name of an edit scope.

    Raises:
        InvalidInput: For anything other than "instance", "series" or "thisAndFuture"
    """
    if kind not in SCOPE_KINDS:
        raise InvalidInput(
            f"Unknown edit scope '{kind}'. Use 'instance', 'series' or 'thisAndFuture'",
            field="scope",
        )
    return kind


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


@dataclass
class CalendarEvent:
    """An event read from a calendar.

    Attributes:
        event_id: Provider event id (an instance id for recurring occurrences)
        calendar_id: Calendar the event lives on
        range: Instant range of the event
        all_day: True for date-only events
        timezone: Timezone the event was created in
        recurring_event_id: Series id if this is an occurrence of a recurring event
        original_start: Occurrence start as scheduled by the series
    """

    event_id: str
    calendar_id: str
    range: TimeRange
    summary: str = ""
    all_day: bool = False
    timezone: str = "UTC"
    recurring_event_id: str | None = None
    original_start: datetime | None = None
    status: str = "confirmed"
    transparent: bool = False
    organizer: str | None = None
    attendees: list[str] = field(default_factory=list)

    @property
    def is_recurring(self) -> bool:
        return self.recurring_event_id is not None

    @property
    def blocks_time(self) -> bool:
        """Cancelled events and events marked "free" don't make the calendar busy."""
        return self.status != "cancelled" and not self.transparent

    def scope_for(self, kind: str = "instance") -> EditScope | None:
        """Edit scope of the given kind, anchored at this occurrence.

        A non-recurring event is always edited with ``None``.
        """
        check_scope_kind(kind)
        if not self.is_recurring:
            return None
        anchor = self.original_start or self.range.start
        if kind == "series":
            return SeriesScope()
        if kind == "thisAndFuture":
            return ThisAndFutureScope(anchor)
        return InstanceScope(anchor)

    def busy_interval(self) -> BusyInterval:
        return BusyInterval(self.range.start, self.range.end, calendar_id=self.calendar_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "calendar_id": self.calendar_id,
            "summary": self.summary,
            "start": self.range.start.isoformat(),
            "end": self.range.end.isoformat(),
            "all_day": self.all_day,
            "recurring_event_id": self.recurring_event_id,
        }


# -----------------------------------------------------------------------------
# Google Calendar payloads
# -----------------------------------------------------------------------------


def _parse_boundary(payload: dict[str, Any], fallback_timezone: str) -> tuple[Any, str]:
    """Return (datetime or date, timezone) for an event start/end object."""
    timezone_raw = payload.get("timeZone")
    timezone = (
        timezone_raw.strip()
        if isinstance(timezone_raw, str) and timezone_raw.strip()
        else fallback_timezone
    )

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return parse_instant(date_time, "dateTime"), timezone

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            return date.fromisoformat(date_value), timezone
        except ValueError as e:
            raise InvalidInput(f"Invalid all-day date {date_value!r}", field="date") from e

    raise InvalidInput("Event is missing start/end dateTime or date values", field="start")


def parse_google_event(
    payload: dict[str, Any],
    calendar_id: str,
    calendar_timezone: str = "UTC",
) -> CalendarEvent | None:
    """Convert a Google Calendar event resource into a CalendarEvent.

    All-day events (date-only start/end) become full-day ranges in the
    calendar's timezone. Cancelled events return None.

    Raises:
        InvalidInput: If the payload has no id or unusable start/end values
    """
    if str(payload.get("status", "")).lower() == "cancelled":
        return None

    event_id = payload.get("id")
    if not isinstance(event_id, str) or not event_id:
        raise InvalidInput("Event payload has no id", field="id")

    start, timezone = _parse_boundary(payload.get("start") or {}, calendar_timezone)
    end, _ = _parse_boundary(payload.get("end") or {}, timezone)

    all_day = isinstance(start, date) and not isinstance(start, datetime)
    if all_day:
        if isinstance(end, datetime):
            raise InvalidInput(f"Event {event_id} mixes date and dateTime", field="end")
        event_range = all_day_range(start, end, timezone)
    else:
        if not isinstance(end, datetime):
            raise InvalidInput(f"Event {event_id} mixes dateTime and date", field="end")
        event_range = TimeRange(start, end)

    original_start = None
    original_payload = payload.get("originalStartTime")
    if isinstance(original_payload, dict):
        original_value, _ = _parse_boundary(original_payload, timezone)
        if isinstance(original_value, datetime):
            original_start = original_value
        else:
            original_start = all_day_range(original_value, None, timezone).start

    organizer = (payload.get("organizer") or {}).get("email")
    attendees = [a["email"] for a in payload.get("attendees") or [] if a.get("email")]

    return CalendarEvent(
        event_id=event_id,
        calendar_id=calendar_id,
        range=event_range,
        summary=payload.get("summary") or "",
        all_day=all_day,
        timezone=timezone,
        recurring_event_id=payload.get("recurringEventId"),
        original_start=original_start,
        status=str(payload.get("status") or "confirmed"),
        transparent=payload.get("transparency") == "transparent",
        organizer=organizer,
        attendees=attendees,
    )


def parse_free_busy(payload: dict[str, Any]) -> tuple[list[BusyInterval], dict[str, list[str]]]:
    """Parse a freeBusy response.

    Returns:
        (busy intervals from every calendar, {calendar_id: [error reasons]}).
        Busy time is kept per calendar; the same meeting on two calendars
        yields two intervals.
    """
    busy: list[BusyInterval] = []
    errors: dict[str, list[str]] = {}

    for calendar_id, data in (payload.get("calendars") or {}).items():
        reasons = [e.get("reason", "unknown") for e in data.get("errors") or []]
        if reasons:
            errors[calendar_id] = reasons
            logger.warning("free_busy_calendar_error", calendar_id=calendar_id, reasons=reasons)
            continue
        for item in data.get("busy") or []:
            start = parse_instant(item.get("start"), "start")
            end = parse_instant(item.get("end"), "end")
            busy.append(BusyInterval(start, end, calendar_id=calendar_id))

    return busy, errors


def event_time_payload(value: TimeRange, timezone: str = "UTC") -> dict[str, dict[str, str]]:
    """Google ``start``/``end`` body for a timed event."""
    return {
        "start": {"dateTime": value.start.isoformat(), "timeZone": timezone},
        "end": {"dateTime": value.end.isoformat(), "timeZone": timezone},
    }
