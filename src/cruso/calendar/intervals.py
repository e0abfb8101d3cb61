"""Half-open instant ranges and the interval operations built on them.

All arithmetic happens on timezone-aware datetimes normalized to UTC. Naive
datetimes are rejected: a wall-clock time without an offset is ambiguous across
DST transitions, and guessing would silently shift busy time.

Ranges are half-open ``[start, end)``. Two ranges that only touch
(``a.end == b.start``) do not overlap, but merge_intervals() still joins them
so no zero-width gap is ever produced.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cruso.core.errors import InvalidInput


def ensure_utc(value: datetime, field_name: str = "datetime") -> datetime:
    """Return ``value`` converted to UTC.

    Raises:
        InvalidInput: If value is not a datetime or has no UTC offset
    """
    if not isinstance(value, datetime):
        raise InvalidInput(
            f"{field_name} must be a datetime, got {type(value).__name__}",
            field=field_name,
        )
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidInput(
            f"{field_name} is a naive datetime ({value.isoformat()}); "
            "pass a timezone-aware value",
            field=field_name,
        )
    return value.astimezone(UTC)


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA timezone, raising InvalidInput for unknown names."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise InvalidInput(f"Unknown IANA timezone '{name}'", field="timezone") from e


@dataclass(frozen=True)
class TimeRange:
    """Half-open instant range ``[start, end)`` stored in UTC.

    Raises:
        InvalidInput: On naive datetimes or when start >= end
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        start = ensure_utc(self.start, "start")
        end = ensure_utc(self.end, "end")
        if start >= end:
            raise InvalidInput(
                f"Range start {start.isoformat()} must be before end {end.isoformat()}",
                field="end",
            )
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeRange") -> bool:
        """True if the ranges share at least one instant. Touching ranges don't overlap."""
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    def clip(self, window: "TimeRange") -> "TimeRange | None":
        """Intersection with ``window``, or None when it would be empty."""
        start = max(self.start, window.start)
        end = min(self.end, window.end)
        if start >= end:
            return None
        return TimeRange(start, end)

    def shifted_to(self, start: datetime) -> "TimeRange":
        """Same duration, new start."""
        return TimeRange(start, start + self.duration)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class BusyInterval(TimeRange):
    """Busy time reported by one calendar.

    Identical meetings surfaced by two calendars are two BusyIntervals; they are
    never deduplicated, which can only tighten availability.
    """

    calendar_id: str = field(default="")

    def to_dict(self) -> dict[str, str]:
        data = super().to_dict()
        data["calendar_id"] = self.calendar_id
        return data


def all_day_range(
    start_date: date,
    end_date: date | None = None,
    timezone: str = "UTC",
) -> TimeRange:
    """Instant range covering whole days in the calendar's own timezone.

    Args:
        start_date: First day of the event
        end_date: Day after the last day (exclusive, as calendar APIs report it).
            Defaults to ``start_date + 1 day``.
        timezone: IANA name of the calendar's timezone

    Raises:
        InvalidInput: If end_date is not after start_date or the timezone is unknown
    """
    tzinfo = resolve_timezone(timezone)
    if end_date is None:
        end_date = start_date + timedelta(days=1)
    if end_date <= start_date:
        raise InvalidInput(
            f"All-day end date {end_date} must be after start date {start_date}",
            field="end_date",
        )
    return TimeRange(
        datetime.combine(start_date, time.min, tzinfo=tzinfo),
        datetime.combine(end_date, time.min, tzinfo=tzinfo),
    )


def _check_ranges(intervals: Iterable[TimeRange]) -> list[TimeRange]:
    checked = []
    for i, interval in enumerate(intervals):
        if not isinstance(interval, TimeRange):
            raise InvalidInput(
                f"Busy interval #{i} must be a TimeRange, got {type(interval).__name__}",
                field="busy_intervals",
            )
        checked.append(interval)
    return checked


def clip_intervals(intervals: Iterable[TimeRange], window: TimeRange) -> list[TimeRange]:
    """Clip every interval to ``window``, discarding the ones that fall outside."""
    clipped = []
    for interval in _check_ranges(intervals):
        part = interval.clip(window)
        if part is not None:
            clipped.append(part)
    return clipped


def merge_intervals(intervals: Iterable[TimeRange]) -> list[TimeRange]:
    """Merge overlapping or abutting intervals into sorted, disjoint busy runs.

    Idempotent: merging an already merged sequence returns an equal sequence.
    """
    ordered = sorted(_check_ranges(intervals), key=lambda r: (r.start, r.end))
    runs: list[TimeRange] = []
    for interval in ordered:
        if runs and interval.start <= runs[-1].end:
            last = runs[-1]
            if interval.end > last.end:
                runs[-1] = TimeRange(last.start, interval.end)
        else:
            runs.append(TimeRange(interval.start, interval.end))
    return runs


def parse_instant(value: object, field_name: str = "datetime") -> datetime:
    """Parse an ISO-8601 timestamp with offset (``Z`` accepted) into UTC.

    Raises:
        InvalidInput: If the value is missing, unparsable or has no offset
    """
    if isinstance(value, datetime):
        return ensure_utc(value, field_name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{field_name} must be an ISO-8601 string", field=field_name)
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidInput(f"{field_name} is not ISO-8601: {value!r}", field=field_name) from e
    return ensure_utc(parsed, field_name)
