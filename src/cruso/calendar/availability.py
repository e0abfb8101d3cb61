"""Free/busy partitioning of an availability window.

Pure functions over TimeRange values, no I/O. The engine fetches busy time
from the calendar provider and hands it to these functions; the agent tools,
HTTP routes and CLI all end up here.

Usage:
    window = AvailabilityWindow.between(start, end, min_duration_minutes=30)
    slots = compute_free_slots(window, busy_intervals)
"""

import math
from bisect import bisect_left
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cruso.calendar.intervals import (
    TimeRange,
    clip_intervals,
    merge_intervals,
    resolve_timezone,
)
from cruso.core.errors import InvalidInput

NO_SLOTS_MESSAGE = "No available slots found in the specified time range."


def _minutes_to_timedelta(value: object, field_name: str) -> timedelta:
    # bool is an int subclass; True minutes is never intended
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise InvalidInput(
            f"{field_name} must be a number of minutes, got {type(value).__name__}",
            field=field_name,
        )
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidInput(
            f"{field_name} must be a finite number of minutes (got {value})", field=field_name
        )
    if value < 0:
        raise InvalidInput(f"{field_name} cannot be negative (got {value})", field=field_name)
    try:
        return timedelta(minutes=value)
    except OverflowError as e:
        raise InvalidInput(f"{field_name} is too large (got {value})", field=field_name) from e


@dataclass(frozen=True)
class AvailabilityWindow:
    """Query input: the range to inspect, the minimum slot length, the reporting timezone.

    The timezone is only used to render results for humans.
    """

    range: TimeRange
    min_duration: timedelta = timedelta(minutes=30)
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if not isinstance(self.range, TimeRange):
            raise InvalidInput("Availability window needs a TimeRange", field="range")
        if not isinstance(self.min_duration, timedelta) or self.min_duration < timedelta(0):
            raise InvalidInput(
                f"Minimum duration must be a non-negative timedelta, got {self.min_duration!r}",
                field="min_duration",
            )
        resolve_timezone(self.timezone)

    @classmethod
    def between(
        cls,
        start: datetime,
        end: datetime,
        min_duration_minutes: int | float = 30,
        timezone: str = "UTC",
    ) -> "AvailabilityWindow":
        return cls(
            range=TimeRange(start, end),
            min_duration=_minutes_to_timedelta(min_duration_minutes, "min_duration_minutes"),
            timezone=timezone,
        )

    @property
    def start(self) -> datetime:
        return self.range.start

    @property
    def end(self) -> datetime:
        return self.range.end


@dataclass(frozen=True)
class FreeSlot(TimeRange):
    """Sub-range of a window with no busy time, at least the requested length."""


@dataclass(frozen=True)
class WindowSegment:
    """One piece of a window partition: a busy run or a free gap."""

    range: TimeRange
    busy: bool


class BusyTimeline:
    """Merged busy runs with bisect-based lookups.

    Build once per query; the runs are sorted and disjoint so every lookup is a
    binary search instead of a scan.
    """

    def __init__(self, busy_intervals: Iterable[TimeRange], window: TimeRange | None = None):
        intervals = (
            clip_intervals(busy_intervals, window) if window is not None else busy_intervals
        )
        self.runs: list[TimeRange] = merge_intervals(intervals)
        self._starts = [run.start for run in self.runs]

    def __len__(self) -> int:
        return len(self.runs)

    def blocking_run(self, candidate: TimeRange) -> TimeRange | None:
        """The latest busy run overlapping ``candidate``, or None if it is free."""
        idx = bisect_left(self._starts, candidate.end)
        if idx == 0:
            return None
        run = self.runs[idx - 1]
        if run.end > candidate.start:
            return run
        return None

    def is_free(self, candidate: TimeRange) -> bool:
        return self.blocking_run(candidate) is None

    def gaps(self, window: TimeRange) -> list[TimeRange]:
        """Free gaps of ``window`` between (and around) the busy runs."""
        gaps = []
        cursor = window.start
        for run in self.runs:
            if run.end <= window.start:
                continue
            if run.start >= window.end:
                break
            if run.start > cursor:
                gaps.append(TimeRange(cursor, run.start))
            cursor = max(cursor, run.end)
        if cursor < window.end:
            gaps.append(TimeRange(cursor, window.end))
        return gaps

    def earliest_fit(
        self, duration: timedelta, not_before: datetime, not_after: datetime
    ) -> TimeRange | None:
        """Earliest free range of ``duration`` starting at or after ``not_before``.

        The range must end by ``not_after``.
        """
        start = not_before
        while start + duration <= not_after:
            candidate = TimeRange(start, start + duration)
            blocker = self.blocking_run(candidate)
            if blocker is None:
                return candidate
            start = blocker.end
        return None

    def latest_fit(
        self, duration: timedelta, not_after: datetime, not_before: datetime
    ) -> TimeRange | None:
        """Latest free range of ``duration`` ending at or before ``not_after``.

        The range must start at or after ``not_before``.
        """
        end = not_after
        while end - duration >= not_before:
            candidate = TimeRange(end - duration, end)
            blocker = self.blocking_run(candidate)
            if blocker is None:
                return candidate
            end = blocker.start
        return None


def _resolve_min_duration(
    window: AvailabilityWindow, min_duration_minutes: int | float | None
) -> timedelta:
    if min_duration_minutes is None:
        return window.min_duration
    return _minutes_to_timedelta(min_duration_minutes, "min_duration_minutes")


def compute_free_slots(
    window: AvailabilityWindow,
    busy_intervals: Iterable[TimeRange],
    min_duration_minutes: int | float | None = None,
) -> list[FreeSlot]:
    """List the free slots of ``window``.

    Busy intervals from every calendar are clipped to the window, merged into
    busy runs, and the gaps between runs of at least the minimum duration are
    returned in chronological order.

    Args:
        window: Range to inspect
        busy_intervals: Busy time from all relevant calendars (any order)
        min_duration_minutes: Overrides ``window.min_duration`` when given

    Returns:
        Chronological, non-overlapping free slots, each at least the minimum length

    Raises:
        InvalidInput: On a malformed interval or a negative duration
    """
    if not isinstance(window, AvailabilityWindow):
        raise InvalidInput("window must be an AvailabilityWindow", field="window")
    min_duration = _resolve_min_duration(window, min_duration_minutes)
    timeline = BusyTimeline(busy_intervals, window=window.range)
    return [
        FreeSlot(gap.start, gap.end)
        for gap in timeline.gaps(window.range)
        if gap.duration >= min_duration
    ]


def is_range_free(candidate: TimeRange, busy_intervals: Iterable[TimeRange]) -> bool:
    """True iff ``candidate`` intersects no busy interval."""
    if not isinstance(candidate, TimeRange):
        raise InvalidInput("range must be a TimeRange", field="range")
    return BusyTimeline(busy_intervals).is_free(candidate)


def partition_window(
    window: AvailabilityWindow | TimeRange, busy_intervals: Iterable[TimeRange]
) -> list[WindowSegment]:
    """Split the window into alternating busy runs and free gaps.

    The segments tile the window exactly: sorted, contiguous, no overlaps.
    """
    window_range = window.range if isinstance(window, AvailabilityWindow) else window
    timeline = BusyTimeline(busy_intervals, window=window_range)
    segments = [WindowSegment(run, busy=True) for run in timeline.runs]
    segments += [WindowSegment(gap, busy=False) for gap in timeline.gaps(window_range)]
    segments.sort(key=lambda s: s.range.start)
    return segments


def _align_up(instant: datetime, step: timedelta) -> datetime:
    epoch = datetime(1970, 1, 1, tzinfo=UTC)
    remainder = (instant - epoch) % step
    if not remainder:
        return instant
    return instant + (step - remainder)


def suggest_slots(
    window: AvailabilityWindow,
    busy_intervals: Iterable[TimeRange],
    duration_minutes: int | float | None = None,
    exclude: Sequence[TimeRange] = (),
    step_minutes: int = 15,
    limit: int = 3,
) -> list[FreeSlot]:
    """Suggest meeting slots on a fixed grid.

    Candidates start on multiples of ``step_minutes`` (aligned to the hour),
    last exactly ``duration_minutes`` and avoid both busy time and the
    explicitly excluded ranges (for example slots already proposed).

    Raises:
        InvalidInput: On a non-positive step or limit, or a malformed interval
    """
    if step_minutes <= 0 or limit <= 0:
        raise InvalidInput("step_minutes and limit must be positive", field="step_minutes")
    duration = _resolve_min_duration(window, duration_minutes)
    if duration <= timedelta(0):
        raise InvalidInput("Slot duration must be positive", field="duration_minutes")

    step = timedelta(minutes=step_minutes)
    timeline = BusyTimeline([*busy_intervals, *exclude], window=window.range)
    suggestions: list[FreeSlot] = []

    start = _align_up(window.start, step)
    while start + duration <= window.end and len(suggestions) < limit:
        candidate = TimeRange(start, start + duration)
        blocker = timeline.blocking_run(candidate)
        if blocker is None:
            suggestions.append(FreeSlot(candidate.start, candidate.end))
            start += step
        else:
            start = _align_up(blocker.end, step)
    return suggestions


class SlotFormatter:
    """Renders ranges in the reporting timezone, e.g. ``Mon, Jan 5 from 9:00 AM to 9:30 AM``."""

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone
        self._tz = resolve_timezone(timezone)

    @staticmethod
    def _clock(value: datetime) -> str:
        hour = value.hour % 12 or 12
        suffix = "AM" if value.hour < 12 else "PM"
        return f"{hour}:{value.minute:02d} {suffix}"

    def local(self, value: datetime) -> datetime:
        return value.astimezone(self._tz)

    def format_range(self, value: TimeRange) -> str:
        start = self.local(value.start)
        end = self.local(value.end)
        day = f"{start:%a, %b} {start.day}"
        if start.date() != end.date():
            return f"{day} {self._clock(start)} to {end:%a, %b} {end.day} {self._clock(end)}"
        return f"{day} from {self._clock(start)} to {self._clock(end)}"

    def format_slots(self, slots: Sequence[TimeRange]) -> str:
        if not slots:
            return NO_SLOTS_MESSAGE
        return "\n".join(f"{i}. {self.format_range(slot)}" for i, slot in enumerate(slots, 1))
