"""Mutual free-time calculation for two weekly course schedules.

Both people's busy intervals are treated as one combined obstacle set:
they are clipped to the day window, sorted, merged, and the gaps between
the merged blocks become the shared free slots. Everything here is pure
integer-minute arithmetic on wall-clock times; no timezones.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

MINUTES_PER_DAY = 24 * 60
DEFAULT_DAY_START = 8 * 60
DEFAULT_DAY_END = 22 * 60
DEFAULT_MIN_SLOT_MINUTES = 30

DAY_NAMES = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_LOGGER = logging.getLogger("studytogether.free_time")


def time_to_minutes(value: str) -> int:
    """Convert ``HH:MM`` to minutes since midnight (``24:00`` is 1440)."""
    m = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not m:
        raise ValueError(f"invalid time: {value!r}")
    hours, minutes = int(m.group(1)), int(m.group(2))
    if minutes >= 60 or hours > 24 or (hours == 24 and minutes):
        raise ValueError(f"time out of range: {value!r}")
    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """Render minutes since midnight as a zero-padded ``HH:MM`` string."""
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise ValueError(f"minutes out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True, order=True)
class TimeInterval:
    """A busy span within one day, in minutes since midnight."""
    start_minutes: int
    end_minutes: int

    def __post_init__(self):
        if not isinstance(self.start_minutes, int) or not isinstance(self.end_minutes, int):
            raise ValueError("interval bounds must be integers")
        if self.start_minutes < 0 or self.end_minutes > MINUTES_PER_DAY:
            raise ValueError(
                f"interval {self.start_minutes}-{self.end_minutes} outside 0-{MINUTES_PER_DAY}"
            )
        if self.start_minutes >= self.end_minutes:
            raise ValueError(
                f"interval start must be before end ({self.start_minutes} >= {self.end_minutes})"
            )

    @classmethod
    def from_strings(cls, start: str, end: str) -> "TimeInterval":
        return cls(time_to_minutes(start), time_to_minutes(end))

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes


@dataclass(frozen=True)
class FreeSlot:
    """A shared free span that met the minimum duration."""
    start_time: str
    end_time: str
    duration_minutes: int

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration_minutes,
        }


@dataclass
class DayFreeTime:
    day_of_week: int
    slots: List[FreeSlot] = field(default_factory=list)

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]

    @property
    def total_free_minutes(self) -> int:
        return sum(s.duration_minutes for s in self.slots)

    def to_dict(self) -> dict:
        return {
            "dayName": self.day_name,
            "freeTimeSlots": [s.to_dict() for s in self.slots],
            "totalFreeTime": self.total_free_minutes,
        }


@dataclass
class WeeklyFreeTime:
    """Per-day free slots for a whole week plus aggregate statistics."""
    days: Dict[int, DayFreeTime]

    @property
    def total_weekly_free_minutes(self) -> int:
        return sum(d.total_free_minutes for d in self.days.values())

    @property
    def average_daily_free_minutes(self) -> float:
        return self.total_weekly_free_minutes / 7

    @property
    def total_free_slots(self) -> int:
        return sum(len(d.slots) for d in self.days.values())

    def iter_slots(self) -> Iterable[Tuple[int, FreeSlot]]:
        for day in sorted(self.days):
            for slot in self.days[day].slots:
                yield day, slot

    def to_dict(self) -> dict:
        """JSON shape served by the free-time endpoint (day keys are strings)."""
        return {
            "weeklyFreeTime": {str(day): self.days[day].to_dict() for day in sorted(self.days)},
            "statistics": {
                "totalWeeklyFreeTime": self.total_weekly_free_minutes,
                "averageDailyFreeTime": self.average_daily_free_minutes,
                "totalFreeSlots": self.total_free_slots,
            },
        }


def _check_window(day_start: int, day_end: int, min_slot_minutes: int) -> None:
    if not (0 <= day_start <= MINUTES_PER_DAY and 0 <= day_end <= MINUTES_PER_DAY):
        raise ValueError("day window must lie within 0-1440 minutes")
    if day_start > day_end:
        raise ValueError("day_start must not be after day_end")
    if min_slot_minutes < 0:
        raise ValueError("min_slot_minutes must be >= 0")


def merge_busy(intervals: Iterable[TimeInterval], day_start: int, day_end: int) -> List[Tuple[int, int]]:
    """Clip intervals to the window and merge overlapping or touching ones.

    Returns disjoint ``(start, end)`` blocks in ascending order.
    """
    clipped = []
    for iv in intervals:
        start = max(iv.start_minutes, day_start)
        end = min(iv.end_minutes, day_end)
        if start < end:
            clipped.append((start, end))
    clipped.sort()
    merged: List[List[int]] = []
    for start, end in clipped:
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [(s, e) for s, e in merged]


def compute_day_free_time(
    schedule_a: Sequence[TimeInterval],
    schedule_b: Sequence[TimeInterval],
    day_start: int = DEFAULT_DAY_START,
    day_end: int = DEFAULT_DAY_END,
    min_slot_minutes: int = DEFAULT_MIN_SLOT_MINUTES,
) -> List[FreeSlot]:
    """Return the free slots shared by two people on one day.

    Free time has to avoid either person's commitments, so both schedules
    are merged as a single busy set before the gaps are taken. Gaps
    shorter than ``min_slot_minutes`` are dropped; a gap of exactly that
    length is kept.
    """
    _check_window(day_start, day_end, min_slot_minutes)
    busy = merge_busy(list(schedule_a) + list(schedule_b), day_start, day_end)

    gaps = []
    cursor = day_start
    for start, end in busy:
        if start > cursor:
            gaps.append((cursor, start))
        cursor = end
    if cursor < day_end:
        gaps.append((cursor, day_end))

    return [
        FreeSlot(minutes_to_time(start), minutes_to_time(end), end - start)
        for start, end in gaps
        if end - start >= min_slot_minutes
    ]


def compute_weekly_free_time(
    week_a: Mapping[int, Sequence[TimeInterval]],
    week_b: Mapping[int, Sequence[TimeInterval]],
    day_start: int = DEFAULT_DAY_START,
    day_end: int = DEFAULT_DAY_END,
    min_slot_minutes: int = DEFAULT_MIN_SLOT_MINUTES,
) -> WeeklyFreeTime:
    """Run the per-day calculation for Monday (1) through Sunday (7)."""
    days = {}
    for day in range(1, 8):
        slots = compute_day_free_time(
            week_a.get(day, []),
            week_b.get(day, []),
            day_start=day_start,
            day_end=day_end,
            min_slot_minutes=min_slot_minutes,
        )
        days[day] = DayFreeTime(day_of_week=day, slots=slots)
    return WeeklyFreeTime(days=days)


def group_by_day(rows: Iterable[Tuple[int, str, str]]) -> Dict[int, List[TimeInterval]]:
    """Partition ``(day_of_week, start, end)`` rows into intervals per day.

    Rows with an unknown day, unparseable time or ``start >= end`` are
    skipped and logged rather than fed to the merge.
    """
    out: Dict[int, List[TimeInterval]] = {}
    for day, start, end in rows:
        if day not in DAY_NAMES:
            _LOGGER.warning("skipping schedule row with invalid day_of_week=%r", day)
            continue
        try:
            interval = TimeInterval.from_strings(start, end)
        except ValueError as exc:
            _LOGGER.warning("skipping malformed schedule row day=%s %s-%s: %s", day, start, end, exc)
            continue
        out.setdefault(day, []).append(interval)
    return out
