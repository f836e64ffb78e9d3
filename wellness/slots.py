"""Slot generation and occupancy filtering.

Everything here is pure: the store is read in :mod:`wellness.services`
and the results are passed in as plain values.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, Hashable, Iterable, Sequence, TypeVar

from wellness.errors import InvalidTime, MalformedWindow

logger = logging.getLogger(__name__)

T = TypeVar("T")

MINUTES_PER_DAY = 24 * 60

_CLOCK_24 = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
_CLOCK_12 = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([ap])\.?\s*m\.?\s*$", re.IGNORECASE)


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """Wall-clock time stored as minutes since midnight."""

    minutes: int

    def __post_init__(self):
        if not 0 <= self.minutes < MINUTES_PER_DAY:
            raise InvalidTime(f"minutes out of range: {self.minutes}")

    @classmethod
    def parse(cls, value: str) -> TimeOfDay:
        match = _CLOCK_24.match(value or "")
        if not match:
            raise InvalidTime(f"expected HH:MM, got {value!r}")
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise InvalidTime(f"expected HH:MM, got {value!r}")
        return cls(hour * 60 + minute)

    def __str__(self) -> str:
        return f"{self.minutes // 60:02d}:{self.minutes % 60:02d}"


def normalize_time(value: str) -> str:
    """Return ``value`` as zero-padded ``HH:MM``.

    Accepts 24-hour ``H:MM``/``HH:MM`` and the 12-hour forms stored by
    older booking screens (``"10:00 a.m."``, ``"2:30 PM"``).
    """
    match = _CLOCK_12.match(value or "")
    if match:
        hour, minute, half = int(match.group(1)), int(match.group(2)), match.group(3).lower()
        if not 1 <= hour <= 12 or minute > 59:
            raise InvalidTime(f"invalid 12-hour time {value!r}")
        hour = hour % 12 + (12 if half == "p" else 0)
        return str(TimeOfDay(hour * 60 + minute))
    return str(TimeOfDay.parse(value))


def display_time(value: str) -> str:
    """Render ``HH:MM`` as ``h:mm AM/PM`` for pages."""
    t = TimeOfDay.parse(value)
    hour, minute = divmod(t.minutes, 60)
    return f"{hour % 12 or 12}:{minute:02d} {'PM' if hour >= 12 else 'AM'}"


def calendar_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass(frozen=True)
class WorkingWindow:
    id: Hashable
    specialist_id: Hashable
    date: date
    start_time: str
    end_time: str

    def bounds(self) -> tuple[TimeOfDay, TimeOfDay]:
        try:
            start = TimeOfDay.parse(self.start_time)
            end = TimeOfDay.parse(self.end_time)
        except InvalidTime as exc:
            raise MalformedWindow(self.id, str(exc)) from exc
        if start >= end:
            raise MalformedWindow(self.id, f"start {start} is not before end {end}")
        return start, end


@dataclass(frozen=True)
class BookedTime:
    appointment_id: Hashable
    specialist_id: Hashable
    date: date
    time: str


def generate_slots(start_time: str, end_time: str, increment_minutes: int) -> list[str]:
    """Slot start times from ``start_time`` in steps of ``increment_minutes``.

    The end bound is never a slot. An empty or inverted window, or one
    shorter than the increment, gives an empty list.
    """
    if increment_minutes <= 0:
        raise ValueError("increment_minutes must be positive")
    start = TimeOfDay.parse(start_time)
    end = TimeOfDay.parse(end_time)
    if end.minutes - start.minutes < increment_minutes:
        return []
    return [str(TimeOfDay(m)) for m in range(start.minutes, end.minutes, increment_minutes)]


def aggregate_slots(
    windows: Iterable[WorkingWindow],
    specialist_id: Hashable,
    day: date | datetime,
    increment_minutes: int,
) -> list[str]:
    """Union of the slots of every window for ``specialist_id`` on ``day``.

    Malformed windows are logged and skipped.
    """
    wanted = calendar_day(day)
    slots: set[str] = set()
    for window in windows:
        if window.specialist_id != specialist_id or calendar_day(window.date) != wanted:
            continue
        try:
            window.bounds()
        except MalformedWindow as exc:
            logger.warning("Skipping malformed window: %s", exc)
            continue
        slots.update(generate_slots(window.start_time, window.end_time, increment_minutes))
    return sorted(slots)


def filter_available(
    candidate_slots: Sequence[str],
    booked_times: Iterable[BookedTime | str],
    exclude_id: Hashable | None = None,
) -> list[str]:
    """Candidate slots not taken by any booking other than ``exclude_id``."""
    occupied = set()
    for booked in booked_times:
        if isinstance(booked, str):
            occupied.add(booked)
        elif exclude_id is None or booked.appointment_id != exclude_id:
            occupied.add(booked.time)
    return [slot for slot in candidate_slots if slot not in occupied]


class LatestRequestGate:
    """Drops results of slot lookups superseded by a newer one."""

    def __init__(self):
        self._latest = 0

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, seq: int) -> bool:
        return seq == self._latest

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T | None:
        seq = self.issue()
        result = await factory()
        if not self.is_current(seq):
            logger.debug("Discarding stale slot lookup #%s (latest #%s)", seq, self._latest)
            return None
        return result
