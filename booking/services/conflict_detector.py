"""
Interval overlap checks shared by availability and booking.

All intervals are half-open [start, end): an appointment ending at 10:30 does
not conflict with one starting at 10:30. The same predicate is used for
appointment-vs-appointment and appointment-vs-break checks.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar


@dataclass(frozen=True, order=True)
class TimeInterval:
    start: datetime
    end: datetime

    def contains(self, other: "TimeInterval") -> bool:
        """True if other lies fully inside this interval."""
        return self.start <= other.start and other.end <= self.end


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    return a.start < b.end and b.start < a.end


T = TypeVar("T")


def find_conflicts(
    candidate: TimeInterval,
    items: Iterable[T],
    interval_of=lambda item: TimeInterval(item.start_time, item.end_time),
) -> list[T]:
    """
    Return the items whose interval overlaps candidate.

    interval_of maps an item to its TimeInterval; the default reads
    start_time/end_time attributes (appointments).
    """
    return [item for item in items if overlaps(candidate, interval_of(item))]


def has_conflict(candidate: TimeInterval, intervals: Iterable[TimeInterval]) -> bool:
    return any(overlaps(candidate, interval) for interval in intervals)
