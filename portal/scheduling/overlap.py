"""Conflict detection between half-open time intervals."""

from datetime import datetime
from typing import Iterable, Protocol


class Interval(Protocol):
    start_time: datetime
    end_time: datetime


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """
    True when [start_a, end_a) and [start_b, end_b) share at least one instant.

    Back-to-back intervals (one ends exactly when the other starts) do not overlap.
    """
    return start_a < end_b and start_b < end_a


def find_overlapping(
    start_time: datetime,
    end_time: datetime,
    intervals: Iterable[Interval],
) -> list[Interval]:
    return [
        interval
        for interval in intervals
        if intervals_overlap(start_time, end_time, interval.start_time, interval.end_time)
    ]
