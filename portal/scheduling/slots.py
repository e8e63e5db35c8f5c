"""Discretizes availability windows into bookable slots."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Sequence

from portal.scheduling.availability import Window
from portal.scheduling.overlap import Interval, find_overlapping
from portal.services.errors import BookingValidationError


@dataclass(frozen=True)
class TimeSlot:
    start_time: datetime
    end_time: datetime
    is_available: bool


def iterate_window_starts(window_start: datetime, window_end: datetime, duration: timedelta) -> Iterable[datetime]:
    current = window_start
    # A slot that ends exactly at the window close is still valid.
    while current + duration <= window_end:
        yield current
        current += duration


def generate_slots(
    target_date: date,
    windows: Sequence[Window],
    duration_minutes: int,
    now: datetime,
    appointments: Sequence[Interval],
) -> list[TimeSlot]:
    """
    Build the slot list for one date.

    Each window is stepped independently by duration_minutes. Slots starting
    before now are dropped. Every other slot is kept and flagged unavailable
    when it overlaps any of the given appointments, which must already
    exclude cancelled ones.
    """
    if duration_minutes <= 0:
        raise BookingValidationError('Slot duration must be a positive number of minutes.')

    duration = timedelta(minutes=duration_minutes)
    slots: list[TimeSlot] = []

    for window in windows:
        window_start = datetime.combine(target_date, window.start_time)
        window_end = datetime.combine(target_date, window.end_time)

        for slot_start in iterate_window_starts(window_start, window_end, duration):
            if slot_start < now:
                continue

            slot_end = slot_start + duration
            slots.append(
                TimeSlot(
                    start_time=slot_start,
                    end_time=slot_end,
                    is_available=not find_overlapping(slot_start, slot_end, appointments),
                )
            )

    return sorted(slots, key=lambda slot: slot.start_time)
