"""
Availability resolution.

Turns the recurring weekly template plus an optional date override into the
open windows for one calendar date. An override replaces the template for its
date entirely: either the date is closed, or its own block list is used.
"""

from dataclasses import dataclass
from datetime import date, time
from typing import Any, Iterable, Mapping, Sequence

from portal.models.availability import AvailabilityOverride, AvailabilityTemplate


@dataclass(frozen=True)
class Window:
    start_time: time
    end_time: time


def parse_clock(value: time | str) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(value.strip())


def day_of_week(target_date: date) -> int:
    # Templates count days from Sunday = 0; date.weekday() counts from Monday = 0.
    return (target_date.weekday() + 1) % 7


def _block_bounds(block: Mapping[str, Any]) -> tuple[Any, Any]:
    start = block.get('start_time', block.get('startTime'))
    end = block.get('end_time', block.get('endTime'))
    return start, end


def windows_from_blocks(blocks: Sequence[Mapping[str, Any]]) -> list[Window]:
    windows = []
    for block in blocks:
        start, end = _block_bounds(block)
        windows.append(Window(start_time=parse_clock(start), end_time=parse_clock(end)))
    return windows


def resolve_windows(
    target_date: date,
    templates: Iterable[AvailabilityTemplate],
    override: AvailabilityOverride | None,
) -> list[Window]:
    if override is not None:
        if override.is_unavailable:
            return []
        return sorted(windows_from_blocks(override.slots or []), key=lambda window: window.start_time)

    weekday = day_of_week(target_date)
    windows = [
        Window(start_time=parse_clock(template.start_time), end_time=parse_clock(template.end_time))
        for template in templates
        if template.is_active and template.day_of_week == weekday
    ]
    return sorted(windows, key=lambda window: window.start_time)
