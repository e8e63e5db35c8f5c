from datetime import date, time

from portal.models.availability import AvailabilityOverride, AvailabilityTemplate
from portal.scheduling.availability import Window, day_of_week, parse_clock, resolve_windows, windows_from_blocks

MONDAY = date(2030, 1, 7)
SUNDAY = date(2030, 1, 6)


def template(day: int, start: time, end: time, is_active: bool = True) -> AvailabilityTemplate:
    return AvailabilityTemplate(day_of_week=day, start_time=start, end_time=end, is_active=is_active)


def test_day_of_week_counts_from_sunday() -> None:
    assert day_of_week(SUNDAY) == 0
    assert day_of_week(MONDAY) == 1
    assert day_of_week(date(2030, 1, 12)) == 6


def test_parse_clock_accepts_strings_and_times() -> None:
    assert parse_clock('09:30') == time(9, 30)
    assert parse_clock(' 14:00 ') == time(14, 0)
    assert parse_clock(time(8, 15)) == time(8, 15)


def test_windows_from_blocks_accepts_camel_case_keys() -> None:
    windows = windows_from_blocks([{'startTime': '09:00', 'endTime': '12:00'}])

    assert windows == [Window(time(9, 0), time(12, 0))]


def test_resolve_windows_uses_active_templates_for_weekday() -> None:
    templates = [
        template(1, time(14, 0), time(17, 0)),
        template(1, time(9, 0), time(12, 0)),
        template(1, time(18, 0), time(20, 0), is_active=False),
        template(2, time(9, 0), time(17, 0)),
    ]

    windows = resolve_windows(MONDAY, templates, None)

    assert windows == [Window(time(9, 0), time(12, 0)), Window(time(14, 0), time(17, 0))]


def test_resolve_windows_without_templates_is_empty() -> None:
    assert resolve_windows(SUNDAY, [template(1, time(9, 0), time(17, 0))], None) == []


def test_unavailable_override_closes_the_date() -> None:
    override = AvailabilityOverride(
        date=MONDAY,
        is_unavailable=True,
        slots=[{'start_time': '09:00', 'end_time': '10:00'}],
    )

    assert resolve_windows(MONDAY, [template(1, time(9, 0), time(17, 0))], override) == []


def test_override_slots_replace_templates() -> None:
    override = AvailabilityOverride(
        date=MONDAY,
        is_unavailable=False,
        slots=[
            {'start_time': '15:00', 'end_time': '16:00'},
            {'start_time': '08:00', 'end_time': '09:00'},
        ],
    )

    windows = resolve_windows(MONDAY, [template(1, time(9, 0), time(17, 0))], override)

    assert windows == [Window(time(8, 0), time(9, 0)), Window(time(15, 0), time(16, 0))]


def test_override_with_no_slots_yields_no_windows() -> None:
    override = AvailabilityOverride(date=MONDAY, is_unavailable=False, slots=[])

    assert resolve_windows(MONDAY, [template(1, time(9, 0), time(17, 0))], override) == []
