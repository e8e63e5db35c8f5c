from datetime import datetime
from types import SimpleNamespace

import pytest

from portal.scheduling.overlap import find_overlapping, intervals_overlap


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2030, 1, 7, hour, minute)


@pytest.mark.parametrize(
    ('first', 'second', 'expected'),
    [
        ((at(9), at(10)), (at(9, 30), at(10, 30)), True),
        ((at(9), at(12)), (at(10), at(11)), True),
        ((at(9), at(10)), (at(9), at(10)), True),
        ((at(9), at(10)), (at(10), at(11)), False),
        ((at(10), at(11)), (at(9), at(10)), False),
        ((at(9), at(10)), (at(11), at(12)), False),
    ],
)
def test_intervals_overlap_is_half_open(first, second, expected) -> None:
    assert intervals_overlap(*first, *second) is expected
    assert intervals_overlap(*second, *first) is expected


def test_find_overlapping_returns_only_intersecting_intervals() -> None:
    morning = SimpleNamespace(start_time=at(9), end_time=at(10))
    late_morning = SimpleNamespace(start_time=at(10), end_time=at(11))
    noon = SimpleNamespace(start_time=at(11, 30), end_time=at(12, 30))

    result = find_overlapping(at(9, 30), at(11, 45), [morning, late_morning, noon])

    assert result == [morning, late_morning, noon]
    assert find_overlapping(at(10), at(11), [morning, noon]) == []


def test_find_overlapping_with_no_intervals() -> None:
    assert find_overlapping(at(9), at(10), []) == []
