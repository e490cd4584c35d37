from datetime import date

import pytest

import dayplanner.clock as clock
from dayplanner.models import TimeWindow


def test_window_bounds_accepts_enum_and_string():
    assert clock.window_bounds(TimeWindow.MORNING) == (360, 720)
    assert clock.window_bounds("evening") == (1080, 1320)
    assert clock.window_bounds(None) == (360, 1320)


def test_is_within_window_end_exclusive():
    assert clock.is_within_window("21:59", TimeWindow.EVENING) is True
    assert clock.is_within_window("22:00", TimeWindow.EVENING) is False
    assert clock.is_within_window("11:00", TimeWindow.AFTERNOON) is False


def test_anytime_accepts_every_time():
    assert clock.is_within_window("03:00", TimeWindow.ANYTIME) is True
    assert clock.is_within_window("23:30", "anytime") is True


def test_minutes_to_hhmm_clamps_to_the_day():
    assert clock.minutes_to_hhmm(605) == "10:05"
    assert clock.minutes_to_hhmm(-10) == "00:00"
    assert clock.minutes_to_hhmm(24 * 60 + 30) == "23:59"


def test_parse_hhmm_is_strict():
    assert clock.to_minutes("09:30") == 570
    with pytest.raises(ValueError):
        clock.parse_hhmm("9:30")
    with pytest.raises(ValueError):
        clock.parse_hhmm("25:00")
    assert clock.is_hhmm("nope") is False


def test_sunday_weekday_and_inclusive_range():
    assert clock.sunday_weekday(date(2025, 3, 2)) == 0  # Sunday
    assert clock.sunday_weekday(date(2025, 3, 8)) == 6  # Saturday

    days = list(clock.date_range("2025-02-27", "2025-03-01"))
    assert [d.isoformat() for d in days] == ["2025-02-27", "2025-02-28", "2025-03-01"]


def test_overlaps_touching_spans_do_not_overlap():
    assert clock.overlaps(540, 600, 570, 630) is True
    assert clock.overlaps(540, 600, 600, 660) is False
