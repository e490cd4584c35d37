from __future__ import annotations
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterator, Tuple, Union

# Wall-clock only: every date and time here is naive local time.

DateLike = Union[str, date]

# (start, end) in minutes since midnight, end exclusive
WINDOW_BOUNDS: Dict[str, Tuple[int, int]] = {
    "morning": (6 * 60, 12 * 60),
    "afternoon": (12 * 60, 18 * 60),
    "evening": (18 * 60, 22 * 60),
    "anytime": (6 * 60, 22 * 60),
}

MINUTES_PER_DAY = 24 * 60


def now() -> datetime:
    return datetime.now()


def now_iso() -> str:
    return now().isoformat(timespec="seconds")


def parse_hhmm(s: str) -> time:
    """Parse "HH:MM" (24h). Raises ValueError on anything else."""
    hh, mm = s.split(":")
    if len(hh) != 2 or len(mm) != 2:
        raise ValueError(f"not an HH:MM time: {s!r}")
    return time(int(hh), int(mm))


def is_hhmm(s) -> bool:
    if not isinstance(s, str):
        return False
    try:
        parse_hhmm(s)
    except ValueError:
        return False
    return True


def to_minutes(s: str) -> int:
    t = parse_hhmm(s)
    return t.hour * 60 + t.minute


def minutes_to_hhmm(minutes: int) -> str:
    minutes = max(0, min(MINUTES_PER_DAY - 1, int(minutes)))
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(d: DateLike) -> date:
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    return date.fromisoformat(d)


def format_date(d: DateLike) -> str:
    return parse_date(d).isoformat()


def is_iso_date(s) -> bool:
    if not isinstance(s, str):
        return False
    try:
        date.fromisoformat(s)
    except ValueError:
        return False
    return True


def date_of_timestamp(ts: str) -> date:
    """Date part of an ISO timestamp or plain date string."""
    return datetime.fromisoformat(ts).date()


def date_range(start: DateLike, end: DateLike) -> Iterator[date]:
    """Every date from start to end, both inclusive."""
    d = parse_date(start)
    last = parse_date(end)
    while d <= last:
        yield d
        d += timedelta(days=1)


def sunday_weekday(d: date) -> int:
    """0=Sun ... 6=Sat."""
    return d.isoweekday() % 7


def window_bounds(window) -> Tuple[int, int]:
    key = getattr(window, "value", window) or "anytime"
    return WINDOW_BOUNDS.get(key, WINDOW_BOUNDS["anytime"])


def is_within_window(hhmm: str, window) -> bool:
    """Whether a start time falls inside a named window (end exclusive).

    "anytime" accepts every time of day.
    """
    key = getattr(window, "value", window) or "anytime"
    if key == "anytime":
        return True
    start, end = window_bounds(key)
    m = to_minutes(hhmm)
    return start <= m < end


def overlaps(start1: int, end1: int, start2: int, end2: int) -> bool:
    return start1 < end2 and end1 > start2
