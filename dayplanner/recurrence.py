"""Decides whether a template produces an instance on a given date."""
from __future__ import annotations
from datetime import date, timedelta
from typing import Callable, Dict, Optional

from dateutil.relativedelta import relativedelta, weekday

from .clock import DateLike, date_of_timestamp, parse_date, sunday_weekday
from .models import CustomPattern, Frequency, RecurrenceRule, TaskTemplate

PatternPredicate = Callable[[CustomPattern, date], bool]

PATTERNS: Dict[str, PatternPredicate] = {}


def register_pattern(name: str) -> Callable[[PatternPredicate], PatternPredicate]:
    """Register a custom recurrence predicate under a pattern type name."""
    def deco(fn: PatternPredicate) -> PatternPredicate:
        PATTERNS[name] = fn
        return fn
    return deco


@register_pattern("weekdays")
def _weekdays(pattern: CustomPattern, d: date) -> bool:
    return d.weekday() < 5


@register_pattern("weekends")
def _weekends(pattern: CustomPattern, d: date) -> bool:
    return d.weekday() >= 5


@register_pattern("nth_weekday")
def _nth_weekday(pattern: CustomPattern, d: date) -> bool:
    # e.g. second Tuesday of every month
    if pattern.day_of_week is None or not pattern.nth_week:
        return False
    # relativedelta weekdays count from Monday
    wd = weekday((pattern.day_of_week - 1) % 7, pattern.nth_week)
    target = d + relativedelta(day=1, weekday=wd)
    return target == d


def anchor_date(template: TaskTemplate, target: date) -> date:
    rule = template.recurrence_rule
    if rule.start_date:
        return parse_date(rule.start_date)
    if template.created_at:
        return date_of_timestamp(template.created_at)
    return target


def last_day_of_month(d: date) -> date:
    return d + relativedelta(day=31)


def _months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def _week_start(d: date) -> date:
    return d - timedelta(days=sunday_weekday(d))


def _interval_ok(distance: int, interval: int) -> bool:
    return distance >= 0 and distance % max(1, interval) == 0


def within_date_range(rule: RecurrenceRule, d: date) -> bool:
    if rule.start_date and d < parse_date(rule.start_date):
        return False
    if rule.end_date and d > parse_date(rule.end_date):
        return False
    return True


def matches_pattern(template: TaskTemplate, d: date) -> bool:
    """Frequency match only, ignoring date bounds and occurrence limits."""
    rule = template.recurrence_rule
    freq = rule.frequency

    if freq == Frequency.NONE:
        return False

    if freq == Frequency.DAILY:
        if rule.interval <= 1:
            return True
        return _interval_ok((d - anchor_date(template, d)).days, rule.interval)

    if freq == Frequency.WEEKLY:
        if sunday_weekday(d) not in rule.days_of_week:
            return False
        if rule.interval <= 1:
            return True
        weeks = (_week_start(d) - _week_start(anchor_date(template, d))).days // 7
        return _interval_ok(weeks, rule.interval)

    if freq == Frequency.MONTHLY:
        anchor = anchor_date(template, d)
        day = rule.day_of_month if rule.day_of_month is not None else anchor.day
        if day == -1:
            if d != last_day_of_month(d):
                return False
        elif d.day != day:
            return False
        if rule.interval <= 1:
            return True
        return _interval_ok(_months_between(anchor, d), rule.interval)

    if freq == Frequency.YEARLY:
        anchor = anchor_date(template, d)
        month = rule.month if rule.month is not None else anchor.month
        day = rule.day_of_month if rule.day_of_month is not None else anchor.day
        if d.month != month:
            return False
        if day == -1:
            if d != last_day_of_month(d):
                return False
        elif d.day != day:
            return False
        if rule.interval <= 1:
            return True
        return _interval_ok(d.year - anchor.year, rule.interval)

    if freq == Frequency.CUSTOM:
        pattern = rule.custom_pattern
        if pattern is None:
            return False
        predicate = PATTERNS.get(pattern.type)
        if predicate is None:
            return False
        return predicate(pattern, d)

    raise ValueError(f"unhandled frequency {freq!r}")


def count_occurrences(template: TaskTemplate, until: DateLike) -> int:
    """Occurrences from the rule's start date up to, not including, `until`."""
    rule = template.recurrence_rule
    if not rule.start_date:
        return 0
    d = parse_date(rule.start_date)
    end = parse_date(until)
    n = 0
    while d < end:
        if matches_pattern(template, d):
            n += 1
            if rule.end_after_occurrences and n >= rule.end_after_occurrences:
                break
        d += timedelta(days=1)
    return n


def within_occurrence_limit(template: TaskTemplate, d: date) -> bool:
    limit = template.recurrence_rule.end_after_occurrences
    if not limit:
        return True
    # Without a start date there is nothing to count from.
    if not template.recurrence_rule.start_date:
        return True
    return count_occurrences(template, d) < limit


def should_generate(template: TaskTemplate, on: DateLike) -> bool:
    d = parse_date(on)
    rule = template.recurrence_rule
    if rule.frequency == Frequency.NONE:
        return False
    if not within_date_range(rule, d):
        return False
    if not within_occurrence_limit(template, d):
        return False
    return matches_pattern(template, d)


def next_occurrence(template: TaskTemplate, after: DateLike, horizon_days: int = 366) -> Optional[date]:
    d = parse_date(after) + timedelta(days=1)
    for _ in range(horizon_days):
        if should_generate(template, d):
            return d
        d += timedelta(days=1)
    return None
