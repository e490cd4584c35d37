from __future__ import annotations
from typing import Iterable, List, Optional

from .clock import is_hhmm, is_iso_date
from .errors import ValidationError
from .models import (
    Frequency,
    InstanceStatus,
    RecurrenceRule,
    SchedulingType,
    TaskInstance,
    TaskTemplate,
    TimeWindow,
)


def template_problems(template: TaskTemplate, existing_ids: Optional[Iterable[str]] = None) -> List[str]:
    problems: List[str] = []

    if not (template.name or "").strip():
        problems.append("name is required")
    if not isinstance(template.priority, int) or not 1 <= template.priority <= 5:
        problems.append(f"priority must be 1..5, got {template.priority!r}")
    if not isinstance(template.duration_minutes, int) or template.duration_minutes <= 0:
        problems.append(f"duration_minutes must be a positive integer, got {template.duration_minutes!r}")
    elif template.min_duration_minutes is not None:
        if template.min_duration_minutes <= 0:
            problems.append("min_duration_minutes must be positive")
        elif template.min_duration_minutes > template.duration_minutes:
            problems.append("min_duration_minutes cannot exceed duration_minutes")

    if not isinstance(template.scheduling_type, SchedulingType):
        problems.append(f"unknown scheduling type {template.scheduling_type!r}")
    if not isinstance(template.time_window, TimeWindow):
        problems.append(f"unknown time window {template.time_window!r}")

    if template.default_time is not None and not is_hhmm(template.default_time):
        problems.append(f"default_time must be HH:MM, got {template.default_time!r}")
    elif template.scheduling_type == SchedulingType.FIXED and not template.default_time:
        problems.append("fixed tasks need a default_time")

    if template.id in template.depends_on:
        problems.append("a task cannot depend on itself")
    if existing_ids is not None:
        known = set(existing_ids)
        for dep in template.depends_on:
            if dep != template.id and dep not in known:
                problems.append(f"depends on unknown task {dep!r}")

    problems.extend(_rule_problems(template.recurrence_rule))
    return problems


def _rule_problems(rule: RecurrenceRule) -> List[str]:
    problems: List[str] = []
    if not isinstance(rule.frequency, Frequency):
        return [f"unknown frequency {rule.frequency!r}"]

    if not isinstance(rule.interval, int) or rule.interval < 1:
        problems.append(f"interval must be >= 1, got {rule.interval!r}")

    for d in rule.days_of_week:
        if not isinstance(d, int) or not 0 <= d <= 6:
            problems.append(f"day of week must be 0..6 (0=Sunday), got {d!r}")
    if rule.frequency == Frequency.WEEKLY and not rule.days_of_week:
        problems.append("weekly recurrence needs at least one day of week")

    if rule.day_of_month is not None and not (rule.day_of_month == -1 or 1 <= rule.day_of_month <= 31):
        problems.append(f"day_of_month must be 1..31 or -1, got {rule.day_of_month!r}")
    if rule.month is not None and not 1 <= rule.month <= 12:
        problems.append(f"month must be 1..12, got {rule.month!r}")

    for label, value in (("start_date", rule.start_date), ("end_date", rule.end_date)):
        if value is not None and not is_iso_date(value):
            problems.append(f"{label} must be YYYY-MM-DD, got {value!r}")
    if (
        is_iso_date(rule.start_date)
        and is_iso_date(rule.end_date)
        and rule.end_date < rule.start_date
    ):
        problems.append("end_date is before start_date")

    if rule.end_after_occurrences is not None and rule.end_after_occurrences < 1:
        problems.append("end_after_occurrences must be positive")

    if rule.frequency == Frequency.CUSTOM and rule.custom_pattern is None:
        problems.append("custom recurrence needs a pattern")
    return problems


def validate_template(template: TaskTemplate, existing_ids: Optional[Iterable[str]] = None) -> TaskTemplate:
    problems = template_problems(template, existing_ids)
    if problems:
        raise ValidationError(problems, subject=template.name or template.id)
    return template


def validate_instance(instance: TaskInstance) -> TaskInstance:
    problems: List[str] = []
    if not instance.template_id:
        problems.append("template_id is required")
    if not is_iso_date(instance.date):
        problems.append(f"date must be YYYY-MM-DD, got {instance.date!r}")
    if not isinstance(instance.status, InstanceStatus):
        problems.append(f"unknown status {instance.status!r}")
    if instance.scheduled_time is not None and not is_hhmm(instance.scheduled_time):
        problems.append(f"scheduled_time must be HH:MM, got {instance.scheduled_time!r}")
    if not isinstance(instance.duration_minutes, int) or instance.duration_minutes <= 0:
        problems.append(f"duration_minutes must be a positive integer, got {instance.duration_minutes!r}")
    if instance.actual_duration is not None and instance.actual_duration < 0:
        problems.append("actual_duration cannot be negative")
    if instance.id in instance.depends_on:
        problems.append("an instance cannot depend on itself")
    if problems:
        raise ValidationError(problems, subject=instance.name or instance.id)
    return instance
