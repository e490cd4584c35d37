import pytest

from dayplanner.errors import ValidationError
from dayplanner.models import (
    Frequency,
    RecurrenceRule,
    SchedulingType,
    TaskInstance,
    TaskTemplate,
    template_with_defaults,
)
from dayplanner.validation import template_problems, validate_instance, validate_template


def _tpl(**kw):
    kw.setdefault("id", "t1")
    kw.setdefault("name", "Read")
    return TaskTemplate(**kw)


def test_valid_template_passes():
    t = _tpl(recurrence_rule=RecurrenceRule(frequency=Frequency.WEEKLY, days_of_week=[1, 3]))
    assert validate_template(t) is t


def test_smart_defaults():
    t = template_with_defaults(id="t1", name="Read", duration_minutes=None, created_at="2025-01-01T00:00:00")
    assert t.priority == 3
    assert t.duration_minutes == 30
    assert t.min_duration_minutes == 15

    t = template_with_defaults(id="t2", name="Write", duration_minutes=90, depends_on="t1", created_at="2025-01-01T00:00:00")
    assert t.min_duration_minutes == 45
    assert t.depends_on == ["t1"]


@pytest.mark.parametrize("fields, fragment", [
    ({"name": "  "}, "name is required"),
    ({"priority": 0}, "priority"),
    ({"priority": 6}, "priority"),
    ({"duration_minutes": 0}, "duration_minutes"),
    ({"duration_minutes": 30, "min_duration_minutes": 45}, "min_duration_minutes"),
    ({"scheduling_type": SchedulingType.FIXED}, "default_time"),
    ({"default_time": "9am"}, "HH:MM"),
    ({"depends_on": ["t1"]}, "itself"),
])
def test_template_problems(fields, fragment):
    problems = template_problems(_tpl(**fields))
    assert any(fragment in p for p in problems), problems


@pytest.mark.parametrize("rule, fragment", [
    (RecurrenceRule(frequency=Frequency.DAILY, interval=0), "interval"),
    (RecurrenceRule(frequency=Frequency.WEEKLY), "at least one day"),
    (RecurrenceRule(frequency=Frequency.WEEKLY, days_of_week=[7]), "0..6"),
    (RecurrenceRule(frequency=Frequency.MONTHLY, day_of_month=32), "day_of_month"),
    (RecurrenceRule(frequency=Frequency.YEARLY, month=13), "month"),
    (RecurrenceRule(frequency=Frequency.DAILY, start_date="2025-03-10", end_date="2025-03-01"), "before"),
    (RecurrenceRule(frequency=Frequency.DAILY, start_date="03/10/2025"), "YYYY-MM-DD"),
    (RecurrenceRule(frequency=Frequency.DAILY, end_after_occurrences=0), "positive"),
    (RecurrenceRule(frequency=Frequency.CUSTOM), "pattern"),
])
def test_rule_problems(rule, fragment):
    problems = template_problems(_tpl(recurrence_rule=rule))
    assert any(fragment in p for p in problems), problems


def test_unknown_dependency_only_checked_against_known_ids():
    t = _tpl(depends_on=["ghost"])
    assert template_problems(t) == []
    assert template_problems(t, existing_ids=["t1"]) == ["depends on unknown task 'ghost'"]


def test_validation_error_collects_messages():
    with pytest.raises(ValidationError) as exc:
        validate_template(_tpl(priority=9, duration_minutes=-5))
    assert len(exc.value.messages) == 2
    assert exc.value.subject == "Read"
    assert isinstance(exc.value, ValueError)


def test_validate_instance():
    inst = TaskInstance(id="i1", template_id="t1", date="2025-03-05", scheduled_time="09:00")
    assert validate_instance(inst) is inst

    inst.scheduled_time = "9:00"
    with pytest.raises(ValidationError):
        validate_instance(inst)

    with pytest.raises(ValidationError):
        validate_instance(TaskInstance(id="i2", template_id="t1", date="tomorrow"))
