import sqlite3

import pytest

from dayplanner.db import connect, data_dir, migrate
from dayplanner.errors import ValidationError
from dayplanner.generator import instance_from_template
from dayplanner.models import (
    CustomPattern,
    Frequency,
    InstanceStatus,
    RecurrenceRule,
    SchedulingType,
    TaskTemplate,
    TimeWindow,
)
from dayplanner.repository import Repository

DAY = "2025-03-05"


@pytest.fixture
def repo():
    conn = connect(":memory:")
    migrate(conn)
    yield Repository(conn)
    conn.close()


def _tpl(tid="", name="Read", **kw):
    kw.setdefault("recurrence_rule", RecurrenceRule(frequency=Frequency.DAILY))
    kw.setdefault("created_at", "2025-01-01T08:00:00")
    return TaskTemplate(id=tid, name=name, **kw)


def test_data_dir_honours_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DAYPLANNER_HOME", str(tmp_path / "planner"))
    assert data_dir() == tmp_path / "planner"
    assert (tmp_path / "planner").is_dir()


def test_migrate_is_repeatable():
    conn = connect(":memory:")
    migrate(conn)
    migrate(conn)
    assert Repository(conn).get_settings().daily_capacity_minutes == 840


def test_default_settings(repo):
    s = repo.get_settings()
    assert s.default_wake_time == "06:30"
    assert s.default_sleep_time == "23:00"
    assert s.sleep_duration_hours == 7.5
    assert s.daily_capacity_minutes == 840


def test_sleep_override_for_one_date(repo):
    repo.set_sleep_override("2025-03-08", "08:00", "00:30")

    sat = repo.get_effective_sleep_window("2025-03-08")
    assert (sat.wake_time, sat.sleep_time, sat.duration_hours) == ("08:00", "00:30", 7.5)
    assert repo.get_effective_sleep_window(DAY).wake_time == "06:30"

    repo.set_sleep_override("2025-03-08", "09:00", "01:00", 8)
    assert repo.get_effective_sleep_window("2025-03-08").duration_hours == 8

    repo.clear_sleep_override("2025-03-08")
    assert repo.get_effective_sleep_window("2025-03-08").wake_time == "06:30"


def test_default_sleep_and_capacity(repo):
    repo.set_default_sleep("07:00", "23:30", 8)
    repo.set_daily_capacity_minutes(600)
    s = repo.get_settings()
    assert (s.default_wake_time, s.default_sleep_time, s.sleep_duration_hours) == ("07:00", "23:30", 8.0)
    assert s.daily_capacity_minutes == 600

    with pytest.raises(ValueError):
        repo.set_default_sleep("7am", "23:30", 8)


def test_template_round_trip(repo):
    rule = RecurrenceRule(
        frequency=Frequency.CUSTOM,
        custom_pattern=CustomPattern("nth_weekday", day_of_week=2, nth_week=2),
        start_date="2025-01-01",
        end_after_occurrences=10,
    )
    base = repo.create_template(_tpl(name="Base"))
    saved = repo.create_template(_tpl(
        name="Plan",
        description="monthly planning",
        priority=5,
        is_mandatory=True,
        duration_minutes=90,
        min_duration_minutes=45,
        scheduling_type=SchedulingType.FIXED,
        default_time="18:00",
        time_window=TimeWindow.EVENING,
        depends_on=[base.id],
        recurrence_rule=rule,
    ))

    assert saved.id
    assert repo.get_template(saved.id) == saved


def test_weekly_days_round_trip(repo):
    rule = RecurrenceRule(frequency=Frequency.WEEKLY, interval=2, days_of_week=[1, 3, 5])
    saved = repo.create_template(_tpl(recurrence_rule=rule))
    assert repo.get_template(saved.id).recurrence_rule == rule


def test_create_template_validates(repo):
    with pytest.raises(ValidationError):
        repo.create_template(_tpl(priority=0))
    with pytest.raises(ValidationError):
        repo.create_template(_tpl(depends_on=["ghost"]))
    assert repo.list_templates() == []


def test_update_deactivate_and_delete_template(repo):
    t = repo.create_template(_tpl())
    other = repo.create_template(_tpl(name="Walk"))

    repo.update_template(TaskTemplate(**{**t.__dict__, "name": "Read more"}))
    assert repo.get_template(t.id).name == "Read more"

    repo.deactivate_template(other.id)
    assert [x.id for x in repo.get_all_active()] == [t.id]
    assert len(repo.list_templates()) == 2

    repo.delete_template(t.id)
    with pytest.raises(KeyError):
        repo.get_template(t.id)


def test_create_and_read_instances(repo):
    t = repo.create_template(_tpl())
    inst = repo.create(instance_from_template(t, DAY))

    found = repo.get_for_date(DAY)
    assert [i.id for i in found] == [inst.id]
    assert found[0] == repo.get_instance(inst.id)
    assert found[0].name == "Read"
    assert repo.get_for_date("2025-03-06") == []


def test_one_instance_per_template_and_date(repo):
    t = repo.create_template(_tpl())
    repo.create(instance_from_template(t, DAY))
    with pytest.raises(sqlite3.IntegrityError):
        repo.create(instance_from_template(t, DAY))
    assert len(repo.get_for_date(DAY)) == 1


def test_cached_reads_are_copies(repo):
    t = repo.create_template(_tpl())
    inst = repo.create(instance_from_template(t, DAY))

    first = repo.get_for_date(DAY)
    first[0].scheduled_time = "12:00"
    assert repo.get_for_date(DAY)[0].scheduled_time is None

    # writes behind the repository's back need an explicit invalidate
    repo.conn.execute("UPDATE instances SET notes='x' WHERE id=?", (inst.id,))
    assert repo.get_for_date(DAY)[0].notes is None
    repo.invalidate(DAY)
    assert repo.get_for_date(DAY)[0].notes == "x"


def test_update_stamps_and_validates(repo):
    t = repo.create_template(_tpl())
    inst = repo.create(instance_from_template(t, "2025-01-05"))

    updated = repo.update(inst.id, {"scheduled_time": "10:00"}, "moved by hand")
    assert updated.scheduled_time == "10:00"
    assert updated.modification_reason == "moved by hand"
    assert updated.modified_at >= inst.modified_at
    assert repo.get_for_date("2025-01-05")[0].scheduled_time == "10:00"

    with pytest.raises(ValidationError):
        repo.update(inst.id, {"scheduled_time": "10am"})
    assert repo.get_instance(inst.id).scheduled_time == "10:00"

    with pytest.raises(KeyError):
        repo.update(inst.id, {"colour": "red"})
    with pytest.raises(KeyError):
        repo.update("missing", {"notes": "x"})


def test_status_changes(repo):
    a = repo.create(instance_from_template(repo.create_template(_tpl(name="A")), DAY))
    b = repo.create(instance_from_template(repo.create_template(_tpl(name="B")), DAY))

    done = repo.mark_completed(a.id, actual_duration=25)
    assert done.status == InstanceStatus.COMPLETED
    assert done.completed_at
    assert done.actual_duration == 25

    skipped = repo.mark_skipped(b.id, "raining")
    assert skipped.status == InstanceStatus.SKIPPED
    assert skipped.notes == "raining"


def test_postpone_moves_to_new_date(repo):
    t = repo.create_template(_tpl())
    inst = repo.create(instance_from_template(t, DAY))
    repo.update(inst.id, {"scheduled_time": "09:00", "status": InstanceStatus.POSTPONED})

    moved = repo.postpone(inst.id, "2025-03-06")
    assert moved.date == "2025-03-06"
    assert moved.status == InstanceStatus.PENDING
    assert moved.scheduled_time is None
    assert repo.get_for_date(DAY) == []
    assert [i.id for i in repo.get_for_date("2025-03-06")] == [inst.id]


def test_delete_instance(repo):
    t = repo.create_template(_tpl())
    inst = repo.create(instance_from_template(t, DAY))
    repo.get_for_date(DAY)
    repo.delete_instance(inst.id)
    assert repo.get_for_date(DAY) == []
