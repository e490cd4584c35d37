import sqlite3

import pytest

from dayplanner.db import connect, migrate
from dayplanner.errors import CycleDetectedWarning
from dayplanner.generator import instance_from_template
from dayplanner.models import Frequency, RecurrenceRule, SchedulingType, TaskTemplate
from dayplanner.optimizer import OptimizationOptions
from dayplanner.repository import Repository
from dayplanner.scheduler import Scheduler

DAY = "2025-03-05"
DAILY = RecurrenceRule(frequency=Frequency.DAILY)
ENERGY_ONLY = OptimizationOptions(
    prioritize_energy=True,
    respect_time_windows=False,
    minimize_gaps=False,
    optimize_transitions=False,
    consider_dependencies=False,
)


@pytest.fixture
def repo():
    conn = connect(":memory:")
    migrate(conn)
    yield Repository(conn)
    conn.close()


@pytest.fixture
def sched(repo):
    return Scheduler(repo)


def _tpl(repo, name, **kw):
    kw.setdefault("recurrence_rule", DAILY)
    kw.setdefault("created_at", "2025-01-01T08:00:00")
    return repo.create_template(TaskTemplate(id="", name=name, **kw))


def _saved(repo, name, at=None, duration=30, **kw):
    inst = instance_from_template(_tpl(repo, name, duration_minutes=duration, **kw), DAY)
    inst.scheduled_time = at
    return repo.create(inst)


def test_generate_daily_instances_persists_once(repo, sched):
    cook = _tpl(repo, "Cook")
    _tpl(repo, "Eat", depends_on=[cook.id])

    run = sched.generate_daily_instances(DAY)
    assert len(run.generation.generated) == 2
    assert run.dependencies is not None
    assert run.conflicts is not None

    stored = {i.template_id: i for i in repo.get_for_date(DAY)}
    assert stored[cook.id].id in [d for i in stored.values() for d in i.depends_on]

    again = sched.generate_daily_instances(DAY)
    assert again.generation.generated == []
    assert {s.reason for s in again.generation.skipped} == {"Instance already exists"}
    assert again.dependencies is None
    assert len(repo.get_for_date(DAY)) == 2


def test_store_failures_are_collected(repo, sched, monkeypatch):
    _tpl(repo, "Walk")

    def fail(inst):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repo, "create", fail)
    run = sched.generate_daily_instances(DAY)

    assert run.generation.generated == []
    assert len(run.generation.errors) == 1
    assert "disk I/O error" in run.generation.errors[0].error


def test_generate_range(repo, sched):
    _tpl(repo, "Walk")
    report = sched.generate_instances_for_date_range("2025-03-01", "2025-03-03")

    assert report.total_generated == 3
    for day in ("2025-03-01", "2025-03-02", "2025-03-03"):
        assert len(repo.get_for_date(day)) == 1


def test_dependency_adjustments_are_saved(repo, sched):
    a = _saved(repo, "A", at="09:00", duration=60)
    b = _saved(repo, "B", at="09:30")
    repo.update(b.id, {"depends_on": [a.id]})

    report = sched.resolve_dependencies_for_date(DAY)

    assert [i.id for i in report.adjusted] == [b.id]
    stored = repo.get_instance(b.id)
    assert stored.scheduled_time == "10:05"
    assert stored.modification_reason == "Adjusted for dependency constraints"


def test_cycles_warn_through_the_service(repo, sched):
    a = _saved(repo, "A")
    b = _saved(repo, "B")
    repo.update(a.id, {"depends_on": [b.id]})
    repo.update(b.id, {"depends_on": [a.id]})

    with pytest.warns(CycleDetectedWarning):
        report = sched.resolve_dependencies_for_date(DAY)
    assert len(report.cycles) == 1


def test_conflict_fixes_are_saved(repo, sched):
    a = _saved(repo, "A", at="09:00", duration=60)
    b = _saved(repo, "B", at="09:30", duration=60)

    report = sched.detect_and_resolve_conflicts(repo.get_for_date(DAY), DAY)

    assert report.resolved == 1
    assert repo.get_instance(a.id).scheduled_time == "09:00"
    assert repo.get_instance(b.id).scheduled_time == "06:00"


def test_capacity_uses_stored_setting(repo, sched):
    _saved(repo, "Long", duration=120, is_mandatory=True)
    short = _saved(repo, "Short", duration=60, priority=1)
    repo.set_daily_capacity_minutes(150)

    report = sched.detect_and_resolve_conflicts(repo.get_for_date(DAY), DAY)

    assert report.resolved == 1
    assert repo.get_instance(short.id).status.value == "postponed"


def test_optimizer_changes_are_applied(repo, sched):
    inst = _saved(repo, "Report", at="14:00", priority=4)
    report = sched.optimize_scheduling_for_date(DAY, ENERGY_ONLY)

    assert report.optimized == 1
    stored = repo.get_instance(inst.id)
    assert stored.scheduled_time == "10:00"
    assert stored.modification_reason.startswith("Moved to optimal energy time")


def test_one_failed_optimization_does_not_stop_the_rest(repo, sched, monkeypatch):
    first = _saved(repo, "First", at="14:00", priority=5)
    second = _saved(repo, "Second", at="15:00", priority=5)
    real_update = repo.update

    def flaky(instance_id, patch, reason=None):
        if instance_id == first.id:
            raise sqlite3.OperationalError("database is locked")
        return real_update(instance_id, patch, reason)

    monkeypatch.setattr(repo, "update", flaky)
    report = sched.optimize_scheduling_for_date(DAY, ENERGY_ONLY)

    assert report.optimized == 1
    assert [f.instance_id for f in report.failures] == [first.id]
    assert repo.get_instance(second.id).scheduled_time == "10:00"
    assert repo.get_instance(first.id).scheduled_time == "14:00"


def test_schedule_uses_sleep_override(repo, sched):
    _tpl(repo, "Shift", duration_minutes=300, is_mandatory=True)

    assert sched.generate_schedule_for_date(DAY).success is True

    repo.set_sleep_override(DAY, "10:00", "16:00", 20)
    result = sched.generate_schedule_for_date(DAY)
    assert result.success is False
    assert result.error == "impossible_schedule"
    assert result.sleep_window.wake_time == "10:00"


def test_schedule_includes_fixed_anchor(repo, sched):
    _tpl(repo, "Standup", duration_minutes=15, is_mandatory=True,
         scheduling_type=SchedulingType.FIXED, default_time="09:00")
    result = sched.generate_schedule_for_date(DAY)
    assert [(e.name, e.scheduled_time) for e in result.schedule] == [("Standup", "09:00")]
