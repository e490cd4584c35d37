import pytest

from dayplanner.dependencies import build_graph, detect_cycles, resolve_dependencies
from dayplanner.errors import CycleDetectedWarning
from dayplanner.models import InstanceStatus, SchedulingType, TaskInstance


def _inst(iid, priority=3, at=None, duration=30, deps=(), status=InstanceStatus.PENDING,
          mandatory=False, fixed=False):
    return TaskInstance(
        id=iid,
        template_id=f"tpl-{iid}",
        date="2025-03-05",
        name=iid.upper(),
        status=status,
        priority=priority,
        scheduled_time=at,
        duration_minutes=duration,
        depends_on=list(deps),
        is_mandatory=mandatory,
        scheduling_type=SchedulingType.FIXED if fixed else SchedulingType.FLEXIBLE,
        default_time=at if fixed else None,
    )


def _ids(instances):
    return [i.id for i in instances]


def test_empty_input():
    report = resolve_dependencies([], "2025-03-05")
    assert report.order == []
    assert report.conflicts == []


def test_dependencies_come_first():
    a = _inst("a")
    b = _inst("b", deps=["a"])
    c = _inst("c", deps=["b"])
    report = resolve_dependencies([c, b, a])
    assert _ids(report.order) == ["a", "b", "c"]


def test_higher_priority_first_among_peers():
    report = resolve_dependencies([_inst("low", priority=1), _inst("high", priority=5), _inst("mid")])
    assert _ids(report.order) == ["high", "mid", "low"]


def test_cycle_is_reported_and_falls_back_to_priority():
    a = _inst("a", priority=2, deps=["b"])
    b = _inst("b", priority=4, deps=["a"])
    free = _inst("free", priority=1)

    with pytest.warns(CycleDetectedWarning):
        report = resolve_dependencies([a, b, free])

    assert report.cycles == [["a", "b", "a"]]
    assert [w.issue for w in report.warnings] == ["circular_dependency"]
    assert _ids(report.order) == ["free", "b", "a"]


def test_detect_cycles_without_cycle():
    graph, _ = build_graph([_inst("a"), _inst("b", deps=["a"])])
    assert detect_cycles(graph) == []


def test_flexible_dependent_is_pushed_after_dependency():
    a = _inst("a", at="09:00", duration=60)
    b = _inst("b", at="09:30", deps=["a"])
    report = resolve_dependencies([a, b])

    assert b.scheduled_time == "10:05"
    assert b.modification_reason == "Adjusted for dependency constraints"
    assert _ids(report.adjusted) == ["b"]
    assert report.resolved == 2


def test_unscheduled_dependent_gets_a_time():
    a = _inst("a", at="09:00", duration=60)
    b = _inst("b", deps=["a"])
    resolve_dependencies([a, b])
    assert b.scheduled_time == "10:05"


def test_dependent_already_late_enough_is_left_alone():
    a = _inst("a", at="09:00", duration=60)
    b = _inst("b", at="11:00", deps=["a"])
    report = resolve_dependencies([a, b])
    assert b.scheduled_time == "11:00"
    assert report.adjusted == []


def test_fixed_dependent_is_not_moved():
    a = _inst("a", at="09:00", duration=60)
    b = _inst("b", at="09:30", deps=["a"], fixed=True)
    resolve_dependencies([a, b])
    assert b.scheduled_time == "09:30"


def test_skipped_dependency_is_a_conflict():
    a = _inst("a", status=InstanceStatus.SKIPPED)
    b = _inst("b", deps=["a"])
    report = resolve_dependencies([a, b])

    assert len(report.conflicts) == 1
    assert report.conflicts[0].instance_id == "b"
    assert report.conflicts[0].issue == "dependency_conflict"
    assert "skipped" in report.conflicts[0].details
    assert report.conflicts[0].blocking


def test_mandatory_task_needs_completed_dependency():
    a = _inst("a")
    b = _inst("b", deps=["a"], mandatory=True)
    report = resolve_dependencies([a, b])
    assert _ids(report.order) == ["a", "b"]
    assert [c.instance_id for c in report.conflicts] == ["b"]
    assert not report.conflicts[0].blocking

    a.status = InstanceStatus.COMPLETED
    report = resolve_dependencies([a, b])
    assert report.conflicts == []
    assert report.resolved == 2


def test_missing_dependency_is_a_warning():
    b = _inst("b", deps=["ghost"])
    report = resolve_dependencies([b])

    assert report.conflicts == []
    assert len(report.warnings) == 1
    assert report.warnings[0].issue == "missing_dependency"
    assert _ids(report.order) == ["b"]


def test_finished_tasks_are_not_checked_or_moved():
    a = _inst("a", at="09:00", duration=60)
    b = _inst("b", at="08:00", deps=["a"], mandatory=True, status=InstanceStatus.COMPLETED)
    report = resolve_dependencies([a, b])

    assert report.conflicts == []
    assert report.adjusted == []
    assert b.scheduled_time == "08:00"
