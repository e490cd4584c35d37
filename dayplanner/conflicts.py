from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .clock import minutes_to_hhmm, overlaps, to_minutes, window_bounds
from .dependencies import DEPENDENCY_BUFFER_MINUTES
from .errors import CapacityConflictError
from .models import ConflictType, InstanceStatus, Severity, TaskInstance

logger = logging.getLogger(__name__)

DAILY_CAPACITY_MINUTES = 14 * 60
SLOT_STEP_MINUTES = 15


@dataclass
class Conflict:
    conflict_id: str
    type: ConflictType
    instances: List[TaskInstance]
    severity: Severity
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Change:
    instance_id: str
    field: str
    value: Any


@dataclass
class Resolution:
    conflict_id: str
    type: ConflictType
    resolved: bool = False
    strategy: Optional[str] = None
    changes: List[Change] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass
class ConflictReport:
    date: str
    conflicts: List[Conflict] = field(default_factory=list)
    resolved: int = 0
    unresolved: int = 0
    resolutions: List[Resolution] = field(default_factory=list)
    unresolved_conflicts: List[Resolution] = field(default_factory=list)

    @property
    def total_conflicts(self) -> int:
        return len(self.conflicts)

    def changed_instance_ids(self) -> List[str]:
        seen: List[str] = []
        for r in self.resolutions + self.unresolved_conflicts:
            for c in r.changes:
                if c.instance_id not in seen:
                    seen.append(c.instance_id)
        return seen


# Resource detection hook: callables appended here take the day's instances
# and return extra conflicts. None ship by default.
ResourceDetector = Callable[[Sequence[TaskInstance]], List[Conflict]]
RESOURCE_DETECTORS: List[ResourceDetector] = []


def span(inst: TaskInstance) -> tuple:
    start = to_minutes(inst.scheduled_time)
    return start, start + inst.duration_minutes


def _scheduled_pending(instances: Sequence[TaskInstance]) -> List[TaskInstance]:
    return [
        i for i in instances
        if i.status == InstanceStatus.PENDING and i.scheduled_time and i.duration_minutes
    ]


def conflict_severity(a: TaskInstance, b: TaskInstance) -> Severity:
    if a.is_mandatory and b.is_mandatory:
        return Severity.CRITICAL
    if a.is_mandatory or b.is_mandatory:
        return Severity.HIGH
    avg = (a.priority + b.priority) / 2
    if avg >= 4:
        return Severity.HIGH
    if avg >= 3:
        return Severity.MEDIUM
    return Severity.LOW


def detect_time_conflicts(instances: Sequence[TaskInstance]) -> List[Conflict]:
    scheduled = _scheduled_pending(instances)
    conflicts: List[Conflict] = []
    for n, a in enumerate(scheduled):
        start1, end1 = span(a)
        for b in scheduled[n + 1:]:
            start2, end2 = span(b)
            if not overlaps(start1, end1, start2, end2):
                continue
            lo, hi = max(start1, start2), min(end1, end2)
            conflicts.append(Conflict(
                conflict_id=f"time_{a.id}_{b.id}",
                type=ConflictType.TIME_OVERLAP,
                instances=[a, b],
                severity=conflict_severity(a, b),
                details={"overlap": {"start": lo, "end": hi, "duration": hi - lo}},
            ))
    return conflicts


def detect_capacity_conflicts(
    instances: Sequence[TaskInstance], date: str, capacity_minutes: int = DAILY_CAPACITY_MINUTES
) -> List[Conflict]:
    pending = [i for i in instances if i.status == InstanceStatus.PENDING]
    total = sum(i.duration_minutes for i in pending)
    if total <= capacity_minutes:
        return []
    return [Conflict(
        conflict_id=f"capacity_{date}",
        type=ConflictType.CAPACITY_EXCEEDED,
        instances=pending,
        severity=Severity.HIGH,
        details={
            "total_scheduled": total,
            "daily_capacity": capacity_minutes,
            "excess": total - capacity_minutes,
        },
    )]


def detect_resource_conflicts(instances: Sequence[TaskInstance]) -> List[Conflict]:
    found: List[Conflict] = []
    for detector in RESOURCE_DETECTORS:
        found.extend(detector(instances))
    return found


def find_free_slot(
    inst: TaskInstance,
    others: Sequence[TaskInstance],
    step: int = SLOT_STEP_MINUTES,
    not_before: Optional[int] = None,
    end_by: Optional[int] = None,
) -> Optional[str]:
    """Earliest start inside the instance's window that overlaps none of `others`.

    `not_before` and `end_by` (minutes) narrow the search further; the
    conflict resolver uses them to keep a task on the right side of its
    dependencies.
    """
    win_start, win_end = window_bounds(inst.time_window)
    if end_by is not None:
        win_end = min(win_end, end_by)
    duration = inst.duration_minutes
    busy = [span(o) for o in others if o.id != inst.id and o.scheduled_time]

    start = win_start if not_before is None else max(win_start, not_before)
    while start + duration <= win_end:
        end = start + duration
        if not any(overlaps(start, end, b_start, b_end) for b_start, b_end in busy):
            return minutes_to_hhmm(start)
        start += step
    return None


def dependency_bounds(inst: TaskInstance, instances: Sequence[TaskInstance]) -> tuple:
    """(not_before, end_by) in minutes from the scheduled tasks around `inst`.

    It may not start until its dependencies are done and must finish before
    any of its dependents begins, with the dependency buffer on both sides.
    """
    not_before: Optional[int] = None
    end_by: Optional[int] = None
    for other in instances:
        if other.id == inst.id or not other.scheduled_time:
            continue
        start, end = span(other)
        if other.id in inst.depends_on:
            limit = end + DEPENDENCY_BUFFER_MINUTES
            not_before = limit if not_before is None else max(not_before, limit)
        elif inst.id in other.depends_on:
            limit = start - DEPENDENCY_BUFFER_MINUTES
            end_by = limit if end_by is None else min(end_by, limit)
    return not_before, end_by


def _pick_instance_to_move(a: TaskInstance, b: TaskInstance) -> Optional[TaskInstance]:
    # a dependent gives way to its dependency
    if b.id in a.depends_on and a.is_flexible:
        return a
    if a.id in b.depends_on and b.is_flexible:
        return b
    if a.is_flexible and not b.is_flexible:
        return a
    if b.is_flexible and not a.is_flexible:
        return b
    if not (a.is_flexible and b.is_flexible):
        return None
    if a.priority != b.priority:
        return a if a.priority < b.priority else b
    # equal priority: move whichever starts later
    return b if span(b) >= span(a) else a


def _resolve_time_overlap(conflict: Conflict, instances: Sequence[TaskInstance], res: Resolution) -> None:
    a, b = conflict.instances
    if not (a.is_pending and b.is_pending) or not (a.scheduled_time and b.scheduled_time):
        res.resolved = True
        res.strategy = "no_longer_pending"
        return
    if not overlaps(*span(a), *span(b)):
        res.resolved = True
        res.strategy = "already_resolved"
        return

    mover = _pick_instance_to_move(a, b)
    if mover is None:
        res.reason = "Both tasks are fixed"
        return

    not_before, end_by = dependency_bounds(mover, instances)
    new_time = find_free_slot(mover, _scheduled_pending(instances), not_before=not_before, end_by=end_by)
    if new_time is None:
        res.reason = f'No free slot in the {mover.time_window.value} window for "{mover.name or mover.id}"'
        return

    both_flexible = a.is_flexible and b.is_flexible
    mover.scheduled_time = new_time
    mover.touch("Resolved conflict by priority" if both_flexible else "Resolved scheduling conflict")
    res.resolved = True
    res.strategy = "priority_based" if both_flexible else "reschedule_flexible"
    res.changes.append(Change(mover.id, "scheduled_time", new_time))


def _resolve_capacity(conflict: Conflict, instances: Sequence[TaskInstance], capacity_minutes: int, res: Resolution) -> None:
    pending = [i for i in instances if i.status == InstanceStatus.PENDING]
    total = sum(i.duration_minutes for i in pending)
    candidates = sorted(
        (i for i in pending if not i.is_mandatory),
        key=lambda i: i.priority,
    )
    for inst in candidates:
        if total <= capacity_minutes:
            break
        inst.status = InstanceStatus.POSTPONED
        inst.touch("Postponed due to daily capacity limits")
        total -= inst.duration_minutes
        res.changes.append(Change(inst.id, "status", InstanceStatus.POSTPONED))

    if total > capacity_minutes:
        raise CapacityConflictError(total - capacity_minutes)
    res.resolved = True
    res.strategy = "postpone_low_priority"


def resolve_conflict(
    conflict: Conflict, instances: Sequence[TaskInstance], capacity_minutes: int = DAILY_CAPACITY_MINUTES
) -> Resolution:
    res = Resolution(conflict_id=conflict.conflict_id, type=conflict.type)
    if conflict.type == ConflictType.TIME_OVERLAP:
        _resolve_time_overlap(conflict, instances, res)
    elif conflict.type == ConflictType.CAPACITY_EXCEEDED:
        _resolve_capacity(conflict, instances, capacity_minutes, res)
    elif conflict.type == ConflictType.RESOURCE_CONFLICT:
        res.reason = "No automatic strategy for resource conflicts"
    else:
        raise ValueError(f"unhandled conflict type {conflict.type!r}")
    return res


def detect_conflicts(
    instances: Sequence[TaskInstance], date: str, capacity_minutes: int = DAILY_CAPACITY_MINUTES
) -> List[Conflict]:
    return (
        detect_time_conflicts(instances)
        + detect_resource_conflicts(instances)
        + detect_capacity_conflicts(instances, date, capacity_minutes)
    )


def detect_and_resolve_conflicts(
    instances: Sequence[TaskInstance], date: str, capacity_minutes: int = DAILY_CAPACITY_MINUTES
) -> ConflictReport:
    """Find conflicts among the day's instances and fix what can be fixed.

    Fixes are made on the instance objects themselves; each Resolution lists
    the fields it changed.
    """
    instances = list(instances)
    report = ConflictReport(date=date)
    if not instances:
        return report

    report.conflicts = detect_conflicts(instances, date, capacity_minutes)
    ordered = sorted(report.conflicts, key=lambda c: c.severity.rank, reverse=True)

    for conflict in ordered:
        try:
            res = resolve_conflict(conflict, instances, capacity_minutes)
        except CapacityConflictError as e:
            res = Resolution(conflict.conflict_id, conflict.type, reason=str(e))
            # postponements made before running out of candidates still stand
            res.changes = [
                Change(i.id, "status", InstanceStatus.POSTPONED)
                for i in conflict.instances if i.status == InstanceStatus.POSTPONED
            ]
        if res.resolved:
            report.resolved += 1
            report.resolutions.append(res)
        else:
            report.unresolved += 1
            report.unresolved_conflicts.append(res)
            logger.warning("Unresolved %s conflict %s: %s", conflict.type.value, conflict.conflict_id, res.reason)

    logger.info(
        "Conflict resolution for %s: %s resolved, %s unresolved",
        date, report.resolved, report.unresolved,
    )
    return report
