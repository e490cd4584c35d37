from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set

from .clock import DateLike, format_date, minutes_to_hhmm, parse_date, to_minutes, window_bounds
from .conflicts import DAILY_CAPACITY_MINUTES, ConflictReport, detect_and_resolve_conflicts
from .dependencies import DependencyReport, Graph, apply_dependency_timing, resolve_dependencies
from .errors import InfeasibleScheduleError
from .generator import inactive_reason, instance_from_template, resolve_instance_dependencies
from .models import SchedulingType, SleepWindow, TaskInstance, TaskTemplate
from .recurrence import should_generate

logger = logging.getLogger(__name__)

IMPOSSIBLE_SUGGESTIONS = [
    "Reduce sleep duration in settings",
    "Make some tasks skippable instead of mandatory",
    "Reduce duration of mandatory tasks",
    "Postpone some tasks to another day",
]

# TODO: crunch-time step (shrink flexible durations toward
# min_duration_minutes when the day is overcommitted) slots in between
# flexible slotting and conflict resolution once its rules are agreed on.


class EngineState(str, Enum):
    INIT = "init"
    FEASIBILITY_CHECK = "feasibility_check"
    INFEASIBLE = "infeasible"
    ANCHOR_PLACEMENT = "anchor_placement"
    DEPENDENCY_RESOLUTION = "dependency_resolution"
    FLEXIBLE_SLOTTING = "flexible_slotting"
    CONFLICT_RESOLUTION = "conflict_resolution"
    DONE = "done"


@dataclass
class ScheduleResult:
    success: bool
    date: str
    schedule: List[TaskInstance] = field(default_factory=list)
    blocked: List[TaskInstance] = field(default_factory=list)
    sleep_window: Optional[SleepWindow] = None
    total_tasks: int = 0
    scheduled_tasks: int = 0
    error: Optional[str] = None
    message: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    dependencies: Optional[DependencyReport] = None
    conflicts: Optional[ConflictReport] = None
    state: EngineState = EngineState.INIT


@dataclass(frozen=True)
class OverdueTask:
    instance: TaskInstance
    overdue_minutes: int


def is_anchor(inst: TaskInstance) -> bool:
    return inst.is_mandatory and inst.scheduling_type == SchedulingType.FIXED and bool(inst.default_time)


def entries_for_date(
    templates: Iterable[TaskTemplate], instances: Iterable[TaskInstance], on: DateLike
) -> List[TaskInstance]:
    """The day's instances plus unsaved snapshots of templates due that day.

    One-off templates only show up once an instance exists for them.
    """
    day = format_date(on)
    entries = [i.copy() for i in instances if i.date == day]
    by_template = {i.template_id: i for i in entries}
    transient: List[TaskInstance] = []
    for t in templates:
        if t.id in by_template:
            continue
        if inactive_reason(t, parse_date(day)) or not should_generate(t, day):
            continue
        inst = instance_from_template(t, day)
        by_template[t.id] = inst
        transient.append(inst)
    resolve_instance_dependencies(transient, by_template)
    return entries + transient


def active_entries(entries: Sequence[TaskInstance]) -> List[TaskInstance]:
    return [e for e in entries if e.is_active]


def check_feasibility(entries: Sequence[TaskInstance], sleep: SleepWindow) -> None:
    mandatory = [e for e in entries if e.is_mandatory]
    required = sum(e.duration_minutes for e in mandatory)
    available = sleep.awake_minutes
    if required > available:
        raise InfeasibleScheduleError(
            f"{len(mandatory)} mandatory tasks require {round(required / 60)} hours, "
            f"but only {round(available / 60)} hours available.",
            IMPOSSIBLE_SUGGESTIONS,
            required_minutes=required,
            available_minutes=available,
        )


def place_anchors(entries: Sequence[TaskInstance]) -> List[TaskInstance]:
    anchors = [e for e in entries if is_anchor(e)]
    for a in anchors:
        a.scheduled_time = a.default_time
    anchors.sort(key=lambda a: to_minutes(a.scheduled_time))
    logger.debug("Placed %s anchor task(s)", len(anchors))
    return anchors


def slot_flexible(
    order: Sequence[TaskInstance], anchors: Sequence[TaskInstance], graph: Graph
) -> List[TaskInstance]:
    """Give every non-anchor a baseline time and merge with the anchors.

    `order` puts dependencies first, so by the time a dependent is slotted
    the tasks it waits on already have a time and it can start after them.
    """
    anchor_ids = {a.id for a in anchors}
    schedule = list(anchors)
    for e in order:
        if e.id in anchor_ids:
            continue
        if not e.scheduled_time:
            if e.scheduling_type == SchedulingType.FIXED and e.default_time:
                e.scheduled_time = e.default_time
            else:
                e.scheduled_time = minutes_to_hhmm(window_bounds(e.time_window)[0])
        if e.id in graph:
            apply_dependency_timing(graph[e.id], graph)
        schedule.append(e)
    return sort_by_time(schedule)


def blocked_ids(report: DependencyReport, graph: Graph) -> Set[str]:
    """Tasks that cannot run today because something they wait on was skipped."""
    blocked = {c.instance_id for c in report.conflicts if c.blocking}
    for e in report.order:
        if any(dep_id in blocked for dep_id in graph[e.id].dependencies):
            blocked.add(e.id)
    return blocked


def sort_by_time(entries: Iterable[TaskInstance]) -> List[TaskInstance]:
    return sorted(entries, key=lambda e: (to_minutes(e.scheduled_time) if e.scheduled_time else 24 * 60, -e.priority))


def build_schedule(
    templates: Iterable[TaskTemplate],
    instances: Iterable[TaskInstance],
    sleep_window: SleepWindow,
    on: DateLike,
    capacity_minutes: int = DAILY_CAPACITY_MINUTES,
) -> ScheduleResult:
    """Lay out one day. Works on copies; nothing passed in is modified."""
    day = format_date(on)
    result = ScheduleResult(success=False, date=day, sleep_window=sleep_window)

    def enter(state: EngineState) -> None:
        logger.debug("%s: %s -> %s", day, result.state.value, state.value)
        result.state = state

    entries = entries_for_date(templates, instances, day)
    active = active_entries(entries)
    result.total_tasks = len(active)

    enter(EngineState.FEASIBILITY_CHECK)
    try:
        check_feasibility(active, sleep_window)
    except InfeasibleScheduleError as e:
        enter(EngineState.INFEASIBLE)
        logger.warning("Impossible schedule for %s: %s", day, e.message)
        result.error = "impossible_schedule"
        result.message = e.message
        result.suggestions = e.suggestions
        return result

    enter(EngineState.ANCHOR_PLACEMENT)
    anchors = place_anchors(active)

    # finished tasks stay in the graph so their dependents see their status
    enter(EngineState.DEPENDENCY_RESOLUTION)
    result.dependencies = resolve_dependencies(entries, day)
    graph = result.dependencies.graph
    blocked = blocked_ids(result.dependencies, graph)
    result.blocked = [e for e in result.dependencies.order if e.id in blocked and e.is_active]
    if result.blocked:
        logger.info("%s task(s) held back on %s by a skipped dependency", len(result.blocked), day)
    order = [e for e in result.dependencies.order if e.is_active and e.id not in blocked]
    anchors = [a for a in anchors if a.id not in blocked]

    enter(EngineState.FLEXIBLE_SLOTTING)
    schedule = slot_flexible(order, anchors, graph)

    enter(EngineState.CONFLICT_RESOLUTION)
    result.conflicts = detect_and_resolve_conflicts(schedule, day, capacity_minutes)

    result.schedule = sort_by_time(schedule)
    result.scheduled_tasks = len(result.schedule)
    result.success = True
    enter(EngineState.DONE)
    logger.info("Scheduled %s of %s task(s) for %s", result.scheduled_tasks, result.total_tasks, day)
    return result


def find_overdue(schedule: Sequence[TaskInstance], current_time: str) -> List[OverdueTask]:
    """Pending entries whose end is already behind `current_time` (HH:MM)."""
    now_m = to_minutes(current_time)
    out: List[OverdueTask] = []
    for e in schedule:
        if not e.is_pending or not e.scheduled_time:
            continue
        end = to_minutes(e.scheduled_time) + e.duration_minutes
        if now_m > end:
            out.append(OverdueTask(e, now_m - end))
    return out
