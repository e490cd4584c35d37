from __future__ import annotations
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .classifier import KeywordClassifier, TaskClassifier, transition_buffer
from .clock import is_within_window, minutes_to_hhmm, to_minutes, window_bounds
from .conflicts import find_free_slot
from .dependencies import build_graph, latest_dependency_end
from .models import TaskInstance

logger = logging.getLogger(__name__)

# hour -> relative energy (0-100). Hand-tuned, not learned.
ENERGY_CURVE: Dict[int, int] = {
    6: 60,
    8: 85,
    10: 90,
    12: 75,
    14: 65,
    16: 80,
    18: 70,
    20: 50,
    22: 30,
}

DAY_START_HOUR = 6
DAY_END_HOUR = 22
GAP_THRESHOLD_MINUTES = 60
GAP_BUFFER_MINUTES = 15
SEQUENCING_BUFFER_MINUTES = 10


@dataclass(frozen=True)
class OptimizationOptions:
    prioritize_energy: bool = True
    respect_time_windows: bool = True
    minimize_gaps: bool = True
    optimize_transitions: bool = True
    consider_dependencies: bool = True


@dataclass(frozen=True)
class Improvement:
    instance_id: str
    instance_name: str
    strategy: str
    updates: Dict[str, Any]
    reason: str


@dataclass(frozen=True)
class OptimizationFailure:
    instance_id: str
    strategy: str
    error: str


@dataclass
class OptimizationReport:
    date: str
    total_instances: int = 0
    optimized: int = 0
    improvements: List[Improvement] = field(default_factory=list)
    failures: List[OptimizationFailure] = field(default_factory=list)


def energy_at_hour(hour: int, curve: Dict[int, int] = ENERGY_CURVE) -> int:
    """Energy of the first curve point at or after `hour`."""
    points = sorted(curve)
    for h in points:
        if hour <= h:
            return curve[h]
    return curve[points[-1]]


def fits_at_hour(hour: int, duration_minutes: int) -> bool:
    return hour >= DAY_START_HOUR and hour + math.ceil(duration_minutes / 60) <= DAY_END_HOUR


def best_energy_hour(duration_minutes: int, curve: Dict[int, int] = ENERGY_CURVE) -> Optional[int]:
    best_hour: Optional[int] = None
    best = -1
    for hour in sorted(curve):
        if curve[hour] > best and fits_at_hour(hour, duration_minutes):
            best_hour, best = hour, curve[hour]
    return best_hour


def _by_time(instances: Sequence[TaskInstance]) -> List[TaskInstance]:
    scheduled = [i for i in instances if i.scheduled_time and i.is_pending]
    return sorted(scheduled, key=lambda i: to_minutes(i.scheduled_time))


def _end(inst: TaskInstance) -> int:
    return to_minutes(inst.scheduled_time) + inst.duration_minutes


Strategy = Callable[[TaskInstance, Sequence[TaskInstance]], Optional[Improvement]]


def _energy(inst: TaskInstance, instances: Sequence[TaskInstance]) -> Optional[Improvement]:
    if not inst.is_flexible or not inst.scheduled_time or not inst.is_pending:
        return None
    if inst.priority < 4 and inst.duration_minutes <= 60:
        return None
    current_hour = to_minutes(inst.scheduled_time) // 60
    current = energy_at_hour(current_hour)
    hour = best_energy_hour(inst.duration_minutes)
    if hour is None or hour == current_hour:
        return None
    target = energy_at_hour(hour)
    if target <= current:
        return None
    new_time = f"{hour:02d}:00"
    return Improvement(
        inst.id, inst.name, "energy_optimization", {"scheduled_time": new_time},
        f"Moved to optimal energy time ({current}% -> {target}%)",
    )


def _time_window(inst: TaskInstance, instances: Sequence[TaskInstance]) -> Optional[Improvement]:
    if not inst.is_flexible or not inst.scheduled_time or not inst.is_pending:
        return None
    start, end = window_bounds(inst.time_window)
    m = to_minutes(inst.scheduled_time)
    if start <= m < end:
        return None
    others = [i for i in instances if i.is_pending and i.id != inst.id]
    slot = find_free_slot(inst, others)
    if slot is None:
        return None
    return Improvement(
        inst.id, inst.name, "time_window_optimization", {"scheduled_time": slot},
        f"Moved to preferred {inst.time_window.value} time window",
    )


def _gaps(ordered: Sequence[TaskInstance]) -> List[Improvement]:
    out: List[Improvement] = []
    for prev, nxt in zip(ordered, ordered[1:]):
        if not nxt.is_flexible:
            continue
        gap = to_minutes(nxt.scheduled_time) - _end(prev)
        if gap <= GAP_THRESHOLD_MINUTES:
            continue
        new_time = minutes_to_hhmm(_end(prev) + GAP_BUFFER_MINUTES)
        if is_within_window(new_time, nxt.time_window):
            out.append(Improvement(
                nxt.id, nxt.name, "gap_minimization", {"scheduled_time": new_time},
                f"Reduced {gap}-minute gap to improve schedule flow",
            ))
    return out


def _transitions(ordered: Sequence[TaskInstance], classifier: TaskClassifier) -> List[Improvement]:
    out: List[Improvement] = []
    for prev, nxt in zip(ordered, ordered[1:]):
        if not nxt.is_flexible:
            continue
        before, after = classifier.classify(prev), classifier.classify(nxt)
        buffer = transition_buffer(before, after)
        if buffer is None:
            continue
        if to_minutes(nxt.scheduled_time) - _end(prev) >= buffer:
            continue
        new_time = minutes_to_hhmm(_end(prev) + buffer)
        if is_within_window(new_time, nxt.time_window):
            out.append(Improvement(
                nxt.id, nxt.name, "transition_optimization", {"scheduled_time": new_time},
                f"Added {buffer}-minute buffer for {before.value} -> {after.value} transition",
            ))
    return out


def _sequencing(instances: Sequence[TaskInstance]) -> List[Improvement]:
    graph, _ = build_graph(instances)
    out: List[Improvement] = []
    for inst in instances:
        node = graph[inst.id]
        if not node.dependencies or not inst.is_flexible or not inst.is_pending:
            continue
        latest = latest_dependency_end(node, graph)
        if latest is None:
            continue
        if inst.scheduled_time and to_minutes(inst.scheduled_time) >= latest:
            continue
        new_time = minutes_to_hhmm(latest + SEQUENCING_BUFFER_MINUTES)
        out.append(Improvement(
            inst.id, inst.name, "dependency_sequencing", {"scheduled_time": new_time},
            "Optimized start time to respect dependency completion",
        ))
    return out


def _per_instance(strategy: Strategy, name: str, instances: Sequence[TaskInstance], report: OptimizationReport) -> List[Improvement]:
    out: List[Improvement] = []
    for inst in instances:
        try:
            imp = strategy(inst, instances)
        except (ValueError, TypeError) as e:
            report.failures.append(OptimizationFailure(inst.id, name, str(e)))
            continue
        if imp is not None:
            out.append(imp)
    return out


def _guarded(fn: Callable[[], List[Improvement]], name: str, report: OptimizationReport) -> List[Improvement]:
    try:
        return fn()
    except (ValueError, TypeError) as e:
        report.failures.append(OptimizationFailure("", name, str(e)))
        return []


def optimize(
    instances: Sequence[TaskInstance],
    date: str,
    options: Optional[OptimizationOptions] = None,
    classifier: Optional[TaskClassifier] = None,
) -> OptimizationReport:
    """Propose time changes for flexible instances. Nothing is modified here."""
    options = options or OptimizationOptions()
    classifier = classifier or KeywordClassifier()
    instances = list(instances)
    report = OptimizationReport(date=date, total_instances=len(instances))
    if not instances:
        return report

    proposals: List[Improvement] = []
    if options.prioritize_energy:
        proposals += _per_instance(_energy, "energy_optimization", instances, report)
    if options.respect_time_windows:
        proposals += _per_instance(_time_window, "time_window_optimization", instances, report)
    if options.minimize_gaps:
        proposals += _guarded(lambda: _gaps(_by_time(instances)), "gap_minimization", report)
    if options.optimize_transitions:
        proposals += _guarded(lambda: _transitions(_by_time(instances), classifier), "transition_optimization", report)
    if options.consider_dependencies:
        proposals += _guarded(lambda: _sequencing(instances), "dependency_sequencing", report)

    report.improvements = proposals
    report.optimized = len(proposals)
    logger.info("Optimizer proposed %s change(s) for %s", len(proposals), date)
    return report


def apply_improvements(instances: Sequence[TaskInstance], improvements: Sequence[Improvement]) -> List[TaskInstance]:
    """Apply proposals in memory, in order. Returns the instances touched."""
    by_id = {i.id: i for i in instances}
    touched: List[TaskInstance] = []
    for imp in improvements:
        inst = by_id.get(imp.instance_id)
        if inst is None:
            continue
        for key, value in imp.updates.items():
            setattr(inst, key, value)
        inst.touch(imp.reason)
        if all(t.id != inst.id for t in touched):
            touched.append(inst)
    return touched
