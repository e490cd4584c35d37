"""Same-day dependency graph over task instances.

The graph is a flat id -> node map rebuilt on every run. Nothing assumes it
is acyclic: cycles are found with a DFS and reported, and the tasks caught
in one are ordered by priority instead.
"""
from __future__ import annotations
import heapq
import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .clock import minutes_to_hhmm, to_minutes
from .errors import CycleDetectedWarning, DependencyConflictError
from .models import InstanceStatus, TaskInstance

logger = logging.getLogger(__name__)

DEPENDENCY_BUFFER_MINUTES = 5


@dataclass
class GraphNode:
    instance: TaskInstance
    dependencies: List[str] = field(default_factory=list)  # ids this one waits on
    dependents: List[str] = field(default_factory=list)  # ids waiting on this one


@dataclass(frozen=True)
class DependencyWarning:
    instance_id: str
    issue: str  # "missing_dependency" | "circular_dependency"
    details: str


@dataclass(frozen=True)
class DependencyConflict:
    instance_id: str
    instance_name: str
    issue: str  # "dependency_conflict" | "resolution_error"
    details: str
    blocking: bool = False


@dataclass
class DependencyReport:
    date: Optional[str] = None
    order: List[TaskInstance] = field(default_factory=list)
    conflicts: List[DependencyConflict] = field(default_factory=list)
    warnings: List[DependencyWarning] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)
    resolved: int = 0
    adjusted: List[TaskInstance] = field(default_factory=list)
    graph: Dict[str, GraphNode] = field(default_factory=dict, repr=False)


Graph = Dict[str, GraphNode]


def build_graph(instances: Sequence[TaskInstance]) -> Tuple[Graph, List[DependencyWarning]]:
    graph: Graph = {i.id: GraphNode(instance=i) for i in instances}
    problems: List[DependencyWarning] = []

    for inst in instances:
        node = graph[inst.id]
        for dep_id in inst.depends_on:
            dep = graph.get(dep_id)
            if dep is None:
                logger.warning("Dependency %s not found for instance %s", dep_id, inst.id)
                problems.append(
                    DependencyWarning(inst.id, "missing_dependency",
                                      f"Dependency {dep_id} is not scheduled on {inst.date}")
                )
                continue
            if dep_id in node.dependencies:
                continue
            node.dependencies.append(dep_id)
            dep.dependents.append(inst.id)
    return graph, problems


def detect_cycles(graph: Graph) -> List[List[str]]:
    """Every cycle met during a DFS, each as a path ending where it started."""
    visited: Set[str] = set()
    on_stack: Set[str] = set()
    path: List[str] = []
    cycles: List[List[str]] = []

    def visit(node_id: str) -> None:
        if node_id in on_stack:
            start = path.index(node_id)
            cycles.append(path[start:] + [node_id])
            return
        if node_id in visited:
            return
        visited.add(node_id)
        on_stack.add(node_id)
        path.append(node_id)
        for dep_id in graph[node_id].dependencies:
            visit(dep_id)
        path.pop()
        on_stack.discard(node_id)

    for node_id in graph:
        if node_id not in visited:
            visit(node_id)
    return cycles


def topological_order(instances: Sequence[TaskInstance], graph: Graph) -> List[TaskInstance]:
    """Dependencies before dependents, higher priority first among peers.

    Whatever a cycle keeps from being emitted is appended by descending
    priority; the back edges are simply ignored.
    """
    position = {inst.id: n for n, inst in enumerate(instances)}
    waiting = {node_id: len(node.dependencies) for node_id, node in graph.items()}

    ready: List[Tuple[int, int, str]] = []
    for inst in instances:
        if waiting[inst.id] == 0:
            heapq.heappush(ready, (-inst.priority, position[inst.id], inst.id))

    ordered: List[TaskInstance] = []
    emitted: Set[str] = set()
    while ready:
        _, _, node_id = heapq.heappop(ready)
        emitted.add(node_id)
        ordered.append(graph[node_id].instance)
        for dependent_id in graph[node_id].dependents:
            waiting[dependent_id] -= 1
            if waiting[dependent_id] == 0:
                dependent = graph[dependent_id].instance
                heapq.heappush(ready, (-dependent.priority, position[dependent_id], dependent_id))

    leftover = [inst for inst in instances if inst.id not in emitted]
    leftover.sort(key=lambda i: (-i.priority, position[i.id]))
    return ordered + leftover


def latest_dependency_end(node: GraphNode, graph: Graph) -> Optional[int]:
    """Latest end (minutes) among scheduled dependencies, None if none is scheduled."""
    latest: Optional[int] = None
    for dep_id in node.dependencies:
        dep = graph[dep_id].instance
        if not dep.scheduled_time:
            continue
        end = to_minutes(dep.scheduled_time) + dep.duration_minutes
        if latest is None or end > latest:
            latest = end
    return latest


def check_dependency_constraints(node: GraphNode, graph: Graph) -> None:
    """Raise DependencyConflictError when the instance cannot go ahead."""
    inst = node.instance
    for dep_id in node.dependencies:
        dep = graph[dep_id].instance
        if dep.status == InstanceStatus.SKIPPED:
            raise DependencyConflictError(inst.id, f'Dependency "{dep.name or dep.id}" was skipped', blocking=True)
        if inst.is_mandatory and dep.status != InstanceStatus.COMPLETED:
            raise DependencyConflictError(
                inst.id, f'Mandatory task requires completed dependency "{dep.name or dep.id}"'
            )


def apply_dependency_timing(node: GraphNode, graph: Graph) -> bool:
    """Push a flexible instance after its dependencies. True when it moved."""
    inst = node.instance
    if not inst.is_flexible or not inst.is_active:
        return False
    latest = latest_dependency_end(node, graph)
    if latest is None:
        return False
    earliest = latest + DEPENDENCY_BUFFER_MINUTES
    if inst.scheduled_time and to_minutes(inst.scheduled_time) >= earliest:
        return False
    inst.scheduled_time = minutes_to_hhmm(earliest)
    inst.touch("Adjusted for dependency constraints")
    return True


def resolve_dependencies(instances: Sequence[TaskInstance], date: Optional[str] = None) -> DependencyReport:
    """Order instances and nudge flexible dependents after their dependencies.

    Instances are modified in place; the ones that moved are listed in
    `adjusted` so the caller can persist them.
    """
    instances = list(instances)
    report = DependencyReport(date=date)
    if not instances:
        return report

    graph, missing = build_graph(instances)
    report.graph = graph
    report.warnings.extend(missing)

    report.cycles = detect_cycles(graph)
    for cycle in report.cycles:
        text = " -> ".join(cycle)
        warnings.warn(f"Circular dependency: {text}", CycleDetectedWarning, stacklevel=2)
        report.warnings.append(DependencyWarning(cycle[0], "circular_dependency", text))
    if report.cycles:
        logger.warning("Circular dependencies detected for %s: %s", date, report.cycles)

    report.order = topological_order(instances, graph)

    for inst in report.order:
        node = graph[inst.id]
        if not node.dependencies or not inst.is_active:
            report.resolved += 1
            continue
        try:
            check_dependency_constraints(node, graph)
            if apply_dependency_timing(node, graph):
                report.adjusted.append(inst)
            report.resolved += 1
        except DependencyConflictError as e:
            report.conflicts.append(
                DependencyConflict(inst.id, inst.name, "dependency_conflict", e.reason, e.blocking)
            )
        except ValueError as e:
            report.conflicts.append(
                DependencyConflict(inst.id, inst.name, "resolution_error", str(e))
            )

    logger.info(
        "Dependency resolution for %s: %s resolved, %s conflicts",
        date, report.resolved, len(report.conflicts),
    )
    return report
