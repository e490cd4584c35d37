"""Search, filter and sort helpers for lists of templates or instances."""
from __future__ import annotations
from typing import Dict, List, Optional, Sequence, TypeVar, Union

from .models import TaskInstance, TaskTemplate, TimeWindow

Task = TypeVar("Task", TaskTemplate, TaskInstance)

SORT_KEYS = ("priority", "name", "duration", "created")


def _text(task: Union[TaskTemplate, TaskInstance]) -> str:
    return f"{task.name} {task.description or ''}".lower()


def filter_tasks(
    tasks: Sequence[Task],
    search: Optional[str] = None,
    time_window: Optional[TimeWindow] = None,
    mandatory: Optional[bool] = None,
) -> List[Task]:
    out = list(tasks)
    query = (search or "").strip().lower()
    if query:
        out = [t for t in out if query in _text(t)]
    if time_window is not None:
        out = [t for t in out if t.time_window == TimeWindow(time_window)]
    if mandatory is not None:
        out = [t for t in out if t.is_mandatory == mandatory]
    return out


def search_tasks(tasks: Sequence[Task], query: str) -> List[Task]:
    """Every whitespace-separated term must appear in name, description, window or priority."""
    terms = (query or "").lower().split()
    if not terms:
        return list(tasks)
    out: List[Task] = []
    for t in tasks:
        haystack = f"{_text(t)} {t.time_window.value} {t.priority}"
        if all(term in haystack for term in terms):
            out.append(t)
    return out


def sort_tasks(tasks: Sequence[Task], by: str = "priority", descending: bool = True) -> List[Task]:
    if by == "priority":
        key = lambda t: t.priority
    elif by == "name":
        key = lambda t: t.name.lower()
    elif by == "duration":
        key = lambda t: t.duration_minutes
    elif by == "created":
        key = lambda t: t.created_at or ""
    else:
        raise ValueError(f"unknown sort key {by!r}, expected one of {SORT_KEYS}")
    # sorted() is stable, so equal keys keep their input order either way
    return sorted(tasks, key=key, reverse=descending)


def task_stats(tasks: Sequence[Union[TaskTemplate, TaskInstance]]) -> Dict[str, object]:
    if not tasks:
        return {
            "total": 0,
            "total_duration": 0,
            "average_duration": 0,
            "average_priority": 0.0,
            "mandatory_count": 0,
            "by_time_window": {},
        }
    total_duration = sum(t.duration_minutes for t in tasks)
    by_window: Dict[str, int] = {}
    for t in tasks:
        by_window[t.time_window.value] = by_window.get(t.time_window.value, 0) + 1
    return {
        "total": len(tasks),
        "total_duration": total_duration,
        "average_duration": round(total_duration / len(tasks)),
        "average_priority": round(sum(t.priority for t in tasks) / len(tasks), 1),
        "mandatory_count": sum(1 for t in tasks if t.is_mandatory),
        "by_time_window": by_window,
    }
