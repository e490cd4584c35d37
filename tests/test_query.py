import pytest

from dayplanner.models import TaskTemplate, TimeWindow
from dayplanner.query import filter_tasks, search_tasks, sort_tasks, task_stats


def _tasks():
    return [
        TaskTemplate(id="1", name="Morning run", priority=4, duration_minutes=45,
                     time_window=TimeWindow.MORNING, created_at="2025-01-02T08:00:00"),
        TaskTemplate(id="2", name="Email", description="Inbox zero", priority=2, duration_minutes=20,
                     is_mandatory=True, created_at="2025-01-01T08:00:00"),
        TaskTemplate(id="3", name="Call mum", priority=4, duration_minutes=30,
                     time_window=TimeWindow.EVENING, created_at="2025-01-03T08:00:00"),
    ]


def _ids(tasks):
    return [t.id for t in tasks]


def test_filter_by_search_window_and_mandatory():
    tasks = _tasks()
    assert _ids(filter_tasks(tasks, "INBOX")) == ["2"]
    assert _ids(filter_tasks(tasks, "  ")) == ["1", "2", "3"]
    assert _ids(filter_tasks(tasks, None, time_window=TimeWindow.EVENING)) == ["3"]
    assert _ids(filter_tasks(tasks, None, time_window="morning")) == ["1"]
    assert _ids(filter_tasks(tasks, None, mandatory=False)) == ["1", "3"]


def test_search_needs_every_term():
    tasks = _tasks()
    assert _ids(search_tasks(tasks, "call evening")) == ["3"]
    assert _ids(search_tasks(tasks, "run 4")) == ["1"]
    assert _ids(search_tasks(tasks, "")) == ["1", "2", "3"]


def test_sort_orders():
    tasks = _tasks()
    assert _ids(sort_tasks(tasks)) == ["1", "3", "2"]
    assert _ids(sort_tasks(tasks, "priority", descending=False)) == ["2", "1", "3"]
    assert _ids(sort_tasks(tasks, "name", descending=False)) == ["3", "2", "1"]
    assert _ids(sort_tasks(tasks, "duration")) == ["1", "3", "2"]
    assert _ids(sort_tasks(tasks, "created", descending=False)) == ["2", "1", "3"]
    with pytest.raises(ValueError):
        sort_tasks(tasks, "colour")


def test_stats():
    stats = task_stats(_tasks())
    assert stats["total"] == 3
    assert stats["total_duration"] == 95
    assert stats["average_duration"] == 32
    assert stats["average_priority"] == 3.3
    assert stats["mandatory_count"] == 1
    assert stats["by_time_window"] == {"morning": 1, "anytime": 1, "evening": 1}
    assert task_stats([])["total"] == 0
