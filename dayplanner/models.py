from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, List

from .clock import now_iso


class Frequency(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class SchedulingType(str, Enum):
    FIXED = "fixed"
    FLEXIBLE = "flexible"


class TimeWindow(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    ANYTIME = "anytime"


class InstanceStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    POSTPONED = "postponed"


class ConflictType(str, Enum):
    TIME_OVERLAP = "time_overlap"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    RESOURCE_CONFLICT = "resource_conflict"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class TaskCategory(str, Enum):
    FOCUS = "focus"
    PHYSICAL = "physical"
    CREATIVE = "creative"
    SOCIAL = "social"
    ADMIN = "admin"
    GENERAL = "general"


DEFAULT_PRIORITY = 3
DEFAULT_DURATION_MINUTES = 30


@dataclass(frozen=True)
class CustomPattern:
    type: str  # key into recurrence.PATTERNS, e.g. "weekdays"
    day_of_week: Optional[int] = None  # 0=Sun ... 6=Sat, for nth_weekday
    nth_week: Optional[int] = None


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency = Frequency.NONE
    interval: int = 1
    # 0=Sun ... 6=Sat
    days_of_week: List[int] = field(default_factory=list)
    day_of_month: Optional[int] = None  # -1 = last day of month
    month: Optional[int] = None
    start_date: Optional[str] = None  # YYYY-MM-DD
    end_date: Optional[str] = None
    end_after_occurrences: Optional[int] = None
    custom_pattern: Optional[CustomPattern] = None


@dataclass(frozen=True)
class TaskTemplate:
    id: str
    name: str
    description: str = ""
    priority: int = DEFAULT_PRIORITY  # 1..5
    is_mandatory: bool = False
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    # Floor for crunch-time shrinking; nothing reads it yet.
    min_duration_minutes: Optional[int] = None
    scheduling_type: SchedulingType = SchedulingType.FLEXIBLE
    default_time: Optional[str] = None  # HH:MM, required when fixed
    time_window: TimeWindow = TimeWindow.ANYTIME
    depends_on: List[str] = field(default_factory=list)  # template ids
    recurrence_rule: RecurrenceRule = field(default_factory=RecurrenceRule)
    is_active: bool = True
    created_at: Optional[str] = None  # ISO timestamp


def default_min_duration(duration_minutes: int) -> int:
    return max(15, duration_minutes // 2)


def template_with_defaults(**fields) -> TaskTemplate:
    """Build a template the way the task editor fills in blanks."""
    duration = int(fields.get("duration_minutes") or DEFAULT_DURATION_MINUTES)
    fields["duration_minutes"] = duration
    if fields.get("min_duration_minutes") is None:
        fields["min_duration_minutes"] = default_min_duration(duration)
    if fields.get("created_at") is None:
        fields["created_at"] = now_iso()
    depends_on = fields.get("depends_on")
    if isinstance(depends_on, str):
        fields["depends_on"] = [depends_on]
    elif depends_on is None:
        fields["depends_on"] = []
    return TaskTemplate(**fields)


@dataclass
class TaskInstance:
    id: str
    template_id: str
    date: str  # YYYY-MM-DD
    status: InstanceStatus = InstanceStatus.PENDING
    scheduled_time: Optional[str] = None  # HH:MM
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    actual_duration: Optional[int] = None
    completed_at: Optional[str] = None
    notes: Optional[str] = None
    modification_reason: Optional[str] = None
    # same-date instance ids
    depends_on: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    modified_at: Optional[str] = None

    # Snapshot of the template taken at generation time
    name: str = ""
    description: str = ""
    priority: int = DEFAULT_PRIORITY
    is_mandatory: bool = False
    scheduling_type: SchedulingType = SchedulingType.FLEXIBLE
    time_window: TimeWindow = TimeWindow.ANYTIME
    default_time: Optional[str] = None
    min_duration_minutes: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status not in (InstanceStatus.COMPLETED, InstanceStatus.SKIPPED)

    @property
    def is_pending(self) -> bool:
        return self.status == InstanceStatus.PENDING

    @property
    def is_flexible(self) -> bool:
        return self.scheduling_type == SchedulingType.FLEXIBLE

    def touch(self, reason: Optional[str]) -> None:
        self.modification_reason = reason
        self.modified_at = now_iso()

    def copy(self) -> "TaskInstance":
        return replace(self, depends_on=list(self.depends_on))


@dataclass(frozen=True)
class SleepWindow:
    wake_time: str  # HH:MM
    sleep_time: str
    duration_hours: float

    @property
    def awake_minutes(self) -> int:
        return int(round((24 - self.duration_hours) * 60))


@dataclass(frozen=True)
class AppSettings:
    default_wake_time: str
    default_sleep_time: str
    sleep_duration_hours: float
    daily_capacity_minutes: int  # conflict detector's capacity limit
