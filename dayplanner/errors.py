from __future__ import annotations
from typing import List, Optional


class SchedulerError(Exception):
    """Base class for scheduling errors."""


class ValidationError(SchedulerError, ValueError):
    def __init__(self, messages: List[str], subject: Optional[str] = None):
        self.messages = list(messages)
        self.subject = subject
        prefix = f"{subject}: " if subject else ""
        super().__init__(prefix + "; ".join(self.messages))


class InfeasibleScheduleError(SchedulerError):
    """Mandatory load does not fit in the waking hours of the day."""

    def __init__(
        self,
        message: str,
        suggestions: List[str],
        required_minutes: int,
        available_minutes: int,
    ):
        super().__init__(message)
        self.message = message
        self.suggestions = list(suggestions)
        self.required_minutes = required_minutes
        self.available_minutes = available_minutes


class DependencyConflictError(SchedulerError):
    def __init__(self, instance_id: str, reason: str, blocking: bool = False):
        super().__init__(f"{instance_id}: {reason}")
        self.instance_id = instance_id
        self.reason = reason
        self.blocking = blocking  # the task cannot run today at all


class CapacityConflictError(SchedulerError):
    def __init__(self, excess_minutes: int):
        super().__init__(f"{excess_minutes} min over daily capacity cannot be postponed")
        self.excess_minutes = excess_minutes


class CycleDetectedWarning(UserWarning):
    """A dependency cycle was found; the affected tasks fall back to priority order."""
