"""Rough task categorisation used for transition buffers.

Keyword matching on name and description. It is a heuristic, so the
optimizer only talks to the TaskClassifier protocol and any other
implementation can be passed in.
"""
from __future__ import annotations
from typing import Dict, Optional, Protocol, Tuple

from .models import TaskCategory, TaskInstance

KEYWORDS: Dict[TaskCategory, Tuple[str, ...]] = {
    TaskCategory.FOCUS: ("work", "study", "planning", "analysis"),
    TaskCategory.PHYSICAL: ("exercise", "cleaning", "errands", "maintenance"),
    TaskCategory.CREATIVE: ("design", "writing", "art", "music"),
    TaskCategory.SOCIAL: ("meeting", "call", "social", "family"),
    TaskCategory.ADMIN: ("email", "paperwork", "organization", "finance"),
}

# minutes to leave between two tasks of these categories
TRANSITION_BUFFERS: Dict[Tuple[TaskCategory, TaskCategory], int] = {
    (TaskCategory.PHYSICAL, TaskCategory.FOCUS): 20,
    (TaskCategory.PHYSICAL, TaskCategory.CREATIVE): 25,
    (TaskCategory.SOCIAL, TaskCategory.FOCUS): 15,
    (TaskCategory.SOCIAL, TaskCategory.CREATIVE): 15,
    (TaskCategory.ADMIN, TaskCategory.CREATIVE): 10,
}


class TaskClassifier(Protocol):
    def classify(self, instance: TaskInstance) -> TaskCategory:
        ...


class KeywordClassifier:
    def __init__(self, keywords: Optional[Dict[TaskCategory, Tuple[str, ...]]] = None):
        self.keywords = keywords if keywords is not None else KEYWORDS

    def classify(self, instance: TaskInstance) -> TaskCategory:
        text = f"{instance.name} {instance.description or ''}".lower()
        for category, words in self.keywords.items():
            if any(w in text for w in words):
                return category
        return TaskCategory.GENERAL


def transition_buffer(previous: TaskCategory, following: TaskCategory) -> Optional[int]:
    """Buffer for a difficult transition, None when the switch is easy."""
    return TRANSITION_BUFFERS.get((previous, following))
