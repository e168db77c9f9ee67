# src/cafe_portal/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    The ladder only moves forward:
      available -> assigned -> in-progress -> completed
    Cancellation is reachable from any non-terminal status.
    """

    AVAILABLE = "available"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, raw: str | TaskStatus) -> TaskStatus:
        """Accept both "in-progress" and "in_progress" spellings."""
        if isinstance(raw, TaskStatus):
            return raw
        value = str(raw or "").strip().lower().replace("_", "-")
        return cls(value)


class TaskPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.NORMAL
        try:
            return cls(raw)
        except ValueError:
            return cls.NORMAL


ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.AVAILABLE: frozenset({TaskStatus.ASSIGNED, TaskStatus.CANCELLED}),
    TaskStatus.ASSIGNED: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.CANCELLED}
    ),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

# Statuses that carry an assignee (and only these).
ASSIGNED_STATUSES = frozenset({TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True, slots=True)
class WorkerRef:
    """
    Who works on a task.

    actor_id is the opaque identity used for matching (session username);
    the rest is descriptive (which computer the worker sits at).
    """

    actor_id: str
    client_id: str | None = None
    hostname: str | None = None
    display_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "client_id": self.client_id,
            "hostname": self.hostname,
            "display_name": self.display_name,
        }


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    title: str
    description: str

    service_id: str | None
    service_name: str | None
    price: float
    priority: TaskPriority

    status: TaskStatus
    assignee: WorkerRef | None

    created_at: float
    updated_at: float
    assigned_at: float | None = None
    started_at: float | None = None
    completed_at: float | None = None
    due_at: float | None = None

    created_by: str | None = None
    # Who held the task when it was cancelled.
    cancelled_assignee_id: str | None = None
    version: int = 0

    @property
    def assignee_id(self) -> str | None:
        return self.assignee.actor_id if self.assignee is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "price": self.price,
            "priority": self.priority.value,
            "status": self.status.value,
            "assignee": self.assignee.to_dict() if self.assignee is not None else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "assigned_at": self.assigned_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "due_at": self.due_at,
            "created_by": self.created_by,
            "cancelled_assignee_id": self.cancelled_assignee_id,
        }
