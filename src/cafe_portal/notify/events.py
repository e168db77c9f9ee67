# src/cafe_portal/notify/events.py

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..ledger.ledger_models import Transaction
from ..sessions.session_models import Session
from ..tasks.task_models import Task


class EventKind(StrEnum):
    TASK_CREATED = "task-created"
    TASK_ASSIGNED = "task-assigned"
    TASK_UPDATED = "task-updated"
    TRANSACTION_CREATED = "transaction-created"


class Audience(StrEnum):
    """
    Who an event is for.

    - broadcast: every live session
    - admins: admin sessions only
    - actor: sessions of `target_actor`, plus admin sessions
    """

    BROADCAST = "broadcast"
    ADMINS = "admins"
    ACTOR = "actor"


@dataclass(frozen=True, slots=True)
class PortalEvent:
    kind: EventKind
    payload: dict[str, Any]
    audience: Audience = Audience.BROADCAST
    target_actor: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    def reaches(self, session: Session) -> bool:
        if self.audience == Audience.BROADCAST:
            return True
        if session.is_admin:
            return True
        if self.audience == Audience.ACTOR:
            return bool(self.target_actor) and session.username == self.target_actor
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "audience": self.audience.value,
            "target_actor": self.target_actor,
            "created_at": self.created_at,
            "payload": self.payload,
        }


def task_event(
    kind: EventKind,
    task: Task,
    *,
    target_actor: str | None = None,
    audience: Audience | None = None,
) -> PortalEvent:
    """
    Task change event. By default it goes to the (previous) assignee and admins;
    tasks nobody holds only concern admins.
    """
    actor = target_actor or task.assignee_id
    if audience is None:
        audience = Audience.ACTOR if actor else Audience.ADMINS
    return PortalEvent(
        kind=kind,
        payload={"task": task.to_dict()},
        audience=audience,
        target_actor=actor,
    )


def transaction_event(txn: Transaction) -> PortalEvent:
    return PortalEvent(
        kind=EventKind.TRANSACTION_CREATED,
        payload={"transaction": txn.to_dict()},
        audience=Audience.ACTOR,
        target_actor=txn.actor_id,
    )
