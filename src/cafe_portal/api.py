# src/cafe_portal/api.py

"""
Token-gated portal operations.

This is the surface the HTTP collaborator calls. Every function:
- validates the session token first (NotFoundError / ExpiredError),
- derives the acting user from the session, never from the request,
- applies role checks (ForbiddenError),
- then delegates to the coordinator / ledger / fanout.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .core.errors import ForbiddenError, ValidationError
from .core.ports import EventSink
from .core.state import AppState
from .ledger.ledger_models import KIND_SESSION, Breakdown, LedgerSummary, Transaction
from .notify.events import transaction_event
from .notify.fanout import Subscription
from .sessions.session_models import Session
from .tasks.task_models import Task, TaskPriority, TaskStatus, WorkerRef

logger = logging.getLogger(__name__)


# ---- helpers ----


def authenticate(state: AppState, token: str) -> Session:
    return state.sessions.validate(token)


def _require_admin(session: Session, action: str) -> None:
    if not session.is_admin:
        raise ForbiddenError(f"{action} requires an admin session", details={"user": session.username})


def _worker_from(
    session: Session, *, client_id: str | None = None, hostname: str | None = None
) -> WorkerRef:
    return WorkerRef(
        actor_id=session.username,
        client_id=client_id,
        hostname=hostname,
        display_name=session.name,
    )


def parse_breakdown(raw: Breakdown | Mapping[str, Any] | None) -> Breakdown | None:
    """Accept a Breakdown or a plain mapping ({"usage": .., "printBW": ..} style keys too)."""
    if raw is None or isinstance(raw, Breakdown):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("breakdown must be an object")

    def pick(*names: str) -> Any:
        for n in names:
            if n in raw and raw[n] is not None:
                return raw[n]
        return 0.0

    try:
        return Breakdown(
            usage=float(pick("usage")),
            print_bw=float(pick("print_bw", "printBW")),
            print_color=float(pick("print_color", "printColor")),
        )
    except (TypeError, ValueError):
        raise ValidationError("breakdown values must be numbers") from None


# ---- tasks ----


def create_task(
    state: AppState,
    token: str,
    *,
    title: str,
    description: str = "",
    service_id: str | None = None,
    price: float | None = None,
    priority: TaskPriority | str = TaskPriority.NORMAL,
    due_at: float | None = None,
    assign_to: str | None = None,
) -> Task:
    session = authenticate(state, token)
    _require_admin(session, "create_task")
    worker = WorkerRef(actor_id=assign_to) if assign_to else None
    return state.coordinator.create_task(
        title=title,
        description=description,
        service_id=service_id,
        price=price,
        priority=priority,
        due_at=due_at,
        assign_to=worker,
        created_by=session.username,
    )


def claim_task(
    state: AppState,
    token: str,
    task_id: str,
    *,
    client_id: str | None = None,
    hostname: str | None = None,
) -> Task:
    session = authenticate(state, token)
    worker = _worker_from(session, client_id=client_id, hostname=hostname)
    return state.coordinator.claim(task_id, worker)


def assign_task(
    state: AppState,
    token: str,
    task_id: str,
    worker_id: str,
    *,
    client_id: str | None = None,
    hostname: str | None = None,
) -> Task:
    session = authenticate(state, token)
    _require_admin(session, "assign_task")
    if not worker_id or not worker_id.strip():
        raise ValidationError("worker is required")
    worker = WorkerRef(actor_id=worker_id.strip(), client_id=client_id, hostname=hostname)
    return state.coordinator.assign(task_id, worker, by=session.username)


def advance_task(
    state: AppState,
    token: str,
    task_id: str,
    target: TaskStatus | str,
    *,
    breakdown: Breakdown | Mapping[str, Any] | None = None,
) -> Task:
    session = authenticate(state, token)
    return state.coordinator.advance(
        task_id,
        session.username,
        target,
        privileged=session.is_admin,
        breakdown=parse_breakdown(breakdown),
    )


def cancel_task(state: AppState, token: str, task_id: str) -> Task:
    session = authenticate(state, token)
    return state.coordinator.cancel(task_id, session.username, privileged=session.is_admin)


def get_task(state: AppState, token: str, task_id: str) -> Task:
    session = authenticate(state, token)
    task = state.coordinator.get_task(task_id)
    if not session.is_admin and not _visible_to(task, session.username):
        raise ForbiddenError("task belongs to another worker", details={"task_id": task_id})
    return task


def _visible_to(task: Task, username: str) -> bool:
    if task.status == TaskStatus.AVAILABLE:
        return True
    return username in (task.assignee_id, task.cancelled_assignee_id)


def list_tasks(
    state: AppState,
    token: str,
    *,
    status: TaskStatus | str | None = None,
    assignee_id: str | None = None,
    client_id: str | None = None,
    limit: int = 100,
) -> list[Task]:
    """
    Admins see everything (optionally filtered). Portal users see available
    tasks plus the ones assigned to them, including those cancelled while
    they held them.
    """
    session = authenticate(state, token)
    coord = state.coordinator
    if session.is_admin:
        return coord.list_tasks(
            status=status, assignee_id=assignee_id, client_id=client_id, limit=limit
        )

    if assignee_id and assignee_id != session.username:
        raise ForbiddenError("cannot list another worker's tasks")

    try:
        wanted = TaskStatus.parse(status) if status else None
    except ValueError:
        raise ValidationError("unknown task status", details={"status": status}) from None
    out: dict[str, Task] = {}
    if wanted in (None, TaskStatus.AVAILABLE) and not assignee_id and not client_id:
        for t in coord.list_tasks(status=TaskStatus.AVAILABLE, limit=limit):
            out[t.id] = t
    if wanted != TaskStatus.AVAILABLE:
        for t in coord.list_tasks(
            status=wanted, assignee_id=session.username, client_id=client_id, limit=limit
        ):
            out[t.id] = t
    if wanted in (None, TaskStatus.CANCELLED) and not client_id:
        for t in coord.list_tasks(
            status=TaskStatus.CANCELLED, cancelled_assignee_id=session.username, limit=limit
        ):
            out[t.id] = t

    tasks = sorted(out.values(), key=lambda t: t.created_at, reverse=True)
    return tasks[: max(1, int(limit))]


# ---- ledger ----


def balance(state: AppState, token: str, actor_id: str | None = None) -> float:
    session = authenticate(state, token)
    who = actor_id or session.username
    if who != session.username and not session.is_admin:
        raise ForbiddenError("portal users can only read their own balance")
    return state.ledger.balance_for(who)


def list_transactions(
    state: AppState,
    token: str,
    *,
    actor_id: str | None = None,
    kind: str | None = None,
    task_id: str | None = None,
    client_id: str | None = None,
    since_ts: float | None = None,
    limit: int = 100,
) -> list[Transaction]:
    session = authenticate(state, token)
    if not session.is_admin:
        if actor_id and actor_id != session.username:
            raise ForbiddenError("portal users can only list their own transactions")
        actor_id = session.username
    return state.ledger.list(
        actor_id=actor_id,
        kind=kind,
        task_id=task_id,
        client_id=client_id,
        since_ts=since_ts,
        limit=limit,
    )


def transaction_summary(state: AppState, token: str) -> LedgerSummary:
    session = authenticate(state, token)
    _require_admin(session, "transaction_summary")
    return state.ledger.summary()


def record_session_charge(
    state: AppState,
    token: str,
    *,
    actor_id: str,
    amount: float,
    session_id: str | None = None,
    description: str = "",
    client_id: str | None = None,
    hostname: str | None = None,
    breakdown: Breakdown | Mapping[str, Any] | None = None,
) -> Transaction:
    """Bill a finished computer session (usage + printing) to `actor_id`."""
    session = authenticate(state, token)
    _require_admin(session, "record_session_charge")
    txn = state.ledger.record(
        kind=KIND_SESSION,
        amount=amount,
        actor_id=actor_id,
        session_id=session_id,
        description=description or "Session charge",
        client_id=client_id,
        hostname=hostname,
        breakdown=parse_breakdown(breakdown),
    )
    state.fanout.publish(transaction_event(txn))
    return txn


# ---- notifications ----


def subscribe(state: AppState, token: str, sink: EventSink) -> Subscription:
    authenticate(state, token)
    return state.fanout.subscribe(token, sink)


def unsubscribe(state: AppState, token: str, handle: Subscription | str) -> bool:
    authenticate(state, token)
    return state.fanout.unsubscribe(handle)
