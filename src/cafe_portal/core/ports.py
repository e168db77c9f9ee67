# src/cafe_portal/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

Components depend on Protocols instead of concrete implementations.
This keeps storage and notification transports swappable and makes testing easier.
"""

from typing import TYPE_CHECKING, Any, Awaitable, Protocol

if TYPE_CHECKING:
    from ..ledger.ledger_models import Breakdown, Transaction
    from ..notify.events import PortalEvent
    from ..sessions.session_models import CodeType, Session
    from ..tasks.task_models import Task, TaskStatus, WorkerRef


class EventSink(Protocol):
    """
    Subscriber-side port: where the fanout hands an event for one subscriber.

    The transport collaborator (socket push, webhook, console) decides how to
    actually ship it. Raising or hanging only affects this subscriber.
    """

    def deliver(self, event: PortalEvent) -> Awaitable[None]: ...


class EventPublisher(Protocol):
    """Must return immediately and never raise."""

    def publish(self, event: PortalEvent) -> None: ...


class SessionLookup(Protocol):
    def lookup(self, token: str, now_ts: float | None = None) -> Session | None: ...


class OtpDelivery(Protocol):
    """Hands a freshly issued OTP to the user (e-mail in production)."""

    def send_otp(self, *, username: str, otp: str, code_type: CodeType) -> None: ...


class TaskRepo(Protocol):
    def create(
        self,
        *,
        title: str,
        price: float = 0.0,
        description: str = "",
        service_id: str | None = None,
        service_name: str | None = None,
        priority: Any = None,
        due_at: float | None = None,
        created_by: str | None = None,
        now_ts: float | None = None,
    ) -> Task: ...

    def get(self, task_id: str) -> Task: ...

    def list(
        self,
        *,
        status: TaskStatus | str | None = None,
        assignee_id: str | None = None,
        client_id: str | None = None,
        cancelled_assignee_id: str | None = None,
        since_ts: float | None = None,
        limit: int = 100,
    ) -> list[Task]: ...

    def transition(
        self,
        task_id: str,
        actor: WorkerRef,
        target: TaskStatus | str,
        *,
        enforce_assignee: bool = True,
        now_ts: float | None = None,
    ) -> Task: ...

    def revert_completion(self, task: Task, *, now_ts: float | None = None) -> Task: ...


class LedgerRepo(Protocol):
    def record(
        self,
        *,
        kind: str,
        amount: float,
        actor_id: str,
        task_id: str | None = None,
        session_id: str | None = None,
        description: str = "",
        client_id: str | None = None,
        hostname: str | None = None,
        breakdown: Breakdown | None = None,
        now_ts: float | None = None,
    ) -> Transaction: ...

    def balance_for(self, actor_id: str) -> float: ...
