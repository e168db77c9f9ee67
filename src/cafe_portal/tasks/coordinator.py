# src/cafe_portal/tasks/coordinator.py

"""
Assignment coordinator.

The only path that mutates tasks. It:
- creates tasks (pricing them from the service catalog when a service is named),
- claims/assigns them through the store's atomic transition,
- advances them, recording a ledger transaction on completion,
- publishes a change event after every successful mutation.

The store's transition is the sole arbiter of races: the first writer wins and
everybody else gets ConflictError right away (no queued retries).
"""

from __future__ import annotations

import logging
import math

from ..core.errors import InvalidTransitionError, ValidationError
from ..core.ports import EventPublisher, LedgerRepo, TaskRepo
from ..ledger.ledger_models import KIND_TASK_COMPLETION, Breakdown
from ..notify.events import Audience, EventKind, task_event, transaction_event
from .catalog import ServiceCatalog
from .task_models import Task, TaskPriority, TaskStatus, WorkerRef

logger = logging.getLogger(__name__)


class AssignmentCoordinator:
    def __init__(
        self,
        tasks: TaskRepo,
        ledger: LedgerRepo,
        events: EventPublisher,
        *,
        catalog: ServiceCatalog | None = None,
    ) -> None:
        self._tasks = tasks
        self._ledger = ledger
        self._events = events
        self._catalog = catalog or ServiceCatalog()

    # ---- reads ----

    def get_task(self, task_id: str) -> Task:
        return self._tasks.get(task_id)

    def list_tasks(
        self,
        *,
        status: TaskStatus | str | None = None,
        assignee_id: str | None = None,
        client_id: str | None = None,
        cancelled_assignee_id: str | None = None,
        since_ts: float | None = None,
        limit: int = 100,
    ) -> list[Task]:
        return self._tasks.list(
            status=status,
            assignee_id=assignee_id,
            client_id=client_id,
            cancelled_assignee_id=cancelled_assignee_id,
            since_ts=since_ts,
            limit=limit,
        )

    # ---- mutations ----

    def create_task(
        self,
        *,
        title: str,
        description: str = "",
        service_id: str | None = None,
        price: float | None = None,
        priority: TaskPriority | str = TaskPriority.NORMAL,
        due_at: float | None = None,
        assign_to: WorkerRef | None = None,
        created_by: str | None = None,
        now_ts: float | None = None,
    ) -> Task:
        """
        Create an available task. A known service overrides the price.

        With assign_to the task is claimed for that worker straight away.
        """
        if assign_to is not None and not assign_to.actor_id:
            raise ValidationError("assign_to needs an actor reference")

        service = self._catalog.get(service_id)
        task = self._tasks.create(
            title=title,
            description=description,
            service_id=service_id,
            service_name=service.name if service else None,
            price=service.price if service else (0.0 if price is None else price),
            priority=priority,
            due_at=due_at,
            created_by=created_by,
            now_ts=now_ts,
        )
        logger.info("Task created id=%s title=%r price=%s", task.id, task.title, task.price)
        self._events.publish(task_event(EventKind.TASK_CREATED, task, audience=Audience.BROADCAST))

        if assign_to is not None:
            task = self.assign(task.id, assign_to, by=created_by or "system", now_ts=now_ts)
        return task

    def claim(self, task_id: str, worker: WorkerRef, *, now_ts: float | None = None) -> Task:
        """
        Take an available task. Raises ConflictError if someone else holds it;
        nothing is changed or published in that case.
        """
        task = self._tasks.transition(task_id, worker, TaskStatus.ASSIGNED, now_ts=now_ts)
        logger.info("Task %s claimed by %s", task.id, worker.actor_id)
        self._events.publish(task_event(EventKind.TASK_ASSIGNED, task))
        return task

    def assign(
        self,
        task_id: str,
        worker: WorkerRef,
        *,
        by: str,
        now_ts: float | None = None,
    ) -> Task:
        """Privileged claim on behalf of `worker`. Same atomic path as claim."""
        task = self._tasks.transition(task_id, worker, TaskStatus.ASSIGNED, now_ts=now_ts)
        logger.info("Task %s assigned to %s by %s", task.id, worker.actor_id, by)
        self._events.publish(task_event(EventKind.TASK_ASSIGNED, task))
        return task

    def advance(
        self,
        task_id: str,
        actor_id: str,
        target: TaskStatus | str,
        *,
        privileged: bool = False,
        breakdown: Breakdown | None = None,
        now_ts: float | None = None,
    ) -> Task:
        """
        Move an assigned task along: in-progress, completed or cancelled.

        The actor must be the assignee (checked atomically with the write);
        privileged actors may force a cancellation. Completion appends a
        task_completion transaction for the task price to the ledger; if that
        append fails the completion is reverted before the error propagates.
        """
        if not actor_id:
            raise ValidationError("actor reference is required")
        try:
            target_status = TaskStatus.parse(target)
        except ValueError:
            raise ValidationError("unknown task status", details={"status": target}) from None
        if target_status in (TaskStatus.AVAILABLE, TaskStatus.ASSIGNED):
            raise InvalidTransitionError(
                f"cannot advance a task to {target_status.value}; use claim or assign",
                details={"task_id": task_id, "target": target_status.value},
            )
        if breakdown is not None:
            # Must fail before the transition, never after it.
            for name, value in breakdown.to_dict().items():
                if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                    raise ValidationError(f"breakdown {name} must be a finite number")

        previous_assignee: str | None = None
        if target_status == TaskStatus.CANCELLED:
            # Only used to route the notification; the transition re-checks state.
            previous_assignee = self._tasks.get(task_id).assignee_id

        enforce = not (privileged and target_status == TaskStatus.CANCELLED)
        task = self._tasks.transition(
            task_id,
            WorkerRef(actor_id=actor_id),
            target_status,
            enforce_assignee=enforce,
            now_ts=now_ts,
        )

        if task.status == TaskStatus.COMPLETED:
            self._record_completion(task, breakdown, now_ts=now_ts)

        self._events.publish(
            task_event(EventKind.TASK_UPDATED, task, target_actor=previous_assignee)
        )
        return task

    def cancel(
        self,
        task_id: str,
        actor_id: str,
        *,
        privileged: bool = False,
        now_ts: float | None = None,
    ) -> Task:
        return self.advance(
            task_id, actor_id, TaskStatus.CANCELLED, privileged=privileged, now_ts=now_ts
        )

    def _record_completion(
        self, task: Task, breakdown: Breakdown | None, *, now_ts: float | None
    ) -> None:
        assignee = task.assignee
        if assignee is None:
            # A completed task always has an assignee; refuse to book against nobody.
            raise ValidationError(f"completed task {task.id} has no assignee")
        try:
            txn = self._ledger.record(
                kind=KIND_TASK_COMPLETION,
                amount=task.price,
                actor_id=assignee.actor_id,
                task_id=task.id,
                description=task.title,
                client_id=assignee.client_id,
                hostname=assignee.hostname,
                breakdown=breakdown,
                now_ts=now_ts,
            )
        except Exception:
            logger.exception("Ledger record failed for completed task %s", task.id)
            self._tasks.revert_completion(task)
            raise
        self._events.publish(transaction_event(txn))
