# src/cafe_portal/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import math
import sqlite3
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..core.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from .task_models import Task, TaskPriority, TaskStatus, WorkerRef, can_transition

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store.

    Owns the task rows and their state machine. Every status change goes through
    `transition`, which is an optimistic compare-and-swap on the row version:

      read row -> validate move -> UPDATE ... WHERE id = ? AND version = ?

    Two racing writers on the same task cannot both match the version, so at most
    one wins; unrelated tasks never wait on each other beyond SQLite's short
    write lock.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    service_id TEXT,
                    service_name TEXT,
                    price REAL NOT NULL DEFAULT 0,
                    priority TEXT NOT NULL DEFAULT 'normal',
                    status TEXT NOT NULL DEFAULT 'available',
                    assignee_id TEXT,
                    assignee_client_id TEXT,
                    assignee_hostname TEXT,
                    assignee_name TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    assigned_at REAL,
                    started_at REAL,
                    completed_at REAL,
                    due_at REAL,
                    created_by TEXT,
                    cancelled_assignee_id TEXT,
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("assignee_client_id", "TEXT")
            add_col("assignee_hostname", "TEXT")
            add_col("assignee_name", "TEXT")
            add_col("due_at", "REAL")
            add_col("created_by", "TEXT")
            add_col("cancelled_assignee_id", "TEXT")
            add_col("version", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(assignee_id)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_cancelled_assignee ON tasks(cancelled_assignee_id)"
            )

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        assignee = None
        if row["assignee_id"]:
            assignee = WorkerRef(
                actor_id=str(row["assignee_id"]),
                client_id=row["assignee_client_id"],
                hostname=row["assignee_hostname"],
                display_name=row["assignee_name"],
            )

        def opt_ts(name: str) -> float | None:
            return float(row[name]) if row[name] is not None else None

        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            service_id=row["service_id"],
            service_name=row["service_name"],
            price=float(row["price"] or 0.0),
            priority=TaskPriority.from_db(row["priority"]),
            status=TaskStatus(row["status"]),
            assignee=assignee,
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            assigned_at=opt_ts("assigned_at"),
            started_at=opt_ts("started_at"),
            completed_at=opt_ts("completed_at"),
            due_at=opt_ts("due_at"),
            created_by=row["created_by"],
            cancelled_assignee_id=row["cancelled_assignee_id"],
            version=int(row["version"] or 0),
        )

    @staticmethod
    def _validate_price(price: Any) -> float:
        if isinstance(price, bool):
            raise ValidationError("price must be a number", details={"price": price})
        try:
            value = float(price)
        except (TypeError, ValueError):
            raise ValidationError("price must be a number", details={"price": price}) from None
        if not math.isfinite(value) or value < 0:
            raise ValidationError("price must be a finite number >= 0", details={"price": price})
        return value

    @staticmethod
    def _validate_due_at(due_at: Any) -> float | None:
        if due_at is None:
            return None
        if isinstance(due_at, bool):
            raise ValidationError("due_at must be a timestamp", details={"due_at": due_at})
        try:
            value = float(due_at)
        except (TypeError, ValueError):
            raise ValidationError("due_at must be a timestamp", details={"due_at": due_at}) from None
        if not math.isfinite(value):
            raise ValidationError("due_at must be a finite timestamp", details={"due_at": due_at})
        return value

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def create(
        self,
        *,
        title: str,
        price: float = 0.0,
        description: str = "",
        service_id: str | None = None,
        service_name: str | None = None,
        priority: TaskPriority | str = TaskPriority.NORMAL,
        due_at: float | None = None,
        created_by: str | None = None,
        now_ts: float | None = None,
    ) -> Task:
        """Insert a new task in status=available with no assignee."""
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title is required")
        price_value = self._validate_price(price)
        try:
            prio = TaskPriority(str(priority or TaskPriority.NORMAL).strip().lower())
        except ValueError:
            raise ValidationError(
                "priority must be one of low|normal|high|urgent", details={"priority": priority}
            ) from None
        due_value = self._validate_due_at(due_at)

        now = time.time() if now_ts is None else float(now_ts)
        task = Task(
            id=f"task-{uuid.uuid4().hex[:16]}",
            title=title.strip(),
            description=(description or "").strip(),
            service_id=service_id,
            service_name=service_name,
            price=price_value,
            priority=prio,
            status=TaskStatus.AVAILABLE,
            assignee=None,
            created_at=now,
            updated_at=now,
            due_at=due_value,
            created_by=created_by,
            version=0,
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, title, description, service_id, service_name,
                    price, priority, status,
                    created_at, updated_at, due_at, created_by, version
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.title,
                    task.description,
                    task.service_id,
                    task.service_name,
                    task.price,
                    task.priority.value,
                    task.status.value,
                    task.created_at,
                    task.updated_at,
                    task.due_at,
                    task.created_by,
                    task.version,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Task created id=%s title=%r price=%s", task.id, task.title, task.price)
        return task

    def find(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def get(self, task_id: str) -> Task:
        task = self.find(task_id)
        if task is None:
            raise NotFoundError(f"task {task_id} not found", details={"task_id": task_id})
        return task

    def list(
        self,
        *,
        status: TaskStatus | str | None = None,
        assignee_id: str | None = None,
        client_id: str | None = None,
        cancelled_assignee_id: str | None = None,
        since_ts: float | None = None,
        limit: int = 100,
    ) -> list[Task]:
        """
        Newest first. Filters are ANDed.

        client_id matches the computer the assignee claimed from;
        cancelled_assignee_id matches whoever held a task when it was cancelled.
        """
        where: list[str] = []
        params: list[Any] = []

        if status is not None:
            try:
                status_value = TaskStatus.parse(status).value
            except ValueError:
                raise ValidationError("unknown task status", details={"status": status}) from None
            where.append("status = ?")
            params.append(status_value)

        if assignee_id:
            where.append("assignee_id = ?")
            params.append(assignee_id)

        if client_id:
            where.append("assignee_client_id = ?")
            params.append(client_id)

        if cancelled_assignee_id:
            where.append("cancelled_assignee_id = ?")
            params.append(cancelled_assignee_id)

        if since_ts is not None:
            where.append("created_at >= ?")
            params.append(float(since_ts))

        sql = "SELECT * FROM tasks"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(max(1, int(limit)))

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def transition(
        self,
        task_id: str,
        actor: WorkerRef,
        target: TaskStatus | str,
        *,
        enforce_assignee: bool = True,
        now_ts: float | None = None,
    ) -> Task:
        """
        Atomically move a task to `target`.

        - target=assigned: `actor` becomes the assignee (claim).
        - target=in-progress/completed/cancelled: with enforce_assignee, `actor`
          must be the current assignee. Privileged callers pass
          enforce_assignee=False to force a cancellation.

        Raises NotFoundError, ConflictError, InvalidTransitionError. A caller that
        loses the race gets ConflictError and nothing is written.
        """
        if not isinstance(actor, WorkerRef) or not actor.actor_id:
            raise ValidationError("actor reference is required")
        try:
            target_status = TaskStatus.parse(target)
        except ValueError:
            raise ValidationError("unknown task status", details={"status": target}) from None

        current = self.get(task_id)
        self._check_transition(current, actor, target_status, enforce_assignee=enforce_assignee)

        now = time.time() if now_ts is None else float(now_ts)
        updated = self._apply(current, actor, target_status, now)
        assignee = updated.assignee

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE tasks
                SET status = ?,
                    assignee_id = ?,
                    assignee_client_id = ?,
                    assignee_hostname = ?,
                    assignee_name = ?,
                    assigned_at = ?,
                    started_at = ?,
                    completed_at = ?,
                    updated_at = ?,
                    cancelled_assignee_id = ?,
                    version = ?
                WHERE id = ?
                  AND version = ?
                """,
                (
                    updated.status.value,
                    assignee.actor_id if assignee else None,
                    assignee.client_id if assignee else None,
                    assignee.hostname if assignee else None,
                    assignee.display_name if assignee else None,
                    updated.assigned_at,
                    updated.started_at,
                    updated.completed_at,
                    updated.updated_at,
                    updated.cancelled_assignee_id,
                    updated.version,
                    current.id,
                    current.version,
                ),
            )
            conn.commit()
            won = cur.rowcount == 1
        finally:
            conn.close()

        if not won:
            logger.info(
                "Task %s changed concurrently; %s -> %s by %s rejected",
                current.id,
                current.status.value,
                target_status.value,
                actor.actor_id,
            )
            raise ConflictError(
                f"task {current.id} was modified concurrently",
                details={"task_id": current.id},
            )

        logger.info(
            "Task %s %s -> %s (actor=%s)",
            current.id,
            current.status.value,
            updated.status.value,
            actor.actor_id,
        )
        return updated

    def revert_completion(self, task: Task, *, now_ts: float | None = None) -> Task:
        """
        Undo a completion whose ledger entry could not be written.

        Compare-and-swap on the completed row's version: the task goes back to
        in-progress (if it was started) or assigned, keeping its assignee.
        """
        if task.status != TaskStatus.COMPLETED:
            raise InvalidTransitionError(
                f"task {task.id} is not completed", details={"task_id": task.id}
            )
        prior = TaskStatus.IN_PROGRESS if task.started_at is not None else TaskStatus.ASSIGNED
        now = time.time() if now_ts is None else float(now_ts)
        restored = replace(
            task, status=prior, completed_at=None, updated_at=now, version=task.version + 1
        )

        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET status = ?, completed_at = NULL, updated_at = ?, version = ?
                WHERE id = ? AND version = ? AND status = ?
                """,
                (
                    restored.status.value,
                    restored.updated_at,
                    restored.version,
                    task.id,
                    task.version,
                    TaskStatus.COMPLETED.value,
                ),
            )
            conn.commit()
            reverted = cur.rowcount == 1
        finally:
            conn.close()

        if not reverted:
            raise ConflictError(
                f"task {task.id} was modified concurrently", details={"task_id": task.id}
            )
        logger.warning("Task %s completion reverted to %s", task.id, restored.status.value)
        return restored

    # ---- transition rules ----

    @staticmethod
    def _check_transition(
        current: Task,
        actor: WorkerRef,
        target: TaskStatus,
        *,
        enforce_assignee: bool,
    ) -> None:
        details = {"task_id": current.id, "status": current.status.value, "target": target.value}

        if target == TaskStatus.ASSIGNED and current.assignee is not None:
            raise ConflictError(f"task {current.id} is already claimed", details=details)

        if not can_transition(current.status, target):
            raise InvalidTransitionError(
                f"cannot move task {current.id} from {current.status.value} to {target.value}",
                details=details,
            )

        if target == TaskStatus.ASSIGNED or not enforce_assignee:
            return

        if current.assignee is None:
            raise ConflictError(f"task {current.id} has no assignee", details=details)
        if current.assignee.actor_id != actor.actor_id:
            raise ConflictError(
                f"{actor.actor_id} is not the assignee of task {current.id}",
                details=details,
            )

    @staticmethod
    def _apply(current: Task, actor: WorkerRef, target: TaskStatus, now: float) -> Task:
        if target == TaskStatus.ASSIGNED:
            return replace(
                current,
                status=target,
                assignee=actor,
                assigned_at=now,
                updated_at=now,
                version=current.version + 1,
            )
        if target == TaskStatus.IN_PROGRESS:
            return replace(
                current,
                status=target,
                started_at=current.started_at or now,
                updated_at=now,
                version=current.version + 1,
            )
        if target == TaskStatus.COMPLETED:
            return replace(
                current,
                status=target,
                completed_at=now,
                updated_at=now,
                version=current.version + 1,
            )
        # Cancelled: the assignee goes away with the assignment but is remembered.
        return replace(
            current,
            status=target,
            assignee=None,
            cancelled_assignee_id=current.assignee_id,
            updated_at=now,
            version=current.version + 1,
        )
