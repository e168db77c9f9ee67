# src/cafe_portal/ledger/ledger_store.py

from __future__ import annotations

import contextlib
import logging
import math
import sqlite3
import time
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from ..core.errors import NotFoundError, ValidationError
from .ledger_models import Breakdown, LedgerSummary, PeriodTotals, Transaction

logger = logging.getLogger(__name__)

PERIODS = ("today", "week", "month")


def period_start(period: str, now_ts: float | None = None) -> float:
    """
    Start timestamp of a reporting period in local time.

    - today: local midnight
    - week: the last 7 days
    - month: local midnight on the 1st
    """
    now = datetime.fromtimestamp(time.time() if now_ts is None else float(now_ts)).astimezone()
    if period == "today":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elif period == "week":
        start = now - timedelta(days=7)
    elif period == "month":
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    else:
        raise ValidationError(f"unknown period {period!r}", details={"period": period})
    return start.timestamp()


def _finite(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number", details={name: value})
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number", details={name: value}) from None
    if not math.isfinite(out):
        raise ValidationError(f"{name} must be finite", details={name: value})
    return out


class Ledger:
    """
    Append-only SQLite transaction log.

    - rows are only ever INSERTed; triggers abort any UPDATE or DELETE
    - balances are recomputed from the log on every read
    - WAL mode lets balance reads run alongside appends
    """

    def __init__(self, db_path: str | Path = "ledger.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_transactions()
        except sqlite3.Error:
            total = -1
        logger.info("Ledger ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    kind TEXT NOT NULL,
                    task_id TEXT,
                    session_id TEXT,
                    description TEXT NOT NULL DEFAULT '',
                    amount REAL NOT NULL,
                    actor_id TEXT NOT NULL,
                    client_id TEXT,
                    hostname TEXT,
                    usage REAL NOT NULL DEFAULT 0,
                    print_bw REAL NOT NULL DEFAULT 0,
                    print_color REAL NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_actor ON transactions(actor_id)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_created ON transactions(created_at)"
            )
            cur.execute(
                """
                CREATE TRIGGER IF NOT EXISTS trg_transactions_no_update
                BEFORE UPDATE ON transactions
                BEGIN
                    SELECT RAISE(ABORT, 'transactions are append-only');
                END
                """
            )
            cur.execute(
                """
                CREATE TRIGGER IF NOT EXISTS trg_transactions_no_delete
                BEFORE DELETE ON transactions
                BEGIN
                    SELECT RAISE(ABORT, 'transactions are append-only');
                END
                """
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_txn(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=str(row["id"]),
            kind=str(row["kind"]),
            amount=float(row["amount"]),
            actor_id=str(row["actor_id"]),
            created_at=float(row["created_at"]),
            task_id=row["task_id"],
            session_id=row["session_id"],
            description=str(row["description"] or ""),
            client_id=row["client_id"],
            hostname=row["hostname"],
            breakdown=Breakdown(
                usage=float(row["usage"] or 0.0),
                print_bw=float(row["print_bw"] or 0.0),
                print_color=float(row["print_color"] or 0.0),
            ),
        )

    # ---- public API ----

    def count_transactions(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM transactions").fetchone()
            return int(n)
        finally:
            conn.close()

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
    ) -> Transaction:
        """Append one transaction. Existing rows are never touched."""
        if not isinstance(kind, str) or not kind.strip():
            raise ValidationError("transaction kind is required")
        if not isinstance(actor_id, str) or not actor_id.strip():
            raise ValidationError("actor reference is required")
        amount_value = _finite("amount", amount)

        bd = breakdown or Breakdown()
        bd = Breakdown(
            usage=_finite("usage", bd.usage),
            print_bw=_finite("print_bw", bd.print_bw),
            print_color=_finite("print_color", bd.print_color),
        )

        txn = Transaction(
            id=f"txn-{uuid.uuid4().hex}",
            kind=kind.strip(),
            amount=amount_value,
            actor_id=actor_id.strip(),
            created_at=time.time() if now_ts is None else float(now_ts),
            task_id=task_id,
            session_id=session_id,
            description=description or "",
            client_id=client_id,
            hostname=hostname,
            breakdown=bd,
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO transactions(
                    id, kind, task_id, session_id, description, amount,
                    actor_id, client_id, hostname,
                    usage, print_bw, print_color, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    txn.id,
                    txn.kind,
                    txn.task_id,
                    txn.session_id,
                    txn.description,
                    txn.amount,
                    txn.actor_id,
                    txn.client_id,
                    txn.hostname,
                    bd.usage,
                    bd.print_bw,
                    bd.print_color,
                    txn.created_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(
            "Transaction %s kind=%s amount=%s actor=%s task=%s",
            txn.id,
            txn.kind,
            txn.amount,
            txn.actor_id,
            txn.task_id,
        )
        return txn

    def get(self, txn_id: str) -> Transaction:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM transactions WHERE id = ?", (txn_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError(f"transaction {txn_id} not found", details={"txn_id": txn_id})
        return self._row_to_txn(row)

    def list(
        self,
        *,
        actor_id: str | None = None,
        kind: str | None = None,
        task_id: str | None = None,
        client_id: str | None = None,
        since_ts: float | None = None,
        limit: int = 100,
    ) -> list[Transaction]:
        """Newest first."""
        where: list[str] = []
        params: list[Any] = []
        if actor_id:
            where.append("actor_id = ?")
            params.append(actor_id)
        if kind:
            where.append("kind = ?")
            params.append(kind)
        if task_id:
            where.append("task_id = ?")
            params.append(task_id)
        if client_id:
            where.append("client_id = ?")
            params.append(client_id)
        if since_ts is not None:
            where.append("created_at >= ?")
            params.append(float(since_ts))

        sql = "SELECT * FROM transactions"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY seq DESC LIMIT ?"
        params.append(max(1, int(limit)))

        conn = self._get_conn()
        try:
            return [self._row_to_txn(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def balance_for(self, actor_id: str) -> float:
        """Sum of signed amounts for the actor across the whole log."""
        if not actor_id:
            raise ValidationError("actor reference is required")
        conn = self._get_conn()
        try:
            (total,) = conn.execute(
                "SELECT COALESCE(SUM(amount), 0) FROM transactions WHERE actor_id = ?",
                (actor_id,),
            ).fetchone()
            return float(total)
        finally:
            conn.close()

    def summary(self, now_ts: float | None = None) -> LedgerSummary:
        now = time.time() if now_ts is None else float(now_ts)
        totals: dict[str, PeriodTotals] = {}

        conn = self._get_conn()
        try:
            for period in PERIODS:
                rows = conn.execute(
                    """
                    SELECT kind, COUNT(*) AS n, COALESCE(SUM(amount), 0) AS total
                    FROM transactions
                    WHERE created_at >= ?
                    GROUP BY kind
                    """,
                    (period_start(period, now),),
                ).fetchall()
                by_kind = {str(r["kind"]): float(r["total"]) for r in rows}
                totals[period] = PeriodTotals(
                    count=sum(int(r["n"]) for r in rows),
                    total=sum(by_kind.values()),
                    by_kind=by_kind,
                )
        finally:
            conn.close()

        return LedgerSummary(today=totals["today"], week=totals["week"], month=totals["month"])
