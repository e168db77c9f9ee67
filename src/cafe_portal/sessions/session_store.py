# src/cafe_portal/sessions/session_store.py

from __future__ import annotations

import contextlib
import logging
import math
import secrets
import sqlite3
import time
from pathlib import Path

from ..core.errors import ExpiredError, NotFoundError, ValidationError
from .session_models import Session, SessionType

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 24 * 60 * 60


def generate_token() -> str:
    """Opaque 256-bit session token (hex)."""
    return secrets.token_hex(32)


class SessionDirectory:
    """
    SQLite-backed directory of authenticated sessions.

    Expiry is checked on every read; `sweep_expired` only reclaims space and is
    never needed for correctness.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(
        self,
        db_path: str | Path = "sessions.sqlite3",
        *,
        default_ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._default_ttl = float(default_ttl_seconds)
        self._ensure_schema()
        try:
            total = self.count_sessions()
        except sqlite3.Error:
            total = -1
        logger.info("SessionDirectory ready db=%s total=%s", self._db_path, total)

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
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS auth_sessions (
                    token TEXT PRIMARY KEY,
                    username TEXT NOT NULL,
                    session_type TEXT NOT NULL,
                    role TEXT,
                    email TEXT,
                    name TEXT,
                    created_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_auth_sessions_expires ON auth_sessions(expires_at)"
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            token=str(row["token"]),
            username=str(row["username"]),
            session_type=SessionType(row["session_type"]),
            expires_at=float(row["expires_at"]),
            created_at=float(row["created_at"]),
            role=row["role"],
            email=row["email"],
            name=row["name"],
        )

    def _fetch(self, token: str) -> Session | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM auth_sessions WHERE token = ?", (token,)).fetchone()
            return self._row_to_session(row) if row else None
        finally:
            conn.close()

    def _delete_if_expired(self, token: str, now_ts: float) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "DELETE FROM auth_sessions WHERE token = ? AND expires_at <= ?",
                (token, float(now_ts)),
            )
            conn.commit()
        finally:
            conn.close()

    # ---- public API ----

    def count_sessions(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM auth_sessions").fetchone()
            return int(n)
        finally:
            conn.close()

    def store(self, session: Session) -> Session:
        """Persist a session produced by an external authenticator."""
        if not session.token:
            raise ValidationError("session token is required")
        if not session.username or not session.username.strip():
            raise ValidationError("username is required")
        if not math.isfinite(float(session.expires_at)):
            raise ValidationError("expires_at must be a finite timestamp")

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO auth_sessions(
                    token, username, session_type, role, email, name, created_at, expires_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.token,
                    session.username,
                    SessionType(session.session_type).value,
                    session.role,
                    session.email,
                    session.name,
                    float(session.created_at),
                    float(session.expires_at),
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(
            "Session stored user=%s type=%s expires_at=%s",
            session.username,
            session.session_type,
            session.expires_at,
        )
        return session

    def issue(
        self,
        username: str,
        session_type: SessionType | str = SessionType.PORTAL,
        *,
        role: str | None = None,
        email: str | None = None,
        name: str | None = None,
        ttl_seconds: float | None = None,
        now_ts: float | None = None,
    ) -> Session:
        try:
            stype = SessionType(session_type)
        except ValueError:
            raise ValidationError(
                "session type must be admin|portal", details={"session_type": session_type}
            ) from None

        now = time.time() if now_ts is None else float(now_ts)
        ttl = self._default_ttl if ttl_seconds is None else float(ttl_seconds)
        session = Session(
            token=generate_token(),
            username=(username or "").strip(),
            session_type=stype,
            expires_at=now + ttl,
            created_at=now,
            role=role,
            email=email,
            name=name,
        )
        return self.store(session)

    def validate(self, token: str, now_ts: float | None = None) -> Session:
        """
        Resolve a token to its live session.

        Raises NotFoundError for unknown tokens and ExpiredError once expires_at
        has passed, whether or not the sweep has run.
        """
        if not token:
            raise NotFoundError("session token is required")

        session = self._fetch(token)
        if session is None:
            raise NotFoundError("unknown session token")

        now = time.time() if now_ts is None else float(now_ts)
        if session.is_expired(now):
            self._delete_if_expired(token, now)
            logger.debug("Session expired user=%s", session.username)
            raise ExpiredError("session expired", details={"expires_at": session.expires_at})
        return session

    def lookup(self, token: str, now_ts: float | None = None) -> Session | None:
        """Non-raising validate: None for unknown or expired tokens."""
        if not token:
            return None
        session = self._fetch(token)
        if session is None:
            return None
        now = time.time() if now_ts is None else float(now_ts)
        return None if session.is_expired(now) else session

    def list_active(self, now_ts: float | None = None) -> list[Session]:
        now = time.time() if now_ts is None else float(now_ts)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM auth_sessions WHERE expires_at > ? ORDER BY created_at ASC",
                (now,),
            ).fetchall()
            return [self._row_to_session(r) for r in rows]
        finally:
            conn.close()

    def sweep_expired(self, now_ts: float | None = None) -> int:
        now = time.time() if now_ts is None else float(now_ts)
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM auth_sessions WHERE expires_at <= ?", (now,))
            conn.commit()
            removed = int(cur.rowcount or 0)
        finally:
            conn.close()
        if removed:
            logger.info("Swept %d expired sessions", removed)
        return removed
