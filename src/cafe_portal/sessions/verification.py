# src/cafe_portal/sessions/verification.py

"""
Short-lived verification codes (login OTPs and temporary tokens).

At most one code exists per (code_type, key): issuing again replaces it.
Wrong guesses are counted; after max_attempts the code is burned.
Codes expire exactly like sessions: checked on every read, swept in background.
"""

from __future__ import annotations

import contextlib
import logging
import secrets
import sqlite3
import time
from pathlib import Path

from ..core.errors import ConflictError, ExpiredError, NotFoundError, ValidationError
from .session_models import CodeType, VerificationCode

logger = logging.getLogger(__name__)

DEFAULT_OTP_TTL_SECONDS = 5 * 60
DEFAULT_OTP_MAX_ATTEMPTS = 5


def generate_otp() -> str:
    """Six-digit numeric one-time password."""
    return str(100000 + secrets.randbelow(900000))


class VerificationCodeStore:
    def __init__(
        self,
        db_path: str | Path = "sessions.sqlite3",
        *,
        max_attempts: int = DEFAULT_OTP_MAX_ATTEMPTS,
    ) -> None:
        self._db_path = Path(db_path)
        self._max_attempts = max(1, int(max_attempts))
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("VerificationCodeStore ready db=%s", self._db_path)

    def close(self) -> None:
        return

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
                CREATE TABLE IF NOT EXISTS verification_codes (
                    code_type TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    expires_at REAL NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (code_type, key)
                )
                """
            )
            cols = {row["name"] for row in conn.execute("PRAGMA table_info(verification_codes)")}
            if "attempts" not in cols:
                conn.execute(
                    "ALTER TABLE verification_codes ADD COLUMN attempts INTEGER NOT NULL DEFAULT 0"
                )
                logger.info("VerificationCodeStore migration: added column attempts")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_verification_expires "
                "ON verification_codes(expires_at)"
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _parse_type(code_type: CodeType | str) -> CodeType:
        try:
            return CodeType(code_type)
        except ValueError:
            raise ValidationError(
                "unknown verification code type", details={"code_type": code_type}
            ) from None

    def issue(
        self,
        code_type: CodeType | str,
        key: str,
        value: str,
        *,
        ttl_seconds: float = DEFAULT_OTP_TTL_SECONDS,
        now_ts: float | None = None,
    ) -> VerificationCode:
        ctype = self._parse_type(code_type)
        if not key or not str(key).strip():
            raise ValidationError("verification key is required")
        if not value:
            raise ValidationError("verification value is required")

        now = time.time() if now_ts is None else float(now_ts)
        code = VerificationCode(
            code_type=ctype,
            key=str(key).strip(),
            value=str(value),
            expires_at=now + float(ttl_seconds),
            created_at=now,
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO verification_codes(
                    code_type, key, value, created_at, expires_at, attempts
                )
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                (code.code_type.value, code.key, code.value, code.created_at, code.expires_at),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Verification code issued type=%s key=%s", code.code_type, code.key)
        return code

    def get(
        self, code_type: CodeType | str, key: str, now_ts: float | None = None
    ) -> VerificationCode:
        ctype = self._parse_type(code_type)
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM verification_codes WHERE code_type = ? AND key = ?",
                (ctype.value, key),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            raise NotFoundError("no verification code for this key", details={"key": key})

        code = VerificationCode(
            code_type=CodeType(row["code_type"]),
            key=str(row["key"]),
            value=str(row["value"]),
            expires_at=float(row["expires_at"]),
            created_at=float(row["created_at"]),
            attempts=int(row["attempts"] or 0),
        )

        now = time.time() if now_ts is None else float(now_ts)
        if code.is_expired(now):
            self._delete(ctype, key, expired_before=now)
            raise ExpiredError("verification code expired", details={"key": key})
        return code

    def consume(
        self,
        code_type: CodeType | str,
        key: str,
        value: str,
        now_ts: float | None = None,
    ) -> VerificationCode:
        """
        Check `value` against the stored code and delete it on success.

        Raises NotFoundError, ExpiredError, ValidationError (wrong value) or
        ConflictError if a concurrent caller consumed it first. The wrong guess
        that reaches max_attempts deletes the code and raises ExpiredError.
        """
        code = self.get(code_type, key, now_ts=now_ts)
        if code.attempts >= self._max_attempts:
            self._burn(code)
            raise ExpiredError("too many failed attempts", details={"key": key})
        if not secrets.compare_digest(code.value.encode("utf-8"), str(value or "").encode("utf-8")):
            self._record_failure(code)

        conn = self._get_conn()
        try:
            cur = conn.execute(
                "DELETE FROM verification_codes WHERE code_type = ? AND key = ? AND value = ?",
                (code.code_type.value, code.key, code.value),
            )
            conn.commit()
            deleted = cur.rowcount == 1
        finally:
            conn.close()

        if not deleted:
            raise ConflictError("verification code already used", details={"key": key})
        logger.debug("Verification code consumed type=%s key=%s", code.code_type, code.key)
        return code

    def _record_failure(self, code: VerificationCode) -> None:
        """Count a wrong guess against this exact code; burn it at the limit. Always raises."""
        conn = self._get_conn()
        try:
            conn.execute(
                """
                UPDATE verification_codes
                SET attempts = attempts + 1
                WHERE code_type = ? AND key = ? AND value = ?
                """,
                (code.code_type.value, code.key, code.value),
            )
            row = conn.execute(
                "SELECT attempts FROM verification_codes WHERE code_type = ? AND key = ? AND value = ?",
                (code.code_type.value, code.key, code.value),
            ).fetchone()
            conn.commit()
        finally:
            conn.close()

        if row is None:
            raise ConflictError("verification code already used", details={"key": code.key})
        attempts = int(row["attempts"])
        if attempts >= self._max_attempts:
            self._burn(code)
            logger.warning(
                "Verification code burned after %d failed attempts type=%s key=%s",
                attempts,
                code.code_type,
                code.key,
            )
            raise ExpiredError("too many failed attempts", details={"key": code.key})
        raise ValidationError(
            "verification code does not match",
            details={"key": code.key, "attempts_left": self._max_attempts - attempts},
        )

    def _burn(self, code: VerificationCode) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "DELETE FROM verification_codes WHERE code_type = ? AND key = ? AND value = ?",
                (code.code_type.value, code.key, code.value),
            )
            conn.commit()
        finally:
            conn.close()

    def _delete(self, code_type: CodeType, key: str, *, expired_before: float) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "DELETE FROM verification_codes WHERE code_type = ? AND key = ? AND expires_at <= ?",
                (code_type.value, key, float(expired_before)),
            )
            conn.commit()
        finally:
            conn.close()

    def sweep_expired(self, now_ts: float | None = None) -> int:
        now = time.time() if now_ts is None else float(now_ts)
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM verification_codes WHERE expires_at <= ?", (now,))
            conn.commit()
            removed = int(cur.rowcount or 0)
        finally:
            conn.close()
        if removed:
            logger.info("Swept %d expired verification codes", removed)
        return removed
