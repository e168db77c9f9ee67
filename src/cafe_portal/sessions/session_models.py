# src/cafe_portal/sessions/session_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class SessionType(StrEnum):
    ADMIN = "admin"
    PORTAL = "portal"


class CodeType(StrEnum):
    ADMIN_OTP = "admin_otp"
    USER_OTP = "user_otp"
    ADMIN_TEMP_TOKEN = "admin_temp_token"
    USER_TEMP_TOKEN = "user_temp_token"


@dataclass(frozen=True, slots=True)
class Session:
    token: str
    username: str
    session_type: SessionType
    expires_at: float
    created_at: float
    role: str | None = None
    email: str | None = None
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.session_type == SessionType.ADMIN

    def is_expired(self, now_ts: float) -> bool:
        return self.expires_at <= now_ts


@dataclass(frozen=True, slots=True)
class VerificationCode:
    code_type: CodeType
    key: str
    value: str
    expires_at: float
    created_at: float
    attempts: int = 0

    def is_expired(self, now_ts: float) -> bool:
        return self.expires_at <= now_ts
