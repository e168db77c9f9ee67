# src/cafe_portal/sessions/auth.py

"""
OTP login flow.

request_otp -> a 6-digit code is stored (admin_otp or user_otp) and handed to
the OtpDelivery port. verify_otp -> the code is consumed and a session issued.
E-mail delivery is an external collaborator; the default delivery only logs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..core.errors import ValidationError
from .session_models import CodeType, Session, SessionType
from .verification import DEFAULT_OTP_TTL_SECONDS, generate_otp

if TYPE_CHECKING:
    from ..core.state import AppState

logger = logging.getLogger(__name__)

ADMIN_ROLE = "Super Admin"


class LoggingOtpDelivery:
    """Dev-mode delivery: the OTP goes to the log instead of an inbox."""

    def send_otp(self, *, username: str, otp: str, code_type: CodeType) -> None:
        logger.warning("[DEV MODE] OTP for %s (%s): %s", username, code_type, otp)


def _normalize(username: str) -> str:
    name = (username or "").strip()
    if not name:
        raise ValidationError("username is required")
    return name


def is_admin_username(state: AppState, username: str) -> bool:
    admins = getattr(state.settings, "admin_usernames", None) or []
    return username.lower() in {a.lower() for a in admins}


def request_otp(state: AppState, username: str, *, now_ts: float | None = None) -> CodeType:
    """Issue (or replace) the login code for `username`. Returns the code type used."""
    name = _normalize(username)
    code_type = CodeType.ADMIN_OTP if is_admin_username(state, name) else CodeType.USER_OTP
    ttl = float(getattr(state.settings, "otp_ttl_seconds", DEFAULT_OTP_TTL_SECONDS))

    otp = generate_otp()
    state.codes.issue(code_type, name, otp, ttl_seconds=ttl, now_ts=now_ts)
    state.otp_delivery.send_otp(username=name, otp=otp, code_type=code_type)
    logger.info("OTP requested for %s (%s)", name, code_type)
    return code_type


def verify_otp(
    state: AppState, username: str, otp: str, *, now_ts: float | None = None
) -> Session:
    """
    Exchange a valid OTP for a session.

    Raises NotFoundError/ExpiredError/ValidationError from the code store; the
    code is single-use and is burned after too many wrong guesses.
    """
    name = _normalize(username)
    admin = is_admin_username(state, name)
    code_type = CodeType.ADMIN_OTP if admin else CodeType.USER_OTP

    state.codes.consume(code_type, name, (otp or "").strip(), now_ts=now_ts)

    ttl = getattr(state.settings, "session_ttl_seconds", None)
    session = state.sessions.issue(
        name,
        SessionType.ADMIN if admin else SessionType.PORTAL,
        role=ADMIN_ROLE if admin else None,
        name=name,
        ttl_seconds=ttl,
        now_ts=now_ts,
    )
    logger.info("Login verified for %s (%s)", name, session.session_type)
    return session
