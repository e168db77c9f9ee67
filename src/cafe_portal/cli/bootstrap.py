# src/cafe_portal/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (stores/fanout/coordinator).

The background loop is created here but started by the caller.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import OtpDelivery
from ..core.runner import BackgroundLoop
from ..core.state import AppState
from ..ledger.ledger_store import Ledger
from ..notify.fanout import NotificationFanout
from ..sessions.auth import LoggingOtpDelivery
from ..sessions.session_store import SessionDirectory
from ..sessions.verification import DEFAULT_OTP_MAX_ATTEMPTS, VerificationCodeStore
from ..tasks.catalog import ServiceCatalog
from ..tasks.coordinator import AssignmentCoordinator
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.ledger_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.sessions_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings=None,
    loop: BackgroundLoop | None = None,
    otp_delivery: OtpDelivery | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    tasks = TaskStore(settings.tasks_db_path)
    ledger = Ledger(settings.ledger_db_path)
    sessions = SessionDirectory(
        settings.sessions_db_path, default_ttl_seconds=settings.session_ttl_seconds
    )
    codes = VerificationCodeStore(
        settings.sessions_db_path,
        max_attempts=getattr(settings, "otp_max_attempts", DEFAULT_OTP_MAX_ATTEMPTS),
    )
    catalog = ServiceCatalog()

    loop = loop or BackgroundLoop()
    fanout = NotificationFanout(
        sessions, loop, delivery_timeout_seconds=settings.delivery_timeout_seconds
    )
    coordinator = AssignmentCoordinator(tasks, ledger, fanout, catalog=catalog)

    state = AppState(
        settings=settings,
        tasks=tasks,
        ledger=ledger,
        sessions=sessions,
        codes=codes,
        catalog=catalog,
        loop=loop,
        fanout=fanout,
        coordinator=coordinator,
        otp_delivery=otp_delivery or LoggingOtpDelivery(),
    )
    logger.debug("AppState wired (data_dir=%s)", settings.data_dir)
    return state
