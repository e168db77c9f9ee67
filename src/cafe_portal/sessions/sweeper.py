# src/cafe_portal/sessions/sweeper.py

from __future__ import annotations

"""
Expiry sweeper.

A small polling loop that, every interval:
- deletes expired sessions,
- deletes expired verification codes,
- drops fanout subscriptions whose session is gone.

This is cleanup only. Reads check expiry themselves, so a stalled sweeper never
lets an expired session through.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..notify.fanout import NotificationFanout
    from .session_store import SessionDirectory
    from .verification import VerificationCodeStore

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SweepResult:
    sessions: int = 0
    codes: int = 0
    subscriptions: int = 0


def sweep_once(
    sessions: SessionDirectory,
    codes: VerificationCodeStore | None = None,
    fanout: NotificationFanout | None = None,
    *,
    now_ts: float | None = None,
) -> SweepResult:
    """One cleanup pass. A failing step is logged and the others still run."""
    now = time.time() if now_ts is None else float(now_ts)
    removed_sessions = removed_codes = removed_subs = 0

    try:
        removed_sessions = sessions.sweep_expired(now)
    except Exception:
        logger.exception("sweep_expired(sessions) failed")

    if codes is not None:
        try:
            removed_codes = codes.sweep_expired(now)
        except Exception:
            logger.exception("sweep_expired(codes) failed")

    if fanout is not None:
        try:
            removed_subs = fanout.reconcile(now)
        except Exception:
            logger.exception("fanout reconcile failed")

    return SweepResult(sessions=removed_sessions, codes=removed_codes, subscriptions=removed_subs)


async def run_expiry_sweeper(
        sessions: SessionDirectory,
        codes: VerificationCodeStore | None = None,
        fanout: NotificationFanout | None = None,
        *,
        interval_seconds: float = 60.0,
) -> None:
    """
    Every interval_seconds run sweep_once in a worker thread (SQLite is blocking).

    To stop the sweeper, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    logger.info("Expiry sweeper started (interval=%ss)", sleep_s)

    while True:
        try:
            result = await asyncio.to_thread(sweep_once, sessions, codes, fanout)
            if result.sessions or result.codes or result.subscriptions:
                logger.debug("Sweep result %s", result)
        except Exception:
            logger.exception("expiry sweep failed")

        await asyncio.sleep(sleep_s)
