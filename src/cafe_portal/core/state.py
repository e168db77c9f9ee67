# src/cafe_portal/core/state.py

"""
AppState is an explicit container of the portal's components.

It is built once by the composition root (cli.bootstrap) and passed to the API,
the console commands and the sweeper. Nothing reads it from a global.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..ledger.ledger_store import Ledger
from ..notify.fanout import NotificationFanout
from ..sessions.session_store import SessionDirectory
from ..sessions.verification import VerificationCodeStore
from ..tasks.catalog import ServiceCatalog
from ..tasks.coordinator import AssignmentCoordinator
from ..tasks.task_store import TaskStore
from .ports import OtpDelivery
from .runner import BackgroundLoop


@dataclass
class AppState:
    # Settings object (frozen dataclass in production, SimpleNamespace in tests).
    settings: Any

    tasks: TaskStore
    ledger: Ledger
    sessions: SessionDirectory
    codes: VerificationCodeStore
    catalog: ServiceCatalog

    loop: BackgroundLoop
    fanout: NotificationFanout
    coordinator: AssignmentCoordinator
    otp_delivery: OtpDelivery
