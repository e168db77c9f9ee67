# tests/conftest.py

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from cafe_portal.cli.bootstrap import create_initial_state
from cafe_portal.core.runner import BackgroundLoop
from cafe_portal.core.state import AppState
from cafe_portal.ledger.ledger_store import Ledger
from cafe_portal.sessions.session_store import SessionDirectory
from cafe_portal.tasks.task_store import TaskStore

from .fakes import RecordingOtpDelivery


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="cafe-portal-test",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        ledger_db_path=tmp_path / "ledger.sqlite3",
        sessions_db_path=tmp_path / "sessions.sqlite3",
        # Sessions / login
        session_ttl_seconds=3600,
        otp_ttl_seconds=300,
        otp_max_attempts=3,
        admin_usernames=["admin"],
        # Background work
        sweep_interval_seconds=0.05,
        delivery_timeout_seconds=0.5,
        webhook_timeout_seconds=1.0,
    )


@pytest.fixture()
def task_store(tmp_path: Path) -> TaskStore:
    return TaskStore(tmp_path / "tasks.sqlite3")


@pytest.fixture()
def ledger(tmp_path: Path) -> Ledger:
    return Ledger(tmp_path / "ledger.sqlite3")


@pytest.fixture()
def sessions(tmp_path: Path) -> SessionDirectory:
    return SessionDirectory(tmp_path / "sessions.sqlite3", default_ttl_seconds=3600)


@pytest.fixture()
def loop() -> Iterator[BackgroundLoop]:
    bg = BackgroundLoop(name="test-loop")
    bg.start()
    yield bg
    bg.stop(timeout=5.0)


@pytest.fixture()
def otp_delivery() -> RecordingOtpDelivery:
    return RecordingOtpDelivery()


@pytest.fixture()
def state(settings: SimpleNamespace, otp_delivery: RecordingOtpDelivery) -> Iterator[AppState]:
    """
    AppState wired exactly like the CLI does, with a running background loop.

    NOTE: We keep real SQLite stores here because their correctness is part of
    what we want to test. Only OTP delivery is faked.
    """
    st = create_initial_state(settings=settings, otp_delivery=otp_delivery)
    st.loop.start()
    yield st
    st.loop.stop(timeout=5.0)
