# src/cafe_portal/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then:
- starts the background loop (notification delivery + expiry sweeper),
- runs the operator console in the main thread (optional),
- on exit cancels the sweeper and stops the loop.
"""

from __future__ import annotations

import concurrent.futures
import contextlib
import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..sessions.sweeper import run_expiry_sweeper

logger = logging.getLogger(__name__)


def start_background(state: AppState) -> concurrent.futures.Future:
    """Start the loop and schedule the sweeper on it. Returns the sweeper future."""
    state.loop.start()
    interval = float(getattr(state.settings, "sweep_interval_seconds", 60.0))
    return state.loop.submit(
        run_expiry_sweeper(state.sessions, state.codes, state.fanout, interval_seconds=interval)
    )


def _shutdown(state: AppState, sweeper: concurrent.futures.Future | None) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    if sweeper is not None:
        sweeper.cancel()

    try:
        state.loop.stop()
    except Exception:
        logger.exception("Background loop stop failed.")

    # Stores use short-lived sqlite connections per call; close() is a no-op.
    for store in (state.tasks, state.ledger, state.sessions, state.codes):
        try:
            store.close()
        except Exception:
            logger.debug("Store close failed.", exc_info=True)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/cafe_portal")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "cafe-portal"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)
    sweeper = start_background(state)

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    with contextlib.suppress(ValueError, OSError, AttributeError):
        # Some platforms may not support SIGTERM, etc.
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running background work only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        _shutdown(state, sweeper)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
