# src/cafe_portal/core/runner.py

"""
Background asyncio loop in a daemon thread.

Request handling (and the console REPL) is synchronous; notification delivery
and the expiry sweeper are async and want their own event loop. This runner
hosts them so callers never wait on delivery.

Shutdown model:
- stop() sets the stop event via loop.call_soon_threadsafe(...)
- the loop cancels whatever is still running, then closes
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundLoop:
    def __init__(self, name: str = "cafe-portal-loop") -> None:
        self._name = name
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._ready = threading.Event()
        self._stopped = threading.Event()

    @property
    def running(self) -> bool:
        return (
            self._loop is not None
            and self._thread is not None
            and self._thread.is_alive()
            and not self._stopped.is_set()
        )

    def start(self) -> None:
        if self._thread is not None:
            return

        def runner() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._loop = loop
            self._stop_event = asyncio.Event()
            self._ready.set()

            try:
                loop.run_until_complete(self._main())
            finally:
                self._stopped.set()
                with contextlib.suppress(Exception):
                    loop.run_until_complete(loop.shutdown_default_executor())
                with contextlib.suppress(Exception):
                    loop.close()

        self._thread = threading.Thread(target=runner, name=self._name, daemon=True)
        self._thread.start()

        if not self._ready.wait(timeout=5.0):
            raise RuntimeError(f"{self._name} did not start")
        logger.info("Background loop %s started.", self._name)

    async def _main(self) -> None:
        assert self._stop_event is not None
        await self._stop_event.wait()

        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> bool:
        """Schedule a plain callback on the loop. False if the loop is not running."""
        loop = self._loop
        if loop is None or not self.running:
            return False
        try:
            loop.call_soon_threadsafe(fn, *args)
        except RuntimeError:
            # Loop closed between the check and the call.
            return False
        return True

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future[Any]:
        loop = self._loop
        if loop is None or not self.running:
            coro.close()
            raise RuntimeError(f"{self._name} is not running")
        return asyncio.run_coroutine_threadsafe(coro, loop)

    def stop(self, timeout: float | None = 10.0) -> None:
        loop = self._loop
        stop_event = self._stop_event
        if loop is not None and stop_event is not None and not self._stopped.is_set():
            try:
                loop.call_soon_threadsafe(stop_event.set)
            except RuntimeError:
                logger.debug("Background loop already closed.", exc_info=True)

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Background loop %s did not stop within %ss", self._name, timeout)
            else:
                logger.info("Background loop %s stopped.", self._name)
