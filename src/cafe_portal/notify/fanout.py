# src/cafe_portal/notify/fanout.py

from __future__ import annotations

"""
Notification fanout.

publish() only hands the event to the background loop and returns. On the loop:
- subscriptions are resolved against the session directory (off-loop, in a thread),
- every subscriber whose session the event reaches gets its own delivery task,
- each delivery is bounded by a timeout; failures are logged and counted.

Nothing here ever raises back into the operation that published the event.
"""

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import Coroutine
from dataclasses import dataclass, field, replace
from typing import Any

from ..core.ports import EventSink, SessionLookup
from ..core.runner import BackgroundLoop
from ..sessions.session_models import Session
from .events import PortalEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Subscription:
    id: str
    token: str
    sink: EventSink = field(compare=False, repr=False)
    created_at: float = 0.0


@dataclass(slots=True)
class FanoutStats:
    published: int = 0
    delivered: int = 0
    failed: int = 0
    timed_out: int = 0
    dropped: int = 0


class NotificationFanout:
    def __init__(
        self,
        sessions: SessionLookup,
        loop: BackgroundLoop,
        *,
        delivery_timeout_seconds: float = 5.0,
    ) -> None:
        self._sessions = sessions
        self._loop = loop
        self._timeout = max(0.01, float(delivery_timeout_seconds))

        self._lock = threading.Lock()
        self._subs: dict[str, Subscription] = {}
        self._stats = FanoutStats()

        # Only touched from the loop thread.
        self._inflight: set[asyncio.Task[None]] = set()

    # ---- registration ----

    def subscribe(self, token: str, sink: EventSink) -> Subscription:
        """Register a sink for a session token. Validity is not checked here."""
        sub = Subscription(
            id=f"sub-{uuid.uuid4().hex[:12]}",
            token=token,
            sink=sink,
            created_at=time.time(),
        )
        with self._lock:
            self._subs[sub.id] = sub
        logger.debug("Subscribed %s", sub.id)
        return sub

    def unsubscribe(self, handle: Subscription | str) -> bool:
        sub_id = handle.id if isinstance(handle, Subscription) else str(handle)
        with self._lock:
            removed = self._subs.pop(sub_id, None) is not None
        if removed:
            logger.debug("Unsubscribed %s", sub_id)
        return removed

    def subscriptions(self) -> list[Subscription]:
        with self._lock:
            return list(self._subs.values())

    @property
    def stats(self) -> FanoutStats:
        with self._lock:
            return replace(self._stats)

    def _bump(self, name: str) -> None:
        with self._lock:
            setattr(self._stats, name, getattr(self._stats, name) + 1)

    # ---- publishing ----

    def publish(self, event: PortalEvent) -> None:
        try:
            self._bump("published")
            if not self._loop.call_soon(self._start_dispatch, event):
                self._bump("dropped")
                logger.debug("Fanout loop not running; dropped event %s", event.kind)
        except Exception:
            logger.exception("publish failed for event %s", event.kind)

    def _start_dispatch(self, event: PortalEvent) -> None:
        self._spawn(self._dispatch(event))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _dispatch(self, event: PortalEvent) -> None:
        subs = self.subscriptions()
        if not subs:
            return

        try:
            resolved = await asyncio.to_thread(self._resolve, subs, time.time())
        except Exception:
            logger.exception("Resolving subscribers failed for event %s", event.kind)
            return

        for sub, session in resolved:
            if session is None or not event.reaches(session):
                continue
            self._spawn(self._deliver(sub, event))

    def _resolve(
        self, subs: list[Subscription], now_ts: float
    ) -> list[tuple[Subscription, Session | None]]:
        out: list[tuple[Subscription, Session | None]] = []
        for sub in subs:
            try:
                out.append((sub, self._sessions.lookup(sub.token, now_ts)))
            except Exception:
                logger.exception("Session lookup failed for %s", sub.id)
        return out

    async def _deliver(self, sub: Subscription, event: PortalEvent) -> None:
        try:
            await asyncio.wait_for(sub.sink.deliver(event), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._bump("timed_out")
            logger.warning("Delivery of %s to %s timed out after %ss", event.kind, sub.id, self._timeout)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._bump("failed")
            logger.warning("Delivery of %s to %s failed", event.kind, sub.id, exc_info=True)
        else:
            self._bump("delivered")

    # ---- maintenance ----

    def reconcile(self, now_ts: float | None = None) -> int:
        """Drop subscriptions whose session is expired or gone. Returns how many."""
        now = time.time() if now_ts is None else float(now_ts)
        dead = [sub for sub, session in self._resolve(self.subscriptions(), now) if session is None]
        removed = sum(1 for sub in dead if self.unsubscribe(sub))
        if removed:
            logger.info("Fanout reconcile dropped %d subscriptions", removed)
        return removed
