# src/cafe_portal/notify/webhook.py

from __future__ import annotations

import logging

import httpx

from .events import PortalEvent

logger = logging.getLogger(__name__)


class WebhookSink:
    """
    EventSink that POSTs each event as JSON to a fixed URL.

    Non-2xx responses raise, so the fanout counts the delivery as failed.
    Without an injected client a short-lived AsyncClient is used per delivery,
    which keeps the sink free of loop-bound state.
    """

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 5.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        if not url:
            raise ValueError("webhook url is required")
        self.url = url
        self._client = client
        self._timeout = httpx.Timeout(timeout_seconds)
        self._headers = dict(headers or {})

    async def deliver(self, event: PortalEvent) -> None:
        headers = {"X-Portal-Event": event.kind.value, **self._headers}
        if self._client is not None:
            resp = await self._client.post(self.url, json=event.to_dict(), headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, json=event.to_dict(), headers=headers)
        resp.raise_for_status()
        logger.debug("Webhook %s accepted %s (%s)", self.url, event.kind, resp.status_code)
