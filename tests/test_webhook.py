# tests/test_webhook.py

from __future__ import annotations

import json

import httpx
import pytest

from cafe_portal.notify.events import Audience, EventKind, PortalEvent
from cafe_portal.notify.webhook import WebhookSink


def _event() -> PortalEvent:
    return PortalEvent(
        kind=EventKind.TRANSACTION_CREATED,
        payload={"transaction": {"id": "txn-1", "amount": 120.0}},
        audience=Audience.ACTOR,
        target_actor="alice",
    )


@pytest.mark.asyncio
async def test_webhook_posts_event_json() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sink = WebhookSink("https://hooks.example.test/portal", client=client, headers={"X-Token": "s3"})
        await sink.deliver(_event())

    assert len(seen) == 1
    req = seen[0]
    assert req.method == "POST"
    assert req.headers["X-Portal-Event"] == "transaction-created"
    assert req.headers["X-Token"] == "s3"
    body = json.loads(req.content)
    assert body["kind"] == "transaction-created"
    assert body["target_actor"] == "alice"
    assert body["payload"]["transaction"]["amount"] == 120.0


@pytest.mark.asyncio
async def test_webhook_non_2xx_raises() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    async with httpx.AsyncClient(transport=transport) as client:
        sink = WebhookSink("https://hooks.example.test/portal", client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await sink.deliver(_event())


def test_webhook_requires_url() -> None:
    with pytest.raises(ValueError):
        WebhookSink("")
