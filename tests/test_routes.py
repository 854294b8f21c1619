"""Tests for the HTTP routes.

The lifespan is not started by ``ASGITransport``; most tests install a
mocked relay on ``app.state`` and the end-to-end test starts a real one
by hand.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx
from httpx import ASGITransport, AsyncClient

from mailbox_relay.app import create_app
from mailbox_relay.config import AgentConfig, RelayConfig
from mailbox_relay.gmail_client import MailboxNotConnectedError
from mailbox_relay.models import ExtractedMessage, Provenance
from mailbox_relay.service import MailboxRelay, WatchNotConfiguredError

from tests.conftest import GMAIL_API, WEBHOOK_URL, make_message_resource, make_push_body


def _mock_relay() -> MagicMock:
    relay = MagicMock()
    relay.gateway.handle = AsyncMock(return_value=None)
    relay.fetch_latest = AsyncMock(return_value=None)
    relay.relay_incoming = AsyncMock()
    relay.start_watch = AsyncMock(return_value={})
    relay.stop_watch = AsyncMock()
    relay.status = AsyncMock(return_value={})
    return relay


def _client(relay) -> AsyncClient:
    return AsyncClient(
        transport=ASGITransport(app=create_app(relay=relay)),
        base_url="http://test",
    )


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self):
        async with _client(_mock_relay()) as client:
            resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.text == "ok"

    @pytest.mark.asyncio
    async def test_status(self):
        relay = _mock_relay()
        relay.status.return_value = {"connected": True, "cursor": "5"}
        async with _client(relay) as client:
            resp = await client.get("/api/status")
        assert resp.json() == {"connected": True, "cursor": "5"}


class TestPush:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/gmail/push", "/gmail-notify"])
    async def test_acknowledged_and_handled(self, path: str):
        relay = _mock_relay()
        body = make_push_body(777)
        async with _client(relay) as client:
            resp = await client.post(path, json=body)
        assert resp.status_code == 204
        assert resp.content == b""
        relay.gateway.handle.assert_awaited_once_with(body)

    @pytest.mark.asyncio
    async def test_malformed_body_still_acknowledged(self):
        relay = _mock_relay()
        async with _client(relay) as client:
            resp = await client.post(
                "/gmail/push",
                content=b"not json",
                headers={"content-type": "application/json"},
            )
        assert resp.status_code == 204
        relay.gateway.handle.assert_awaited_once_with(None)


class TestFetch:
    @pytest.mark.asyncio
    async def test_forwarded(self):
        relay = _mock_relay()
        relay.fetch_latest.return_value = ExtractedMessage(
            message_id="m1", source=Provenance.FETCH, body="hi"
        )
        async with _client(relay) as client:
            resp = await client.get("/fetch")
        assert resp.status_code == 200
        assert resp.text == "Email forwarded."

    @pytest.mark.asyncio
    async def test_nothing_unread(self):
        async with _client(_mock_relay()) as client:
            resp = await client.get("/fetch")
        assert resp.text == "No new emails found."

    @pytest.mark.asyncio
    async def test_not_connected(self):
        relay = _mock_relay()
        relay.fetch_latest.side_effect = MailboxNotConnectedError("Not connected yet.")
        async with _client(relay) as client:
            resp = await client.get("/fetch")
        assert resp.status_code == 200
        assert resp.text == "Not connected yet."

    @pytest.mark.asyncio
    async def test_upstream_status_error(self):
        relay = _mock_relay()
        relay.fetch_latest.side_effect = httpx.HTTPStatusError(
            "Service Unavailable",
            request=httpx.Request("GET", f"{GMAIL_API}/users/me/messages"),
            response=httpx.Response(503),
        )
        async with _client(relay) as client:
            resp = await client.get("/fetch")
        assert resp.status_code == 502
        assert resp.text == "Forwarding failed (503)"

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        relay = _mock_relay()
        relay.fetch_latest.side_effect = RuntimeError("boom")
        async with _client(relay) as client:
            resp = await client.get("/fetch")
        assert resp.status_code == 502
        assert resp.text == "Forwarding failed"


class TestIncoming:
    @pytest.mark.asyncio
    async def test_accepts_and_relays(self):
        relay = _mock_relay()
        async with _client(relay) as client:
            resp = await client.post("/incoming", json={"subject": "hi"})
        assert resp.status_code == 200
        assert resp.text == "OK"
        relay.publish_incoming.assert_called_once_with({"subject": "hi"})
        relay.relay_incoming.assert_awaited_once_with({"subject": "hi"})

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        relay = _mock_relay()
        async with _client(relay) as client:
            resp = await client.post(
                "/incoming",
                content=b"{broken",
                headers={"content-type": "application/json"},
            )
        assert resp.status_code == 400
        assert resp.text == "Bad Request"
        relay.publish_incoming.assert_not_called()


class TestWatchRoutes:
    @pytest.mark.asyncio
    async def test_start(self):
        relay = _mock_relay()
        relay.start_watch.return_value = {"historyId": "9", "expiration": "123"}
        async with _client(relay) as client:
            resp = await client.post("/watch/start")
        assert resp.status_code == 200
        assert resp.json() == {"historyId": "9", "expiration": "123"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "status_code", "text"),
        [
            (MailboxNotConnectedError("x"), 400, "Not connected yet."),
            (WatchNotConfiguredError("x"), 400, "Set GMAIL_TOPIC in the environment"),
            (RuntimeError("x"), 500, "Failed to start watch"),
        ],
    )
    async def test_start_errors(self, error, status_code, text):
        relay = _mock_relay()
        relay.start_watch.side_effect = error
        async with _client(relay) as client:
            resp = await client.post("/watch/start")
        assert resp.status_code == status_code
        assert resp.text == text

    @pytest.mark.asyncio
    async def test_stop(self):
        relay = _mock_relay()
        async with _client(relay) as client:
            resp = await client.post("/watch/stop")
        assert resp.text == "Stopped watch"
        relay.stop_watch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_failure(self):
        relay = _mock_relay()
        relay.stop_watch.side_effect = RuntimeError("x")
        async with _client(relay) as client:
            resp = await client.post("/watch/stop")
        assert resp.status_code == 500
        assert resp.text == "Failed to stop watch"


class TestPushEndToEnd:
    @pytest.mark.asyncio
    @respx.mock
    async def test_push_syncs_forwards_and_persists(self, relay_config: RelayConfig):
        config = relay_config.model_copy(update={"agent": AgentConfig(base_url="")})
        user_api = f"{GMAIL_API}/users/me"
        respx.get(f"{user_api}/history").respond(
            200,
            json={
                "history": [
                    {"id": "501", "messagesAdded": [{"message": {"id": "x1"}}]},
                    {"id": "502", "messagesAdded": [{"message": {"id": "x1"}}]},
                ],
                "historyId": "502",
            },
        )
        respx.get(f"{user_api}/messages/x1").respond(200, json=make_message_resource("x1"))
        webhook = respx.post(WEBHOOK_URL).respond(200)

        relay = MailboxRelay(config)
        subscriber = relay.hub.subscribe()
        await relay.start()
        try:
            async with _client(relay) as client:
                resp = await client.post("/gmail/push", json=make_push_body(500))
        finally:
            await relay.stop()

        assert resp.status_code == 204
        assert webhook.call_count == 1
        assert json.loads(webhook.calls[0].request.content)["subject"] == "Quarterly report"
        assert subscriber.queue.get_nowait().startswith("event: email\n")
        assert (await relay.store.load()).history_id == "502"
