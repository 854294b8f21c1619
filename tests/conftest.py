"""Shared test fixtures for the mailbox relay test suite."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

import pytest

from mailbox_relay.config import (
    AgentConfig,
    BroadcastConfig,
    CursorConfig,
    GmailConfig,
    RelayConfig,
    RetryConfig,
    WebhookConfig,
)
from mailbox_relay.gmail_client import HistoryExpiredError
from mailbox_relay.models import HistoryPage

GMAIL_API = "https://gmail.test/gmail/v1"
TOKEN_URL = "https://oauth.test/token"
WEBHOOK_URL = "http://webhook.test/hook"
AGENT_URL = "http://agent.test"


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.05,
        multiplier=2.0,
    )


@pytest.fixture
def gmail_config() -> GmailConfig:
    return GmailConfig(
        access_token="test-access-token",
        api_base_url=GMAIL_API,
        token_url=TOKEN_URL,
        topic="projects/test/topics/gmail",
    )


@pytest.fixture
def cursor_config(tmp_path: Path) -> CursorConfig:
    return CursorConfig(state_path=str(tmp_path / "gmail_state.json"))


@pytest.fixture
def webhook_config() -> WebhookConfig:
    return WebhookConfig(url=WEBHOOK_URL, timeout_seconds=5.0)


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig(base_url=AGENT_URL, timeout_seconds=5.0)


@pytest.fixture
def broadcast_config() -> BroadcastConfig:
    return BroadcastConfig(heartbeat_seconds=0.05, queue_size=2)


@pytest.fixture
def relay_config(
    gmail_config: GmailConfig,
    cursor_config: CursorConfig,
    webhook_config: WebhookConfig,
    agent_config: AgentConfig,
    broadcast_config: BroadcastConfig,
    retry_config: RetryConfig,
) -> RelayConfig:
    return RelayConfig(
        port=14000,
        log_json=False,
        gmail=gmail_config,
        cursor=cursor_config,
        webhook=webhook_config,
        agent=agent_config,
        broadcast=broadcast_config,
        retry=retry_config,
    )


# ------------------------------------------------------------------
# Gmail resource builders
# ------------------------------------------------------------------


def b64url(text: str) -> str:
    """Encode like Gmail does: base64url without padding."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_part(mime_type: str, text: str | None = None, parts: list[dict] | None = None) -> dict:
    part: dict[str, Any] = {"mimeType": mime_type, "body": {"size": 0}}
    if text is not None:
        part["body"] = {"size": len(text), "data": b64url(text)}
    if parts is not None:
        part["parts"] = parts
    return part


def make_message_resource(
    message_id: str = "m1",
    *,
    sender: str = "Alice <alice@example.com>",
    to: str | None = "bob@example.com",
    delivered_to: str | None = None,
    subject: str = "Quarterly report",
    payload: dict | None = None,
) -> dict:
    """Build a ``users.messages.get?format=full`` resource."""
    if payload is None:
        payload = make_part(
            "multipart/alternative",
            parts=[
                make_part("text/plain", "Plain body"),
                make_part("text/html", "<p>HTML body</p>"),
            ],
        )
    headers = [{"name": "From", "value": sender}, {"name": "Subject", "value": subject}]
    if to is not None:
        headers.append({"name": "To", "value": to})
    if delivered_to is not None:
        headers.append({"name": "Delivered-To", "value": delivered_to})
    payload = {**payload, "headers": headers}
    return {"id": message_id, "threadId": f"t-{message_id}", "payload": payload}


def make_push_body(history_id: int | str | None = 1000, email: str = "bob@example.com") -> dict:
    """Build a Pub/Sub push request body carrying a Gmail notification."""
    inner: dict[str, Any] = {"emailAddress": email}
    if history_id is not None:
        inner["historyId"] = history_id
    data = base64.b64encode(json.dumps(inner).encode("utf-8")).decode("ascii")
    return {
        "message": {"data": data, "messageId": "pubsub-1"},
        "subscription": "projects/test/subscriptions/gmail-push",
    }


class FakeGmail:
    """In-memory stand-in for :class:`GmailClient` backed by a change log.

    ``log`` holds ``(history_id, message_id)`` entries; ``list_history``
    returns entries strictly after the start position, ``page_size`` at a
    time, the way Gmail does.
    """

    def __init__(self, *, page_size: int = 2, oldest_history_id: int = 0) -> None:
        self.log: list[tuple[int, str]] = []
        self.messages: dict[str, dict] = {}
        self.page_size = page_size
        self.oldest_history_id = oldest_history_id
        self.history_calls: list[tuple[str, str | None]] = []
        self.fetched: list[str] = []
        self.fail_messages: set[str] = set()
        self.is_connected = True

    def add(self, history_id: int, message_id: str) -> None:
        self.log.append((history_id, message_id))
        self.messages.setdefault(message_id, make_message_resource(message_id))

    async def list_history(self, start_history_id: str, page_token: str | None = None) -> HistoryPage:
        self.history_calls.append((start_history_id, page_token))
        if int(start_history_id) < self.oldest_history_id:
            raise HistoryExpiredError(start_history_id)
        entries = [e for e in self.log if e[0] > int(start_history_id)]
        offset = int(page_token or 0)
        chunk = entries[offset : offset + self.page_size]
        next_offset = offset + self.page_size
        data = {
            "history": [
                {"id": str(hid), "messagesAdded": [{"message": {"id": mid}}]} for hid, mid in chunk
            ],
        }
        if next_offset < len(entries):
            data["nextPageToken"] = str(next_offset)
        return HistoryPage.from_api(data)

    async def get_message(self, message_id: str) -> dict:
        self.fetched.append(message_id)
        if message_id in self.fail_messages:
            raise RuntimeError(f"cannot fetch {message_id}")
        return self.messages[message_id]


@pytest.fixture
def fake_gmail() -> FakeGmail:
    return FakeGmail()
