"""Mailbox Relay — incremental Gmail sync with fan-out forwarding.

Public API re-exported here for convenience::

    from mailbox_relay import MailboxRelay, RelayConfig, create_app
"""

from .agent import AgentRelayClient, build_prompt
from .app import create_app
from .broadcast import SubscriberHub
from .config import (
    AgentConfig,
    BroadcastConfig,
    CursorConfig,
    GmailConfig,
    RelayConfig,
    RetryConfig,
    WebhookConfig,
)
from .cursor_store import CursorStore
from .extractor import MessageBodies, build_message, extract_bodies, html_to_text
from .forwarder import FanOutForwarder
from .gateway import PushGateway, decode_notification
from .gmail_client import (
    GmailClient,
    HistoryExpiredError,
    MailboxNotConnectedError,
    MailboxRelayError,
)
from .logging import setup_logging
from .models import CursorState, ExtractedMessage, Provenance, SyncResult
from .service import MailboxRelay
from .sinks import AgentSink, BroadcastSink, Sink, WebhookSink
from .sync import HistorySyncEngine

__all__ = [
    "AgentConfig",
    "AgentRelayClient",
    "AgentSink",
    "BroadcastConfig",
    "BroadcastSink",
    "CursorConfig",
    "CursorState",
    "CursorStore",
    "ExtractedMessage",
    "FanOutForwarder",
    "GmailClient",
    "GmailConfig",
    "HistoryExpiredError",
    "HistorySyncEngine",
    "MailboxNotConnectedError",
    "MailboxRelay",
    "MailboxRelayError",
    "MessageBodies",
    "Provenance",
    "PushGateway",
    "RelayConfig",
    "RetryConfig",
    "Sink",
    "SubscriberHub",
    "SyncResult",
    "WebhookConfig",
    "WebhookSink",
    "build_message",
    "build_prompt",
    "create_app",
    "decode_notification",
    "extract_bodies",
    "html_to_text",
    "setup_logging",
]
