"""MailboxRelay — wires the relay components together and owns their lifecycle."""

from __future__ import annotations

from typing import Any

import structlog

from .agent import AgentRelayClient
from .broadcast import SubscriberHub
from .config import RelayConfig
from .cursor_store import CursorStore
from .extractor import build_message
from .forwarder import FanOutForwarder
from .gateway import PushGateway
from .gmail_client import GmailClient, MailboxNotConnectedError, MailboxRelayError
from .models import ExtractedMessage, Provenance
from .sinks import AgentSink, BroadcastSink, Sink, WebhookSink
from .sync import HistorySyncEngine

logger = structlog.get_logger()


class WatchNotConfiguredError(MailboxRelayError):
    """No Pub/Sub topic is configured for ``users.watch``."""


class MailboxRelay:
    """The relay process: sync engine, forwarder, sinks and the hub.

    Sinks are enabled by configuration presence: the live broadcast is
    always on, the webhook needs ``WEBHOOK_URL`` and the agent relay
    needs ``AGENT_BASE_URL``.
    """

    def __init__(self, config: RelayConfig) -> None:
        self.config = config
        self.hub = SubscriberHub(config.broadcast)
        self.gmail = GmailClient(config.gmail, config.retry)
        self.store = CursorStore(config.cursor)
        self.agent = AgentRelayClient(config.agent)

        sinks: list[Sink] = [BroadcastSink(self.hub)]
        if config.webhook.url:
            sinks.append(WebhookSink(config.webhook))
        if self.agent.enabled:
            sinks.append(AgentSink(self.agent))

        self.forwarder = FanOutForwarder(sinks, concurrent=config.concurrent_sinks)
        self.engine = HistorySyncEngine(self.gmail, self.store, self.forwarder)
        self.gateway = PushGateway(self.engine)

    @property
    def connected(self) -> bool:
        return self.gmail.is_connected

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.gmail.start()
        await self.agent.start()
        for sink in self.forwarder.sinks:
            await sink.start()
        if self.agent.enabled:
            # Non-fatal; the first delivery retries if the agent is not up yet.
            await self.agent.ensure_session()
        logger.info(
            "relay_started",
            connected=self.connected,
            sinks=[sink.name for sink in self.forwarder.sinks],
        )

    async def stop(self) -> None:
        for sink in reversed(self.forwarder.sinks):
            await sink.stop()
        await self.agent.stop()
        await self.gmail.stop()
        logger.info("relay_stopped")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def fetch_latest(self) -> ExtractedMessage | None:
        """Forward the newest unread message, independent of the cursor."""
        if not self.connected:
            raise MailboxNotConnectedError("Not connected yet.")
        message_id = await self.gmail.latest_unread_id()
        if message_id is None:
            return None
        resource = await self.gmail.get_message(message_id)
        message = build_message(resource, Provenance.FETCH)
        await self.forwarder.forward(message)
        logger.info("latest_message_forwarded", message_id=message_id)
        return message

    def publish_incoming(self, payload: Any) -> int:
        """Show an externally relayed payload to live subscribers."""
        return self.hub.publish(Provenance.INCOMING.value, payload)

    async def relay_incoming(self, payload: Any) -> None:
        """Pass an externally relayed payload on to the agent API; errors are logged."""
        if not self.agent.enabled:
            logger.warning("incoming_relay_skipped", reason="agent_base_url_not_set")
            return
        try:
            await self.agent.relay(payload)
        except Exception as exc:
            logger.error("incoming_relay_failed", error=str(exc))

    async def start_watch(self) -> dict[str, Any]:
        """Start Gmail push notifications and seed the cursor from the response."""
        if not self.connected:
            raise MailboxNotConnectedError("Not connected yet.")
        topic = self.config.gmail.topic
        if not topic:
            raise WatchNotConfiguredError("Set GMAIL_TOPIC")
        response = await self.gmail.watch(topic, self.config.gmail.watch_label_ids)
        history_id = response.get("historyId")
        state = await self.engine.seed(str(history_id) if history_id is not None else None)
        logger.info(
            "watch_started",
            topic=topic,
            expiration=response.get("expiration"),
            cursor=state.history_id,
        )
        return response

    async def stop_watch(self) -> None:
        if not self.connected:
            raise MailboxNotConnectedError("Not connected yet.")
        await self.gmail.stop_watch()
        logger.info("watch_stopped")

    async def status(self) -> dict[str, Any]:
        """Connection state plus the mailbox profile when it can be read."""
        profile: dict[str, Any] | None = None
        if self.connected:
            try:
                profile = await self.gmail.get_profile()
            except Exception as exc:
                logger.warning("profile_lookup_failed", error=str(exc))
        state = await self.store.load()
        return {
            "connected": self.connected,
            "profile": profile,
            "cursor": state.history_id,
            "sync_in_progress": self.engine.in_progress,
            "subscribers": self.hub.subscriber_count,
        }
