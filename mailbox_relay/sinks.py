"""Downstream sinks that receive extracted messages."""

from __future__ import annotations

import abc

import httpx
import structlog

from .agent import AgentRelayClient
from .broadcast import SubscriberHub
from .config import WebhookConfig
from .models import ExtractedMessage

logger = structlog.get_logger()


class Sink(abc.ABC):
    """One independent delivery target for the forwarder.

    ``deliver`` may raise; the forwarder isolates and logs the failure.
    """

    name: str = "sink"

    @abc.abstractmethod
    async def deliver(self, message: ExtractedMessage) -> None: ...

    async def start(self) -> None:
        """Acquire resources (HTTP clients). Default: nothing to do."""

    async def stop(self) -> None:
        """Release resources acquired in :meth:`start`."""


class BroadcastSink(Sink):
    """Pushes an ``email`` event to every attached live subscriber."""

    name = "broadcast"

    def __init__(self, hub: SubscriberHub) -> None:
        self._hub = hub

    async def deliver(self, message: ExtractedMessage) -> None:
        delivered = self._hub.publish("email", message.event_payload())
        logger.debug("message_broadcast", message_id=message.message_id, subscribers=delivered)


class WebhookSink(Sink):
    """POSTs the extracted message fields to the legacy webhook."""

    name = "webhook"

    def __init__(self, config: WebhookConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def deliver(self, message: ExtractedMessage) -> None:
        if self._client is None:
            raise AssertionError("Client not started")
        response = await self._client.post(self._config.url, json=message.webhook_payload())
        response.raise_for_status()
        logger.debug(
            "webhook_delivered",
            message_id=message.message_id,
            status_code=response.status_code,
        )


class AgentSink(Sink):
    """Hands the message to the stateful agent under the shared session."""

    name = "agent"

    def __init__(self, client: AgentRelayClient) -> None:
        self._client = client

    async def deliver(self, message: ExtractedMessage) -> None:
        await self._client.send(message)
