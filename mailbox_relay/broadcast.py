"""Live subscriber hub for server-sent events.

Every attached browser gets its own bounded queue. Publishing never
awaits a subscriber: a queue that is full belongs to a client that has
stopped reading, and that client is evicted instead of slowing the
publisher down.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import AsyncIterator
from typing import Any

import structlog

from .config import BroadcastConfig

logger = structlog.get_logger()

HEARTBEAT_FRAME = ":\n\n"

_subscriber_ids = itertools.count(1)


def format_event(event: str, payload: Any) -> str:
    """Render one SSE frame; non-string payloads are JSON encoded."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"event: {event}\ndata: {data}\n\n"


class Subscriber:
    """Cancellable handle for one attached client."""

    def __init__(self, queue_size: int) -> None:
        self.id = next(_subscriber_ids)
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, frame: str) -> bool:
        """Enqueue *frame* without waiting; False when the client is saturated."""
        if self._closed:
            return False
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        self._closed = True


class SubscriberHub:
    """Registry of attached subscribers with fire-and-forget publishing."""

    def __init__(self, config: BroadcastConfig) -> None:
        self._config = config
        self._subscribers: set[Subscriber] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscriber:
        subscriber = Subscriber(self._config.queue_size)
        self._subscribers.add(subscriber)
        logger.info("subscriber_attached", subscriber=subscriber.id, total=self.subscriber_count)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        subscriber.close()
        if subscriber in self._subscribers:
            self._subscribers.discard(subscriber)
            logger.info(
                "subscriber_detached",
                subscriber=subscriber.id,
                total=self.subscriber_count,
            )

    def publish(self, event: str, payload: Any) -> int:
        """Queue *event* for every subscriber; returns how many accepted it."""
        frame = format_event(event, payload)
        delivered = 0
        for subscriber in list(self._subscribers):
            if subscriber.offer(frame):
                delivered += 1
                continue
            logger.warning("subscriber_evicted", subscriber=subscriber.id, event_name=event)
            self.unsubscribe(subscriber)
        return delivered

    async def stream(self, subscriber: Subscriber) -> AsyncIterator[str]:
        """Yield SSE frames for *subscriber* until it is closed or cancelled.

        Starts with a ``ready`` event and emits a comment line whenever
        nothing was published for ``heartbeat_seconds``.
        """
        try:
            yield format_event("ready", {"ok": True})
            while not subscriber.closed:
                try:
                    frame = await asyncio.wait_for(
                        subscriber.queue.get(),
                        timeout=self._config.heartbeat_seconds,
                    )
                except TimeoutError:
                    yield HEARTBEAT_FRAME
                    continue
                if subscriber.closed:
                    break
                yield frame
        finally:
            self.unsubscribe(subscriber)
