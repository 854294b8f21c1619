"""Fan-out of extracted messages to independent sinks."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from .models import ExtractedMessage
from .sinks import Sink

logger = structlog.get_logger()


class FanOutForwarder:
    """Delivers each message to every configured sink, best-effort.

    Each sink is its own failure domain: an exception from one sink is
    logged and the remaining sinks still run. By default sinks run one
    after another in list order; with ``concurrent=True`` they run as
    sibling tasks and are joined before :meth:`forward` returns.
    """

    def __init__(self, sinks: Sequence[Sink], *, concurrent: bool = False) -> None:
        self._sinks = list(sinks)
        self._concurrent = concurrent

    @property
    def sinks(self) -> list[Sink]:
        return list(self._sinks)

    async def forward(self, message: ExtractedMessage) -> dict[str, bool]:
        """Deliver *message*; returns ``{sink name: succeeded}``. Never raises for sink errors."""
        if not self._concurrent:
            return {sink.name: await self._deliver_one(sink, message) for sink in self._sinks}

        async with asyncio.TaskGroup() as tg:
            tasks = {
                sink.name: tg.create_task(self._deliver_one(sink, message))
                for sink in self._sinks
            }
        return {name: task.result() for name, task in tasks.items()}

    async def _deliver_one(self, sink: Sink, message: ExtractedMessage) -> bool:
        try:
            await sink.deliver(message)
        except Exception as exc:
            logger.warning(
                "sink_delivery_failed",
                sink=sink.name,
                message_id=message.message_id,
                source=message.source.value,
                error=str(exc) or type(exc).__name__,
            )
            return False
        return True
