"""History sync engine: change log → message fetches → fan-out → cursor."""

from __future__ import annotations

import asyncio

import structlog

from .cursor_store import CursorStore
from .extractor import build_message
from .forwarder import FanOutForwarder
from .gmail_client import GmailClient
from .models import CursorState, Provenance, SyncResult, newer_position

logger = structlog.get_logger()


class HistorySyncEngine:
    """Processes the mailbox change log from a starting position.

    One pass pages through ``messageAdded`` history, de-duplicates the
    message ids, forwards each message and then moves the persisted
    cursor to the highest history id seen. Passes are single-flight: an
    :class:`asyncio.Lock` serialises them, so two concurrent push
    notifications can never read the same stale cursor.

    Failure semantics:

    * listing the change log fails → the error propagates and the cursor
      is left untouched, so the next trigger retries the same range;
    * resolving or forwarding one message fails → logged, the remaining
      messages are still processed and the cursor still advances.
    """

    def __init__(
        self,
        gmail: GmailClient,
        store: CursorStore,
        forwarder: FanOutForwarder,
    ) -> None:
        self._gmail = gmail
        self._store = store
        self._forwarder = forwarder
        self._lock = asyncio.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    async def sync_from(self, start_history_id: str) -> SyncResult:
        """Run one pass starting at *start_history_id*."""
        async with self._lock:
            return await self._run_pass(start_history_id)

    async def resume(self, hint: str | None = None) -> SyncResult | None:
        """Run one pass from the persisted cursor, falling back to *hint*.

        The cursor is read only after the lock is held, so a pass queued
        behind another one starts where that one finished. Returns
        ``None`` when there is neither a cursor nor a hint.
        """
        async with self._lock:
            state = await self._store.load()
            start = state.history_id or hint
            if not start:
                logger.info("sync_skipped", reason="no_start_position")
                return None
            return await self._run_pass(start)

    async def seed(self, position: str | None) -> CursorState:
        """Move the cursor forward to *position* outside of a sync pass.

        Takes the same lock as a pass so the load-compare-save in
        :meth:`CursorStore.advance` never interleaves with a running one.
        """
        async with self._lock:
            state = await self._store.advance(position)
        logger.info("cursor_seeded", position=position, cursor=state.history_id)
        return state

    async def _collect(self, start_history_id: str) -> tuple[list[str], str]:
        pending: dict[str, None] = {}
        latest = start_history_id
        page_token: str | None = None
        pages = 0

        while True:
            page = await self._gmail.list_history(start_history_id, page_token)
            pages += 1
            for record in page.records:
                latest = newer_position(latest, record.id) or latest
                for message_id in record.added_message_ids:
                    pending.setdefault(message_id, None)
            page_token = page.next_page_token
            if not page_token:
                break

        logger.debug(
            "history_collected",
            start_history_id=start_history_id,
            pages=pages,
            messages=len(pending),
            latest_history_id=latest,
        )
        return list(pending), latest

    async def _run_pass(self, start_history_id: str) -> SyncResult:
        logger.info("sync_started", start_history_id=start_history_id)
        message_ids, latest = await self._collect(start_history_id)

        forwarded = 0
        failed: list[str] = []
        for message_id in message_ids:
            try:
                resource = await self._gmail.get_message(message_id)
                message = build_message(resource, Provenance.PUSH)
                await self._forwarder.forward(message)
            except Exception as exc:
                logger.error("message_forward_failed", message_id=message_id, error=str(exc))
                failed.append(message_id)
                continue
            forwarded += 1

        state = await self._store.advance(latest)

        logger.info(
            "sync_completed",
            start_history_id=start_history_id,
            count=len(message_ids),
            forwarded=forwarded,
            failed=len(failed),
            latest_history_id=latest,
            cursor=state.history_id,
        )
        return SyncResult(
            count=len(message_ids),
            latest_history_id=latest,
            forwarded=forwarded,
            failed=failed,
        )
