"""Push notification gateway for Gmail watch deliveries via Pub/Sub."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

import structlog
from pydantic import ValidationError

from .models import MailboxNotification, PushEnvelope, SyncResult
from .sync import HistorySyncEngine

logger = structlog.get_logger()


def decode_notification(body: Any) -> MailboxNotification | None:
    """Unwrap a Pub/Sub push body into the Gmail notification it carries.

    Returns ``None`` (after logging) for anything that is not a decodable
    notification; push handling never raises on bad input.
    """
    try:
        envelope = PushEnvelope.model_validate(body)
    except ValidationError as exc:
        logger.warning("push_envelope_invalid", error=str(exc))
        return None

    if envelope.message is None or not envelope.message.data:
        logger.debug("push_envelope_empty")
        return None

    try:
        decoded = base64.b64decode(envelope.message.data, validate=False)
        inner = json.loads(decoded.decode("utf-8"))
        return MailboxNotification.model_validate(inner)
    except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError) as exc:
        logger.warning(
            "push_payload_undecodable",
            pubsub_message_id=envelope.message.message_id,
            error=str(exc),
        )
        return None


class PushGateway:
    """Turns push notifications into sync passes.

    The HTTP layer acknowledges the delivery first and only then calls
    :meth:`handle`, because Pub/Sub redelivers on slow or non-2xx
    answers. Deliveries are at-least-once and unordered; duplicates are
    harmless since the engine resumes from the already advanced cursor
    and treats the notification's history id only as a fallback.
    """

    def __init__(self, engine: HistorySyncEngine) -> None:
        self._engine = engine

    async def handle(self, body: Any) -> SyncResult | None:
        notification = decode_notification(body)
        if notification is None or not notification.history_id:
            return None

        logger.info(
            "push_received",
            email_address=notification.email_address,
            history_id=notification.history_id,
        )
        try:
            return await self._engine.resume(notification.history_id)
        except Exception:
            logger.exception("push_sync_failed", history_id=notification.history_id)
            return None
