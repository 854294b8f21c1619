"""Data models shared by the sync engine, forwarder and HTTP routes."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Provenance(str, Enum):
    """How a forwarded message entered the relay."""

    PUSH = "push"
    FETCH = "fetch"
    INCOMING = "incoming"


def _coerce_position(value: Any) -> Any:
    # Gmail sends historyId as a JSON number in notifications and a string elsewhere.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def newer_position(current: str | None, candidate: str | None) -> str | None:
    """Return whichever history position is further along the change log.

    Positions are numeric strings; a non-numeric value cannot be ordered
    and is only taken when there is nothing to compare against.
    """
    if not candidate:
        return current
    if not current:
        return candidate
    try:
        return candidate if int(candidate) > int(current) else current
    except ValueError:
        return current


class ExtractedMessage(BaseModel):
    """Forward-ready representation of one mailbox message.

    Uses ``alias`` for ``from`` (a reserved word) and the camelCase keys the
    downstream consumers expect; ``populate_by_name=True`` allows
    construction with either spelling.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message_id: str | None = None
    source: Provenance
    from_address: str | None = Field(default=None, alias="from")
    to: str | None = None
    subject: str | None = None
    body: str
    text_body: str | None = Field(default=None, alias="textBody")
    html_body: str | None = Field(default=None, alias="htmlBody")

    def webhook_payload(self) -> dict[str, Any]:
        """Body posted to the legacy webhook: message fields only, unset ones omitted."""
        return self.model_dump(
            by_alias=True,
            exclude={"message_id", "source"},
            exclude_none=True,
        )

    def event_payload(self) -> dict[str, Any]:
        """Body broadcast to live subscribers."""
        return {"source": self.source.value, "id": self.message_id, **self.webhook_payload()}


class CursorState(BaseModel):
    """Flat persisted record; ``history_id`` is the last fully processed position.

    Unknown keys are preserved so a save never drops state written by
    another version of the relay.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    history_id: str | None = Field(default=None, alias="historyId")

    @field_validator("history_id", mode="before")
    @classmethod
    def stringify_history_id(cls, value: Any) -> Any:
        return _coerce_position(value)

    def advance(self, position: str | None) -> CursorState:
        """Return a copy moved to *position*, never moving backwards."""
        return self.model_copy(update={"history_id": newer_position(self.history_id, position)})


class HistoryRecord(BaseModel):
    """One change-log event reduced to the message ids it added."""

    id: str | None = None
    added_message_ids: list[str] = Field(default_factory=list)


class HistoryPage(BaseModel):
    """One page of ``users.history.list``."""

    records: list[HistoryRecord] = Field(default_factory=list)
    next_page_token: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> HistoryPage:
        records: list[HistoryRecord] = []
        for entry in data.get("history") or []:
            added = [
                item["message"]["id"]
                for item in entry.get("messagesAdded") or []
                if (item.get("message") or {}).get("id")
            ]
            records.append(
                HistoryRecord(id=_coerce_position(entry.get("id")), added_message_ids=added)
            )
        return cls(records=records, next_page_token=data.get("nextPageToken") or None)


class SyncResult(BaseModel):
    """Outcome of one history sync pass."""

    count: int = Field(description="Distinct message ids found in the change log")
    latest_history_id: str | None = Field(description="Highest change-log position seen")
    forwarded: int = Field(default=0, description="Messages resolved and handed to the forwarder")
    failed: list[str] = Field(
        default_factory=list,
        description="Message ids that could not be resolved or forwarded",
    )


class PubSubMessage(BaseModel):
    """The ``message`` object of a Pub/Sub push request."""

    model_config = ConfigDict(populate_by_name=True)

    data: str | None = None
    message_id: str | None = Field(default=None, alias="messageId")
    attributes: dict[str, str] = Field(default_factory=dict)


class PushEnvelope(BaseModel):
    """Outer JSON body delivered by the Pub/Sub push subscription."""

    message: PubSubMessage | None = None
    subscription: str | None = None


class MailboxNotification(BaseModel):
    """Decoded inner payload of a Gmail push notification."""

    model_config = ConfigDict(populate_by_name=True)

    email_address: str | None = Field(default=None, alias="emailAddress")
    history_id: str | None = Field(default=None, alias="historyId")

    @field_validator("history_id", mode="before")
    @classmethod
    def stringify_history_id(cls, value: Any) -> Any:
        return _coerce_position(value)
