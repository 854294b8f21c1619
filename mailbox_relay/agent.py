"""Client for the stateful agent API.

The agent keeps conversation state per session. The relay owns one
session id for its whole process lifetime, creates the session before
the first query and treats "already exists" as success.
"""

from __future__ import annotations

import secrets
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from .config import AgentConfig
from .models import ExtractedMessage

logger = structlog.get_logger()


def build_prompt(message: ExtractedMessage) -> str:
    """Render the message as the text block the agent receives."""
    body = message.text_body or message.body or ""
    return (
        f"From: {message.from_address or ''}\n"
        f"To: {message.to or ''}\n"
        f"Subject: {message.subject or ''}\n\n"
        f"{body}"
    ).strip()


def new_session_id(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(4)}"


class AgentRelayClient:
    """Session-scoped, non-streaming queries against the agent API."""

    def __init__(self, config: AgentConfig, session_id: str | None = None) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None
        self._session_id = session_id or new_session_id(config.session_prefix)
        self._session_ready = False

    @property
    def enabled(self) -> bool:
        return bool(self._config.base_url)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session_ready(self) -> bool:
        return self._session_ready

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if not self.enabled:
            logger.info("agent_client_disabled", reason="empty_base_url")
            return
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )
        logger.info("agent_client_started", session_id=self._session_id)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("agent_client_stopped")

    # ------------------------------------------------------------------
    # Session + query
    # ------------------------------------------------------------------

    async def ensure_session(self) -> bool:
        """Create the session once; a 409 conflict means it already exists.

        Other failures are logged and reported as ``False`` so the next
        send tries again.
        """
        if self._session_ready:
            return True
        client = self._require_client()
        try:
            response = await client.post(
                self._config.create_path,
                json={"sessionId": self._session_id},
            )
        except httpx.HTTPError as exc:
            logger.warning("agent_session_create_failed", error=str(exc))
            return False

        if response.status_code == 409:
            logger.info("agent_session_exists", session_id=self._session_id)
        elif response.is_error:
            logger.warning(
                "agent_session_create_failed",
                session_id=self._session_id,
                status_code=response.status_code,
            )
            return False
        else:
            logger.info("agent_session_created", session_id=self._session_id)
        self._session_ready = True
        return True

    async def query(self, prompt: str) -> dict[str, Any]:
        """Submit *prompt* under the shared session and return the agent's reply.

        A 404 means the agent lost the session (e.g. it restarted); the
        session is then recreated before the next query.
        """
        client = self._require_client()
        path = f"{self._config.query_base_path}/{quote(self._session_id, safe='')}/query"
        response = await client.post(path, json={"prompt": prompt, "stream": False})
        if response.status_code == 404:
            self._session_ready = False
        response.raise_for_status()
        logger.info("agent_query_sent", session_id=self._session_id)
        return response.json() if response.content else {}

    async def send(self, message: ExtractedMessage) -> dict[str, Any]:
        await self.ensure_session()
        return await self.query(build_prompt(message))

    async def relay(self, payload: dict[str, Any]) -> None:
        """POST an externally supplied payload to the agent base URL as-is."""
        client = self._require_client()
        response = await client.post(self._config.base_url, json=payload)
        response.raise_for_status()
        logger.info("incoming_relayed", status_code=response.status_code)

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise AssertionError("Client not started")
        return self._client
