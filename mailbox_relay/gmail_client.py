"""Async client for the Gmail REST API (history, messages, watch)."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

from .config import GmailConfig, RetryConfig
from .models import HistoryPage
from .retry import with_retry

logger = structlog.get_logger()

# Refresh access tokens this long before Google says they expire.
_TOKEN_EXPIRY_MARGIN_SECONDS = 60.0


class MailboxRelayError(Exception):
    """Base class for relay errors surfaced to callers."""


class MailboxNotConnectedError(MailboxRelayError):
    """The mailbox link has not been established (no credentials configured)."""


class HistoryExpiredError(MailboxRelayError):
    """Gmail rejected ``startHistoryId`` as too old or invalid."""

    def __init__(self, start_history_id: str) -> None:
        super().__init__(f"history position {start_history_id} is no longer available")
        self.start_history_id = start_history_id


class GmailClient:
    """Thin async wrapper over the Gmail endpoints the relay needs.

    Access tokens come from the configured static token or are minted
    with the refresh-token grant and cached until shortly before expiry.
    Transient failures (network errors, 429 and 5xx) are retried with
    exponential backoff; everything else propagates immediately.
    """

    def __init__(self, config: GmailConfig, retry_config: RetryConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()
        self._send = with_retry(retry_config)(self._send_once)

    @property
    def is_connected(self) -> bool:
        return self._config.has_credentials

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))
        logger.info("gmail_client_started", connected=self.is_connected)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("gmail_client_stopped")

    # ------------------------------------------------------------------
    # Mailbox operations
    # ------------------------------------------------------------------

    async def list_history(
        self,
        start_history_id: str,
        page_token: str | None = None,
    ) -> HistoryPage:
        """Fetch one page of ``messageAdded`` changes after *start_history_id*."""
        params: dict[str, Any] = {
            "startHistoryId": start_history_id,
            "historyTypes": "messageAdded",
        }
        if page_token:
            params["pageToken"] = page_token
        try:
            data = await self._request("GET", "/history", params=params)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                raise HistoryExpiredError(start_history_id) from exc
            raise
        return HistoryPage.from_api(data)

    async def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch the full message resource (headers and part tree)."""
        return await self._request("GET", f"/messages/{message_id}", params={"format": "full"})

    async def latest_unread_id(self) -> str | None:
        """Id of the newest unread message, or ``None`` when the inbox is read."""
        data = await self._request(
            "GET",
            "/messages",
            params={"q": "is:unread", "maxResults": 1},
        )
        messages = data.get("messages") or []
        return messages[0]["id"] if messages else None

    async def get_profile(self) -> dict[str, Any]:
        return await self._request("GET", "/profile")

    async def watch(self, topic: str, label_ids: list[str]) -> dict[str, Any]:
        """Start (or renew) push notifications to the Pub/Sub *topic*."""
        return await self._request(
            "POST",
            "/watch",
            json={
                "topicName": topic,
                "labelFilterAction": "include",
                "labelIds": label_ids,
            },
        )

    async def stop_watch(self) -> None:
        await self._request("POST", "/stop")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.is_connected:
            raise MailboxNotConnectedError("Not connected yet.")
        if self._client is None:
            raise AssertionError("Client not started")
        url = f"{self._config.api_base_url.rstrip('/')}/users/{self._config.user_id}{path}"
        response = await self._send(method, url, **kwargs)
        if not response.content:
            return {}
        return response.json()

    async def _send_once(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        assert self._client is not None
        token = await self._get_access_token()
        response = await self._client.request(
            method,
            url,
            headers={"Authorization": f"Bearer {token}"},
            **kwargs,
        )
        if response.status_code == 401:
            # Force a refresh on the next call.
            self._access_token = None
        if response.is_error:
            logger.warning(
                "gmail_request_failed",
                method=method,
                url=url,
                status_code=response.status_code,
            )
        response.raise_for_status()
        return response

    async def _get_access_token(self) -> str:
        static = self._config.access_token.get_secret_value()
        if static:
            return static

        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            assert self._client is not None
            response = await self._client.post(
                self._config.token_url,
                data={
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret.get_secret_value(),
                    "refresh_token": self._config.refresh_token.get_secret_value(),
                    "grant_type": "refresh_token",
                },
            )
            if response.is_error:
                logger.error("gmail_token_refresh_failed", status_code=response.status_code)
            response.raise_for_status()
            token_data = response.json()

            self._access_token = token_data["access_token"]
            expires_in = float(token_data.get("expires_in", 3600))
            self._token_expires_at = (
                time.monotonic() + expires_in - _TOKEN_EXPIRY_MARGIN_SECONDS
            )
            logger.debug("gmail_token_refreshed", expires_in=expires_in)
            return self._access_token
