"""Relay configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each concern has its own env prefix; :class:`RelayConfig` nests them.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class GmailConfig(BaseSettings):
    """Gmail REST API credentials and watch settings."""

    model_config = {"env_prefix": "GMAIL_"}

    client_id: str = Field(default="", description="OAuth client ID")
    client_secret: SecretStr = Field(default=SecretStr(""), description="OAuth client secret")
    refresh_token: SecretStr = Field(
        default=SecretStr(""),
        description="Long-lived refresh token used to mint access tokens",
    )
    access_token: SecretStr = Field(
        default=SecretStr(""),
        description="Static access token (skips the refresh-token grant when set)",
    )
    api_base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1",
        description="Base URL of the Gmail REST API",
    )
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint for the refresh-token grant",
    )
    user_id: str = Field(default="me", description="Mailbox owner (Gmail userId)")
    topic: str = Field(default="", description="Pub/Sub topic used by users.watch")
    watch_label_ids: list[str] = Field(
        default_factory=lambda: ["INBOX"],
        description="Labels included in the push watch",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")

    @property
    def has_credentials(self) -> bool:
        return bool(
            self.access_token.get_secret_value() or self.refresh_token.get_secret_value()
        )


class CursorConfig(BaseSettings):
    """Location of the persisted history cursor."""

    model_config = {"env_prefix": "CURSOR_"}

    state_path: str = Field(
        default="gmail_state.json",
        description="JSON file holding the last processed historyId",
    )


class WebhookConfig(BaseSettings):
    """Legacy webhook relay. An empty URL disables the sink."""

    model_config = {"env_prefix": "WEBHOOK_"}

    url: str = Field(default="", description="Endpoint receiving extracted messages")
    timeout_seconds: float = Field(default=15.0, description="HTTP request timeout")


class AgentConfig(BaseSettings):
    """Stateful agent API. An empty base URL disables the sink."""

    model_config = {"env_prefix": "AGENT_"}

    base_url: str = Field(default="", description="Base URL of the agent container API")
    create_path: str = Field(
        default="/singleton/agent/create",
        description="Path for session creation",
    )
    query_base_path: str = Field(
        default="/singleton/agent",
        description="Prefix for session-scoped query paths",
    )
    session_prefix: str = Field(default="intern", description="Prefix of generated session ids")
    timeout_seconds: float = Field(default=120.0, description="HTTP request timeout")


class BroadcastConfig(BaseSettings):
    """Live subscriber (server-sent events) settings."""

    model_config = {"env_prefix": "BROADCAST_"}

    heartbeat_seconds: float = Field(default=25.0, description="Keep-alive comment interval")
    queue_size: int = Field(
        default=100,
        description="Pending events per subscriber before it is evicted",
    )


class RetryConfig(BaseSettings):
    """Retry / backoff settings for remote mailbox reads, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=3, description="Maximum attempts per API call")
    initial_wait_seconds: float = Field(default=0.5, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=10.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class RelayConfig(BaseSettings):
    """Root configuration for the relay process.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "RELAY_"}

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=4000, description="Bind port")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )
    concurrent_sinks: bool = Field(
        default=False,
        description="Deliver to sinks concurrently instead of one after another",
    )

    gmail: GmailConfig = Field(default_factory=GmailConfig)
    cursor: CursorConfig = Field(default_factory=CursorConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
