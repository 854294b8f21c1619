"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from .config import RelayConfig
from .service import MailboxRelay

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: open the relay's HTTP clients. Shutdown: close them."""
    relay: MailboxRelay = app.state.relay
    await relay.start()
    yield
    await relay.stop()
    logger.info("shutdown_complete")


def create_app(
    config: RelayConfig | None = None,
    relay: MailboxRelay | None = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    if relay is None:
        relay = MailboxRelay(config or RelayConfig())

    app = FastAPI(
        title="Mailbox Relay",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.relay = relay

    from .routes import router

    app.include_router(router)
    return app
