"""HTTP routes: push intake, manual fetch, live events, watch control."""

from __future__ import annotations

import json
from typing import Annotated

import httpx
import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from .gmail_client import MailboxNotConnectedError
from .service import MailboxRelay, WatchNotConfiguredError

logger = structlog.get_logger()

router = APIRouter()

NOT_CONNECTED = "Not connected yet."


def get_relay(request: Request) -> MailboxRelay:
    return request.app.state.relay


RelayDep = Annotated[MailboxRelay, Depends(get_relay)]


@router.get("/health")
async def health() -> PlainTextResponse:
    return PlainTextResponse("ok")


@router.get("/api/status")
async def relay_status(relay: RelayDep) -> JSONResponse:
    return JSONResponse(await relay.status())


@router.get("/events")
async def events(relay: RelayDep) -> StreamingResponse:
    """Server-sent events: ``ready`` on attach, then ``email`` / ``incoming``."""
    subscriber = relay.hub.subscribe()
    return StreamingResponse(
        relay.hub.stream(subscriber),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/fetch")
async def fetch_latest(relay: RelayDep) -> PlainTextResponse:
    """Forward the newest unread message through the normal fan-out."""
    try:
        message = await relay.fetch_latest()
    except MailboxNotConnectedError:
        return PlainTextResponse(NOT_CONNECTED)
    except httpx.HTTPStatusError as exc:
        code = exc.response.status_code
        logger.error("fetch_failed", status_code=code, error=str(exc))
        return PlainTextResponse(
            f"Forwarding failed ({code})",
            status_code=status.HTTP_502_BAD_GATEWAY,
        )
    except Exception as exc:
        logger.error("fetch_failed", error=str(exc))
        return PlainTextResponse("Forwarding failed", status_code=status.HTTP_502_BAD_GATEWAY)

    if message is None:
        return PlainTextResponse("No new emails found.")
    return PlainTextResponse("Email forwarded.")


@router.post("/incoming")
async def incoming(
    request: Request,
    relay: RelayDep,
    background_tasks: BackgroundTasks,
) -> PlainTextResponse:
    """Accept a message relayed by another service; answer before relaying it on."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("incoming_payload_invalid")
        return PlainTextResponse("Bad Request", status_code=status.HTTP_400_BAD_REQUEST)

    logger.info("incoming_received", keys=sorted(payload) if isinstance(payload, dict) else None)
    relay.publish_incoming(payload)
    background_tasks.add_task(relay.relay_incoming, payload)
    return PlainTextResponse("OK")


@router.post("/watch/start")
async def watch_start(relay: RelayDep) -> Response:
    try:
        result = await relay.start_watch()
    except MailboxNotConnectedError:
        return PlainTextResponse(NOT_CONNECTED, status_code=status.HTTP_400_BAD_REQUEST)
    except WatchNotConfiguredError:
        return PlainTextResponse(
            "Set GMAIL_TOPIC in the environment",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    except Exception:
        logger.exception("watch_start_failed")
        return PlainTextResponse(
            "Failed to start watch",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return JSONResponse(result)


@router.post("/watch/stop")
async def watch_stop(relay: RelayDep) -> PlainTextResponse:
    try:
        await relay.stop_watch()
    except MailboxNotConnectedError:
        return PlainTextResponse(NOT_CONNECTED, status_code=status.HTTP_400_BAD_REQUEST)
    except Exception:
        logger.exception("watch_stop_failed")
        return PlainTextResponse(
            "Failed to stop watch",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return PlainTextResponse("Stopped watch")


@router.post("/gmail/push", status_code=status.HTTP_204_NO_CONTENT)
@router.post("/gmail-notify", status_code=status.HTTP_204_NO_CONTENT)
async def gmail_push(
    request: Request,
    relay: RelayDep,
    background_tasks: BackgroundTasks,
) -> Response:
    """Pub/Sub push endpoint. Always acknowledged; the sync runs after the response."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("push_body_not_json")
        body = None
    background_tasks.add_task(relay.gateway.handle, body)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
