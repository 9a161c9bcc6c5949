"""
worker_status.py
----------------
Purpose:
    Presence endpoints for the signed-in agent.

    GET  /api/taskrouter/worker-status         current {status, attributes}
    POST /api/taskrouter/worker-status         set {status}; also the target of
                                               the page-unload beacon
    GET  /api/taskrouter/worker-status-stream  Server-Sent Events feed
    WS   /api/taskrouter/worker-status-ws      same feed plus control messages

Notes:
    - The worker id is the session's `sub` claim.
    - The streams never answer 401: an unauthorized caller gets a single
      {"error": "unauthorized", "code": 401} message so the client stops
      reconnecting.
"""

import asyncio
import json
from collections.abc import AsyncIterator

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from app.auth.verify import optional_session, session_dependency
from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.api.worker_status_request import WorkerStatusUpdateRequest
from app.models.api.worker_status_response import WorkerStatusResponse, WorkerStatusUpdateResponse
from app.services.presence.status_broadcaster import Subscription, SubscriptionClosed
from app.services.presence.worker_presence_service import (
    WorkerNotFoundError,
    WorkerPresenceService,
    worker_presence_service,
)

router = APIRouter(prefix="/api/taskrouter", tags=["presence"])
logger = get_logger(__name__)

UNAUTHORIZED_MESSAGE = {"error": "unauthorized", "code": 401}
NOT_FOUND_MESSAGE = {"error": "worker_not_found", "code": 404}
UNAVAILABLE_MESSAGE = {"error": "presence_unavailable", "code": 503}
KEEPALIVE_COMMENT = ": keepalive\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_presence_service() -> WorkerPresenceService:
    return worker_presence_service


def format_sse(message: dict) -> str:
    return f"data: {json.dumps(message)}\n\n"


@router.get("/worker-status", response_model=WorkerStatusResponse)
async def get_worker_status(
    claims: dict = Depends(session_dependency),
    service: WorkerPresenceService = Depends(get_presence_service),
):
    worker_id = claims["sub"]
    try:
        snapshot = await service.get(worker_id)
    except WorkerNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Worker not found")
    except DatabaseError as e:
        logger.error("Worker status read failed", worker_id=worker_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read status"
        )

    return WorkerStatusResponse(status=snapshot.state, attributes=snapshot.attributes)


@router.post("/worker-status", response_model=WorkerStatusUpdateResponse)
async def set_worker_status(
    request: Request,
    claims: dict = Depends(session_dependency),
    service: WorkerPresenceService = Depends(get_presence_service),
):
    """
    Set the caller's presence.

    The body is parsed from raw bytes rather than by content type, because
    navigator.sendBeacon posts JSON as text/plain.
    """
    worker_id = claims["sub"]
    try:
        body = WorkerStatusUpdateRequest.model_validate_json(await request.body())
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    try:
        new_state = await service.set(worker_id, body.status)
    except WorkerNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Worker not found")
    except DatabaseError as e:
        logger.error("Worker status write failed", worker_id=worker_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update status"
        )

    return WorkerStatusUpdateResponse(success=True, status=new_state)


async def presence_event_stream(
    service: WorkerPresenceService,
    worker_id: str | None,
    keepalive_seconds: float | None = None,
) -> AsyncIterator[str]:
    """
    SSE body for one subscriber.

    Starts with the current state, then one `data:` line per change, with a
    keepalive comment whenever the feed has been quiet for keepalive_seconds.
    """
    if worker_id is None:
        yield format_sse(UNAUTHORIZED_MESSAGE)
        return

    try:
        subscription = await service.subscribe(worker_id)
    except WorkerNotFoundError:
        yield format_sse(NOT_FOUND_MESSAGE)
        return
    except DatabaseError as e:
        logger.error("Presence stream could not load worker", worker_id=worker_id, error=str(e))
        yield format_sse(UNAVAILABLE_MESSAGE)
        return

    interval = keepalive_seconds if keepalive_seconds is not None else settings.SSE_KEEPALIVE_SECONDS
    try:
        while True:
            try:
                message = await subscription.next_message(timeout=interval)
            except SubscriptionClosed:
                break

            if message is None:
                yield KEEPALIVE_COMMENT
                continue
            yield format_sse(message)
    finally:
        service.unsubscribe(subscription)


@router.get("/worker-status-stream")
async def worker_status_stream(
    claims: dict | None = Depends(optional_session),
    service: WorkerPresenceService = Depends(get_presence_service),
):
    worker_id = claims["sub"] if claims else None
    return StreamingResponse(
        presence_event_stream(service, worker_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _pump_messages(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        try:
            message = await subscription.next_message()
        except SubscriptionClosed:
            return
        if message is not None:
            await websocket.send_json(message)


@router.websocket("/worker-status-ws")
async def worker_status_ws(
    websocket: WebSocket,
    claims: dict | None = Depends(optional_session),
    service: WorkerPresenceService = Depends(get_presence_service),
):
    await websocket.accept()

    if not claims:
        await websocket.send_json(UNAUTHORIZED_MESSAGE)
        await websocket.close()
        return

    worker_id = claims["sub"]
    try:
        subscription = await service.subscribe(worker_id)
    except WorkerNotFoundError:
        await websocket.send_json(NOT_FOUND_MESSAGE)
        await websocket.close()
        return

    pump = asyncio.create_task(_pump_messages(websocket, subscription))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Binary frames go through the same parser and are answered as malformed
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            reply = service.handle_control_message(subscription, raw)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.debug("Presence websocket disconnected", worker_id=worker_id)
    finally:
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("Presence websocket send failed", worker_id=worker_id, error=str(e))
        service.unsubscribe(subscription)
