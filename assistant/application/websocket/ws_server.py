from typing import Optional

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from assistant.domain.errors import ConflictError
from .transport import WebSocketHandle

logger = structlog.get_logger(__name__)

router = APIRouter()

POLICY_VIOLATION = 1008


@router.websocket("/ws")
async def assistant_websocket(
    websocket: WebSocket,
    user_id: Optional[str] = Query(None, alias="userId"),
):
    """Session endpoint: one actor per userId, frames delivered in arrival order"""

    if not user_id:
        logger.warning("WebSocket rejected: missing userId")
        await websocket.close(code=POLICY_VIOLATION, reason="userId is required. Connect with /ws?userId=<your-user-id>")
        return

    host = websocket.app.state.services.actor_host
    handle = WebSocketHandle(websocket, tags=[user_id])

    structlog.contextvars.bind_contextvars(user_id=user_id)
    try:
        try:
            await host.connect(user_id, handle, user_id)
        except ConflictError as e:
            await websocket.close(code=POLICY_VIOLATION, reason=e.message)
            return

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                await host.deliver(user_id, handle, raw)

        except WebSocketDisconnect:
            logger.info("Client disconnected")
        except Exception as e:
            logger.error("WebSocket error", error=str(e))
        finally:
            await host.disconnect(user_id, handle)
    finally:
        structlog.contextvars.unbind_contextvars("user_id")
