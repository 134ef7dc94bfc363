"""WebSocket stream of change events and notifications."""

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from wacrm.api.dependencies import get_connection_manager
from wacrm.core.exceptions import AuthenticationFailed
from wacrm.core.security import decode_access_token

logger = structlog.get_logger()

router = APIRouter(prefix="/realtime", tags=["Realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: str = Query("")) -> None:
    """Push the caller's row changes and message notifications.

    Browsers cannot set headers on a websocket, so the access token comes in
    the query string. Clients may send ``ping`` and get ``pong`` back.
    """
    try:
        user = decode_access_token(token)
    except AuthenticationFailed:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    manager = get_connection_manager()
    await manager.connect(websocket, user.id)
    try:
        while True:
            text = await websocket.receive_text()
            if text == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket, user.id)
