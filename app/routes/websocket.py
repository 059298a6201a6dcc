"""
WebSocket endpoint for realtime dashboard updates.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ..dependencies import DEV_USER_ID

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


def resolve_websocket_user(websocket: WebSocket, user_id: Optional[str]) -> Optional[str]:
    """
    User for a websocket connection.

    The identity is the ``X-User-ID`` header asserted by the fronting
    proxy. In dev mode, where browsers connect directly and cannot set
    upgrade headers, a ``user_id`` query parameter is accepted instead.
    Anonymous connections are allowed; they receive only broadcasts
    addressed to everyone.
    """
    resolved = (websocket.headers.get("X-User-ID") or "").strip()
    if resolved:
        return resolved
    settings = websocket.app.state.settings
    if settings.is_dev_mode and not settings.is_production:
        return (user_id or "").strip() or DEV_USER_ID
    if user_id:
        logger.warning("Ignoring user_id query parameter outside dev mode")
    return None


@router.websocket("/api/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    user_id: Optional[str] = Query(None),
):
    """
    Realtime channel: NEW_POST / NEW_COMMENT events and, on request,
    simulated STOCK_UPDATE ticks.
    """
    channel = websocket.app.state.channel
    await channel.connect(websocket, resolve_websocket_user(websocket, user_id))

    try:
        while True:
            data = await websocket.receive_text()
            await channel.handle_message(websocket, data)
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {str(e)}")
    finally:
        channel.disconnect(websocket)
