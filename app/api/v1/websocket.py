import asyncio
import json
import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from app.api.v1.auth import user_from_token
from app.database.connection import SessionLocal
from app.notifications.in_app_channel import user_room
from app.notifications.realtime import BROADCAST_ROOM, ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])

# Close code for policy violations (failed authentication)
WS_POLICY_VIOLATION = 1008


def get_connection_manager(websocket: WebSocket) -> ConnectionManager:
    return websocket.app.state.connection_manager


@router.websocket("/notifications")
async def websocket_notifications(
    websocket: WebSocket,
    token: str = Query(..., description="Authentication token"),
):
    """
    WebSocket endpoint for realtime alert notifications

    Client should connect with: ws://host/api/v1/ws/notifications?token={jwt_token}
    """
    # Authenticate on a short-lived session so the socket holds no connection
    db = SessionLocal()
    try:
        user = user_from_token(token, db)
        user_id = user.id
    except HTTPException:
        await websocket.close(code=WS_POLICY_VIOLATION, reason="Unauthorized")
        return
    finally:
        db.close()

    manager = get_connection_manager(websocket)
    await manager.connect(websocket, [user_room(user_id), BROADCAST_ROOM])

    try:
        await manager.send_personal_message(
            {
                "type": "connected",
                "user_id": user_id,
                "timestamp": datetime.utcnow().isoformat(),
                "message": "Connected to realtime notifications",
            },
            websocket,
        )

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
            except asyncio.TimeoutError:
                # Keepalive so idle proxies do not drop the connection
                await manager.send_personal_message(
                    {"type": "heartbeat", "timestamp": datetime.utcnow().isoformat()},
                    websocket,
                )
                continue

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await manager.send_personal_message({"type": "error", "message": "Invalid JSON"}, websocket)
                continue

            if not isinstance(message, dict):
                await manager.send_personal_message({"type": "error", "message": "Invalid JSON"}, websocket)
                continue

            if message.get("type") == "ping":
                await manager.send_personal_message(
                    {"type": "pong", "timestamp": datetime.utcnow().isoformat()},
                    websocket,
                )

    except WebSocketDisconnect:
        logger.debug(f"WebSocket for user {user_id} disconnected")
    finally:
        manager.disconnect(websocket)
