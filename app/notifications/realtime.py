"""
Realtime delivery over WebSockets.

``ConnectionManager`` tracks open sockets by room. ``WebSocketTransport`` lets
synchronous code (request handlers in the threadpool, background tasks) emit
into those rooms on the application's event loop without waiting for delivery.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import WebSocket

from app.core.exceptions import DispatchFailure

logger = logging.getLogger(__name__)

BROADCAST_ROOM = "alerts"


class RealtimeTransport(ABC):
    """Fire-and-forget publisher of named events to rooms"""

    @abstractmethod
    def emit(self, room: str, event: str, data: Dict[str, Any]) -> None:
        """Queue ``event`` for every connection in ``room``"""


class ConnectionManager:
    """Manage WebSocket connections grouped into rooms"""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, rooms: Iterable[str]):
        """Accept a WebSocket client and join it to ``rooms``"""
        await websocket.accept()
        for room in rooms:
            self.rooms.setdefault(room, set()).add(websocket)

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket client from every room"""
        for room in list(self.rooms):
            self.rooms[room].discard(websocket)
            if not self.rooms[room]:
                del self.rooms[room]

    def connection_count(self, room: Optional[str] = None) -> int:
        if room is not None:
            return len(self.rooms.get(room, ()))
        return len({ws for sockets in self.rooms.values() for ws in sockets})

    async def send_personal_message(self, message: Dict[str, Any], websocket: WebSocket):
        """Send message to a specific WebSocket"""
        await websocket.send_json(message)

    async def broadcast_to_room(self, room: str, message: Dict[str, Any]) -> int:
        """Send ``message`` to all sockets in ``room`` and return how many received it"""
        delivered = 0
        disconnected = set()
        for connection in list(self.rooms.get(room, ())):
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.debug(f"Dropping dead WebSocket in room {room}: {e}")
                disconnected.add(connection)

        # Clean up disconnected clients
        for connection in disconnected:
            self.disconnect(connection)
        return delivered


class WebSocketTransport(RealtimeTransport):
    """Schedules room broadcasts on the event loop that owns the sockets"""

    def __init__(self, manager: ConnectionManager, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.manager = manager
        self.loop = loop

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    def emit(self, room: str, event: str, data: Dict[str, Any]) -> None:
        if self.loop is None or self.loop.is_closed():
            raise DispatchFailure("Realtime transport is not running", channel="in_app", recipient=room)

        message = {"type": event, "data": data, "timestamp": datetime.utcnow().isoformat()}
        future = asyncio.run_coroutine_threadsafe(self.manager.broadcast_to_room(room, message), self.loop)
        future.add_done_callback(lambda f: self._log_failure(room, f))

    @staticmethod
    def _log_failure(room: str, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(f"Realtime broadcast to {room} failed: {error}")
