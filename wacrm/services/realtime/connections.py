"""WebSocket connections per user."""

import asyncio
import json
from typing import Any

import structlog
from fastapi import WebSocket

from wacrm.services.realtime.feed import ChangeEvent

logger = structlog.get_logger()


class ConnectionManager:
    """Tracks open sockets per user and pushes messages to them."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)
        logger.info("Realtime client connected", user_id=user_id)

    async def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        async with self._lock:
            sockets = self._connections.get(user_id)
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                del self._connections[user_id]
        logger.info("Realtime client disconnected", user_id=user_id)

    async def send_to_user(self, user_id: str, message: dict[str, Any]) -> None:
        """Send a message to every socket of a user, dropping dead ones."""
        async with self._lock:
            sockets = set(self._connections.get(user_id, set()))
        if not sockets:
            return

        data = json.dumps(message, default=str)
        closed = []
        for ws in sockets:
            try:
                await ws.send_text(data)
            except Exception as e:
                logger.debug("Dropping closed socket", user_id=user_id, error=str(e))
                closed.append(ws)

        if closed:
            async with self._lock:
                remaining = self._connections.get(user_id)
                if remaining is not None:
                    remaining.difference_update(closed)
                    if not remaining:
                        del self._connections[user_id]

    async def push_change(self, event: ChangeEvent) -> None:
        """Change feed subscriber that forwards rows to their owner."""
        owner = event.owner_id
        if owner is None:
            return
        await self.send_to_user(owner, {"type": "change", "data": event.model_dump(mode="json")})

    async def push_notification(self, user_id: str, notification: dict[str, Any]) -> None:
        await self.send_to_user(user_id, {"type": "notification", "data": notification})

    def get_connected_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, set()))

    def get_total_connections(self) -> int:
        return sum(len(sockets) for sockets in self._connections.values())
