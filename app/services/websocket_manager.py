"""
WebSocket Manager
Pushes call status, notices, incoming-call prompts, roster and conversation
updates to every attached front end
"""

import asyncio
import json
import logging
from typing import List, Dict, Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    @property
    def has_clients(self) -> bool:
        return len(self.active_connections) > 0

    @property
    def client_count(self) -> int:
        return len(self.active_connections)

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection"""
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket client connected (total: {len(self.active_connections)})")

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection"""
        try:
            self.active_connections.remove(websocket)
            logger.info(f"WebSocket client disconnected (total: {len(self.active_connections)})")
        except ValueError:
            pass

    @staticmethod
    def _encode(message_type: str, data: Dict[str, Any]) -> str:
        return json.dumps({"type": message_type, "data": data}, default=str)

    async def send_to(self, websocket: WebSocket, message_type: str, data: Dict[str, Any]) -> bool:
        """Send to one client (initial state on connect); drops it on failure"""
        try:
            await websocket.send_text(self._encode(message_type, data))
            return True
        except Exception as e:
            logger.warning(f"Error sending to WebSocket client: {e}")
            self.disconnect(websocket)
            return False

    async def broadcast(self, message_type: str, data: Dict[str, Any]):
        """
        Broadcast a message to all connected clients

        Args:
            message_type: Type of message ('call_status', 'notice', 'roster', ...)
            data: Message data
        """
        if not self.active_connections:
            return

        message = self._encode(message_type, data)

        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_text(message)
            except Exception as e:
                logger.warning(f"Error sending to WebSocket client: {e}")
                disconnected.append(connection)

        for connection in disconnected:
            self.disconnect(connection)

    def schedule_broadcast(self, message_type: str, data: Dict[str, Any]):
        """Broadcast from synchronous callbacks running on the event loop"""
        if not self.active_connections:
            return None
        return asyncio.ensure_future(self.broadcast(message_type, data))


# Global instance
websocket_manager = WebSocketManager()
