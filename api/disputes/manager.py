"""WebSocket fan-out for live dispute conversations."""
from typing import Any, Dict, Set

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder


class ConnectionManager:
    """Live dispute threads. Each dispute is a channel of open sockets."""

    def __init__(self):
        # Map of dispute id -> set of sockets watching it
        self.channel_subscribers: Dict[str, Set[WebSocket]] = {}
        # Map of socket -> user id
        self.socket_users: Dict[WebSocket, str] = {}

    async def connect(self, websocket: WebSocket, channel: str, user_id: str):
        """Subscribe an accepted socket to a dispute channel."""
        self.channel_subscribers.setdefault(channel, set()).add(websocket)
        self.socket_users[websocket] = user_id

        try:
            await websocket.send_json({
                "type": "connection_status",
                "data": {
                    "status": "connected",
                    "dispute_id": channel
                }
            })
        except (WebSocketDisconnect, RuntimeError):
            self.disconnect(websocket, channel)

    def disconnect(self, websocket: WebSocket, channel: str):
        """Remove a socket from a channel."""
        subscribers = self.channel_subscribers.get(channel)
        if subscribers is not None:
            subscribers.discard(websocket)
            if not subscribers:
                del self.channel_subscribers[channel]
        self.socket_users.pop(websocket, None)

    async def broadcast_to_channel(self, channel: str, message: Dict[str, Any]) -> int:
        """Send a message to every socket on a channel.

        Returns:
            Number of sockets the message reached
        """
        payload = jsonable_encoder(message)
        disconnected = set()
        delivered = 0
        for websocket in list(self.channel_subscribers.get(channel, ())):
            try:
                await websocket.send_json(payload)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError):
                disconnected.add(websocket)

        # Clean up closed sockets
        for websocket in disconnected:
            self.disconnect(websocket, channel)
        return delivered

    def get_channel_subscribers(self, channel: str) -> Set[WebSocket]:
        """Sockets watching a dispute."""
        return self.channel_subscribers.get(channel, set())


# Global instance
manager = ConnectionManager()
