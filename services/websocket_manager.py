# services/websocket_manager.py
"""
Live-update fan-out to connected clients.

Blueprints call this only after their transaction has committed. Messages
are refresh hints: clients re-fetch the affected resource instead of
trusting the payload.

Usage:
    from services.websocket_manager import ws_manager

    with engine.begin() as conn:
        result = draft_player(conn, user_id, player_id)
    ws_manager.broadcast_event(user, "draft-update", {"player_id": player_id})
"""

import json
import logging
import threading
from typing import Any, Dict, Optional, Set

logger = logging.getLogger(__name__)


class WebSocketManager:
    """
    Registry of live client connections.

    Anything with a `send(str)` method can be registered. Thread-safe.
    """

    def __init__(self):
        self._connections: Set[Any] = set()
        self._lock = threading.Lock()

    def add_connection(self, ws) -> None:
        with self._lock:
            self._connections.add(ws)
            logger.info(
                f"Client connected. Total connections: {len(self._connections)}"
            )

    def remove_connection(self, ws) -> None:
        with self._lock:
            self._connections.discard(ws)
            logger.info(
                f"Client disconnected. Total connections: {len(self._connections)}"
            )

    def get_connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def broadcast(self, data: dict) -> int:
        """
        Send `data` as JSON to every connection. Connections that fail are
        dropped from the registry.

        Returns:
            Number of clients successfully sent to
        """
        message = json.dumps(data, default=str)
        sent_count = 0
        failed_connections = []

        with self._lock:
            connections = list(self._connections)

        for ws in connections:
            try:
                ws.send(message)
                sent_count += 1
            except Exception as e:
                logger.warning(f"Failed to send to client: {e}")
                failed_connections.append(ws)

        if failed_connections:
            with self._lock:
                for ws in failed_connections:
                    self._connections.discard(ws)

        return sent_count

    def broadcast_event(self, user: Optional[Dict[str, Any]], event: str,
                        payload: Optional[Dict[str, Any]] = None) -> int:
        """
        Broadcast a named league event.

        Message shape: {"event": name, "user": {"id", "name"}, "payload": {...}}
        """
        acting = None
        if user:
            acting = {"id": user.get("id"), "name": user.get("name")}

        sent = self.broadcast({
            "event": event,
            "user": acting,
            "payload": payload or {},
        })
        logger.info(f"Event '{event}' sent to {sent} clients")
        return sent


# Global singleton instance
ws_manager = WebSocketManager()
