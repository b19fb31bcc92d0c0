"""Live update channel for stageflow.

Clients connect to /ws and receive every recorded event as JSON. A single
background poller per app drains the events table and fans each event out
to all connected clients.
"""

import asyncio
import logging
from typing import Any

from fastapi import WebSocket

from api.deps import (
    enrich_event_payload,
    get_unconsumed_events,
    mark_event_consumed,
)
from db.client import get_connection

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5


class ConnectionManager:
    """Tracks active WebSocket connections and broadcasts messages."""

    def __init__(self) -> None:
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info("Websocket client connected (%d active)", len(self.active_connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(
                "Websocket client disconnected (%d active)", len(self.active_connections)
            )

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send a message to every client; return how many received it.

        Clients whose send fails are dropped.
        """
        delivered = 0
        for sock in list(self.active_connections):
            try:
                await sock.send_json(message)
            except Exception:
                logger.debug("Dropping websocket client after failed send")
                self.disconnect(sock)
            else:
                delivered += 1
        return delivered


manager = ConnectionManager()


def _drain(db_path: str) -> list[dict[str, Any]]:
    """Read, enrich and mark consumed every pending event."""
    conn = get_connection(db_path)
    try:
        messages = []
        for event in get_unconsumed_events(conn):
            messages.append(enrich_event_payload(conn, event))
            mark_event_consumed(conn, event["id"])
        return messages
    finally:
        conn.close()


async def broadcast_events(db_path: str, interval: float = POLL_INTERVAL) -> None:
    """Poll the events table forever and broadcast new events in order."""
    while True:
        try:
            for message in _drain(db_path):
                await manager.broadcast(message)
        except Exception:
            logger.exception("Error in event broadcaster")
        await asyncio.sleep(interval)
