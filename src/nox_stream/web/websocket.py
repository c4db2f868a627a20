"""WebSocket fan-out to connected presentation clients."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

from nox_stream.core.events import Event, EventKind

logger = logging.getLogger(__name__)


class Broadcaster:
    """Holds the set of presentation clients and sends every event to all.

    A client whose send fails is dropped on the spot; delivery is
    best-effort and nothing is retried or queued.
    """

    def __init__(self) -> None:
        self._clients: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def active_count(self) -> int:
        return len(self._clients)

    async def register(self, ws: WebSocket) -> None:
        """Accept a client, add it to the fan-out and greet it."""
        await ws.accept()
        async with self._lock:
            self._clients.append(ws)
        logger.info("Stream client connected (%d active)", self.active_count)
        await send_event(ws, Event.create(EventKind.CONNECTED))

    async def unregister(self, ws: WebSocket) -> None:
        async with self._lock:
            if ws in self._clients:
                self._clients.remove(ws)
        logger.info("Stream client disconnected (%d active)", self.active_count)

    async def broadcast(self, event: Event | dict[str, Any]) -> None:
        """Serialize once and send to every connected client."""
        message = event.to_wire() if isinstance(event, Event) else event
        payload = json.dumps(message, ensure_ascii=False)
        async with self._lock:
            stale: list[WebSocket] = []
            for ws in self._clients:
                try:
                    await ws.send_text(payload)
                except Exception:
                    stale.append(ws)
            for ws in stale:
                self._clients.remove(ws)
        if stale:
            logger.info("Dropped %d stale stream client(s)", len(stale))


async def send_event(ws: WebSocket, event: Event | dict[str, Any]) -> bool:
    """Send one message to a single client; returns False if it failed."""
    message = event.to_wire() if isinstance(event, Event) else event
    try:
        await ws.send_text(json.dumps(message, ensure_ascii=False))
    except Exception as exc:
        logger.debug("Send to client failed: %s", exc)
        return False
    return True
