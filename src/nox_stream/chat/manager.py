"""Viewer chat admission: validation, sanitization, rate limiting.

Admitted messages are broadcast to every presentation client, published
on the event bus for the mood tracker, and handed to the AI responder.
Rejected messages produce an ``error`` message for the sender only.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Protocol

from fastapi import WebSocket

from nox_stream.core.event_bus import EventBus
from nox_stream.core.events import ChatReceivedEvent, Event, EventKind, SystemStatusEvent
from nox_stream.core.models import ChatConfig
from nox_stream.chat.ratelimit import RateLimiter, sanitize
from nox_stream.web.websocket import Broadcaster, send_event

logger = logging.getLogger(__name__)


class Responder(Protocol):
    def submit(self, username: str, text: str) -> None: ...


class ChatRejection(Exception):
    """A chat message failed admission."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class ChatManager:
    """Admits viewer chat messages and fans them out."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        responder: Responder | None = None,
        event_bus: EventBus | None = None,
        config: ChatConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ChatConfig()
        self.broadcaster = broadcaster
        self.responder = responder
        self.event_bus = event_bus
        self._clock = clock
        self.limiter = RateLimiter(
            self.config.rate_limit, self.config.rate_window_s, clock=clock
        )
        self._counter = 0
        self._sweep_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="chat-sweep")
        if self.event_bus is not None:
            await self.event_bus.publish(
                SystemStatusEvent(component="chat", status="running", message="Chat open")
            )
        logger.info(
            "Chat manager started (limit %d per %.0fs, max %d chars)",
            self.config.rate_limit,
            self.config.rate_window_s,
            self.config.max_length,
        )

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_s)
            self.limiter.sweep()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def admit(self, payload: dict[str, Any], identity: str) -> tuple[str, str]:
        """Run the admission pipeline; returns the cleaned (username, text).

        Raises:
            ChatRejection: when the message is malformed, rate limited or too long.
        """
        username = payload.get("username")
        text = payload.get("text")
        if not isinstance(username, str) or not username.strip():
            raise ChatRejection("invalid", "Invalid username")
        if not isinstance(text, str):
            raise ChatRejection("invalid", "Invalid text")

        username = sanitize(username)
        text = sanitize(text)
        if not text:
            raise ChatRejection("invalid", "Invalid text")

        if not self.limiter.allow(identity):
            raise ChatRejection(
                "rate_limited", "Rate limit exceeded. Slow down a little."
            )
        if len(text) > self.config.max_length:
            raise ChatRejection(
                "too_long", f"Message too long (max {self.config.max_length} characters)"
            )
        return username, text

    async def handle_message(
        self, ws: WebSocket, payload: dict[str, Any], identity: str
    ) -> Event | None:
        """Handle one inbound ``chat_message`` payload from *ws*.

        Returns the broadcast chat event, or None if it was rejected.
        """
        try:
            username, text = self.admit(payload, identity)
        except ChatRejection as rejection:
            logger.info("Chat from %s rejected: %s", identity, rejection.reason)
            await send_event(
                ws,
                Event.create(
                    "error", {"message": rejection.message, "reason": rejection.reason}
                ),
            )
            return None

        self._counter += 1
        event = Event.create(
            EventKind.CHAT_MESSAGE,
            {
                "username": username,
                "text": text,
                "id": f"msg_{self._counter}_{int(self._clock() * 1000)}",
            },
        )
        await self.broadcaster.broadcast(event)
        if self.event_bus is not None:
            await self.event_bus.publish(ChatReceivedEvent(username=username, text=text))
        if self.responder is not None:
            self.responder.submit(username, text)
        logger.debug("Chat from %s admitted (%d chars)", username, len(text))
        return event
