"""HTTP and WebSocket routes for the Nox stream server."""

from __future__ import annotations

import hmac
import json
import logging
import time
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from nox_stream.core.events import AGENT_KINDS, Event, EventKind, InvalidEventError, now_ms

logger = logging.getLogger(__name__)

router = APIRouter()

# WebSocket close code sent to an agent with a wrong token
AUTH_FAILED_CLOSE_CODE = 4001


class WebState:
    """Snapshot of component statuses and agent connectivity for REST queries."""

    def __init__(self) -> None:
        self.component_status: dict[str, dict[str, Any]] = {}
        self.agent_connections = 0
        self.started_at = time.time()

    def update_component_status(self, data: dict[str, Any]) -> None:
        component = data.get("component", "unknown")
        self.component_status[component] = data


def _get_state() -> WebState:
    """Access the shared state attached to the router."""
    return router.state  # type: ignore[attr-defined]


def _get(name: str) -> Any:
    return getattr(router, name, None)


def _extract_token(ws: WebSocket) -> str:
    header = ws.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ws.query_params.get("token", "")


# ── REST endpoints ────────────────────────────────────────────────


@router.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "ts": now_ms()}


@router.get("/api/status")
async def get_status() -> dict[str, Any]:
    """Return component statuses, client counts, mood and TTS availability."""
    state = _get_state()
    broadcaster = _get("broadcaster")
    narration = _get("narration")
    synthesis = _get("synthesis")
    return {
        "components": state.component_status,
        "stream_clients": broadcaster.active_count if broadcaster is not None else 0,
        "agent_connected": state.agent_connections > 0,
        "mood": narration.mood.current.value if narration is not None else None,
        "tts": synthesis.availability if synthesis is not None else {},
        "uptime_s": round(time.time() - state.started_at, 1),
    }


# ── WebSocket endpoints ──────────────────────────────────────────


async def _receive_frame(ws: WebSocket) -> str | bytes:
    """Next data frame; raises ``WebSocketDisconnect`` when the peer leaves."""
    message = await ws.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    if message.get("text") is not None:
        return message["text"]
    return message.get("bytes") or b""


@router.websocket("/ws/stream")
async def websocket_stream(ws: WebSocket) -> None:
    """Presentation clients: receive every event, may send chat messages."""
    broadcaster = _get("broadcaster")
    chat = _get("chat_manager")
    identity = ws.client.host if ws.client else "unknown"
    with structlog.contextvars.bound_contextvars(connection="stream", client=identity):
        await broadcaster.register(ws)
        try:
            while True:
                raw = await _receive_frame(ws)
                if isinstance(raw, bytes):
                    logger.debug("Ignoring binary frame from client")
                    continue
                try:
                    event = Event.from_wire(raw)
                except InvalidEventError as exc:
                    logger.debug("Ignoring malformed client message: %s", exc)
                    continue
                if event.kind == EventKind.CHAT_MESSAGE.value and chat is not None:
                    await chat.handle_message(ws, event.payload, identity)
                else:
                    logger.debug("Ignoring client message of type %r", event.kind)
        except WebSocketDisconnect:
            pass
        finally:
            await broadcaster.unregister(ws)


@router.websocket("/ws/agent")
async def websocket_agent(ws: WebSocket) -> None:
    """Agent bridge: every message is routed in the background."""
    identity = ws.client.host if ws.client else "unknown"
    with structlog.contextvars.bound_contextvars(connection="agent", client=identity):
        secret = _get("agent_secret") or ""
        if secret and not hmac.compare_digest(_extract_token(ws), secret):
            logger.warning("Agent connection rejected: bad token")
            await ws.close(code=AUTH_FAILED_CLOSE_CODE)
            return

        state = _get_state()
        event_router = _get("event_router")
        await ws.accept()
        state.agent_connections += 1
        logger.info("Agent connected")
        try:
            await ws.send_text(
                json.dumps(Event.create(EventKind.CONNECTED, {"status": "ok"}).to_wire())
            )
            while True:
                raw = await _receive_frame(ws)
                event_router.dispatch_raw(raw, AGENT_KINDS)
        except WebSocketDisconnect:
            pass
        finally:
            state.agent_connections -= 1
            logger.info("Agent disconnected")
