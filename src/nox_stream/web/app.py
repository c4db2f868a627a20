"""FastAPI application factory for the Nox stream server."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from nox_stream.core.event_bus import EventBus
from nox_stream.core.event_router import EventRouter
from nox_stream.core.events import SystemStatusEvent
from nox_stream.web.routes import WebState, router
from nox_stream.web.websocket import Broadcaster

logger = logging.getLogger(__name__)


def create_app(
    event_bus: EventBus,
    broadcaster: Broadcaster,
    event_router: EventRouter,
    *,
    chat_manager: Any = None,
    synthesis: Any = None,
    narration: Any = None,
    agent_secret: str = "",
    audio_dir: str | Path | None = None,
    audio_url_prefix: str = "/audio",
    static_dir: str | Path | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Component status events from the bus are kept in ``WebState`` for the
    status endpoint. Synthesized audio is served from *audio_dir*, and an
    optional front-end build is served from *static_dir* at ``/``.
    """
    state = WebState()

    async def _on_status(event: SystemStatusEvent) -> None:
        state.update_component_status(asdict(event))

    # Subscribe eagerly so statuses published before startup are kept
    event_bus.subscribe(SystemStatusEvent, _on_status)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Nox stream web server started")
        yield
        event_bus.unsubscribe(SystemStatusEvent, _on_status)
        await event_router.drain()
        logger.info("Nox stream web server stopped")

    app = FastAPI(title="Nox Stream", version="0.1.0", lifespan=lifespan)

    # Attach shared objects to the router so route handlers can access them.
    router.state = state  # type: ignore[attr-defined]
    router.broadcaster = broadcaster  # type: ignore[attr-defined]
    router.event_router = event_router  # type: ignore[attr-defined]
    router.chat_manager = chat_manager  # type: ignore[attr-defined]
    router.synthesis = synthesis  # type: ignore[attr-defined]
    router.narration = narration  # type: ignore[attr-defined]
    router.agent_secret = agent_secret  # type: ignore[attr-defined]

    app.include_router(router)

    if audio_dir is not None:
        audio_path = Path(audio_dir)
        audio_path.mkdir(parents=True, exist_ok=True)
        app.mount(audio_url_prefix, StaticFiles(directory=str(audio_path)), name="audio")

    # Mounted last so API and WS routes take priority.
    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")
    elif static_dir:
        logger.warning("Static directory %s not found; front-end not served", static_dir)

    return app
