"""Central dispatch: validate, enrich with speech, broadcast.

Every event from the agent bridge, the narration engine and the chat
responder passes through ``EventRouter.route``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Protocol

from nox_stream.core.event_bus import EventBus
from nox_stream.core.events import (
    SPOKEN_KINDS,
    Event,
    EventKind,
    InvalidEventError,
    ToolCalledEvent,
    ToolResultEvent,
)
from nox_stream.synthesis.base import SynthesisResult

logger = logging.getLogger(__name__)

_EXIT_MARKER = re.compile(
    r"(?:exit(?:ed)?(?:\s+with)?(?:\s+code|\s+status)?)\s*[:=]?\s*(-?\d+)", re.IGNORECASE
)
_FAILURE_WORDS = re.compile(
    r"\b(?:error|failed|failure|fatal|traceback|command not found|permission denied)\b",
    re.IGNORECASE,
)


class Synthesizer(Protocol):
    async def synthesize(self, text: str) -> SynthesisResult: ...


class Broadcasts(Protocol):
    async def broadcast(self, event: Event) -> None: ...


def tool_result_succeeded(payload: dict[str, Any]) -> bool:
    """Decide whether a ``tool_result`` payload reports success."""
    for key in ("exitCode", "exit_code"):
        code = payload.get(key)
        if isinstance(code, int) and not isinstance(code, bool):
            return code == 0
    for key in ("isError", "is_error", "error"):
        if payload.get(key):
            return False

    output = str(payload.get("output") or "")
    marker = _EXIT_MARKER.search(output)
    if marker is not None:
        return int(marker.group(1)) == 0
    return _FAILURE_WORDS.search(output) is None


def _tool_call_details(payload: dict[str, Any]) -> tuple[str, str]:
    """Extract (tool name, input summary) from an ``executing`` payload.

    The polling bridge sends ``{command: <tool>, input: <args>}`` while the
    hook middleware sends ``{tool: <tool>, command: <cmdline>}``.
    """
    if "tool" in payload:
        return str(payload.get("tool") or "tool"), str(
            payload.get("input") or payload.get("command") or ""
        )
    return str(payload.get("command") or "tool"), str(payload.get("input") or "")


class EventRouter:
    """Validates events, enriches spoken ones, and hands them to the broadcaster."""

    def __init__(
        self,
        broadcaster: Broadcasts,
        synthesizer: Synthesizer | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.broadcaster = broadcaster
        self.synthesizer = synthesizer
        self.event_bus = event_bus
        self._tasks: set[asyncio.Task[None]] = set()
        self.routed_count = 0
        self.dropped_count = 0

    async def route(self, event: Event) -> None:
        """Route one event; invalid events are logged and dropped."""
        if not event.is_recognized:
            self.dropped_count += 1
            logger.warning("Dropping event with unrecognized type %r", event.kind)
            return
        if not event.has_valid_timestamp:
            self.dropped_count += 1
            logger.warning("Dropping %s event with invalid ts %r", event.kind, event.timestamp)
            return

        logger.debug("Routing %s", event.kind)
        if event.kind in SPOKEN_KINDS:
            await self._enrich(event)

        await self.broadcaster.broadcast(event)
        self.routed_count += 1
        await self._notify(event)

    async def route_raw(
        self,
        data: str | bytes | dict[str, Any],
        allowed: frozenset[str] | None = None,
    ) -> None:
        """Parse a wire message and route it; parse errors are dropped.

        ``allowed`` restricts which kinds this source may send.
        """
        try:
            event = Event.from_wire(data)
        except InvalidEventError as exc:
            self.dropped_count += 1
            logger.warning("Dropping malformed event: %s", exc)
            return
        if allowed is not None and event.kind not in allowed:
            self.dropped_count += 1
            logger.warning("Dropping %r event: not accepted from this source", event.kind)
            return
        await self.route(event)

    def dispatch(self, event: Event) -> asyncio.Task[None]:
        """Route in a background task so the caller is never blocked."""
        return self._spawn(self.route(event), event.kind or "?")

    def dispatch_raw(
        self,
        data: str | bytes | dict[str, Any],
        allowed: frozenset[str] | None = None,
    ) -> asyncio.Task[None]:
        return self._spawn(self.route_raw(data, allowed), "raw")

    async def drain(self) -> None:
        """Wait for every dispatched event to finish routing."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Any, label: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"route-{label}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Routing task %s failed: %s", task.get_name(), exc)

    async def _enrich(self, event: Event) -> None:
        text = event.payload.get("text")
        if not isinstance(text, str) or not text.strip():
            return
        if self.synthesizer is None:
            result = SynthesisResult.empty()
        else:
            try:
                result = await self.synthesizer.synthesize(text)
            except Exception as exc:
                logger.warning("TTS enrichment failed: %s", exc)
                result = SynthesisResult.empty()
        event.payload.update(result.enrichment())
        logger.info(
            "TTS enriched %s: audio=%s phonemes=%d",
            event.kind,
            "set" if result.audio_ref else "none",
            len(result.phonemes),
        )

    async def _notify(self, event: Event) -> None:
        """Tell internal observers about agent activity."""
        if self.event_bus is None:
            return
        if event.kind == EventKind.EXECUTING.value:
            tool_name, input_summary = _tool_call_details(event.payload)
            await self.event_bus.publish(
                ToolCalledEvent(tool_name=tool_name, input_summary=input_summary)
            )
        elif event.kind == EventKind.TOOL_RESULT.value:
            await self.event_bus.publish(
                ToolResultEvent(
                    success=tool_result_succeeded(event.payload),
                    output=str(event.payload.get("output") or ""),
                )
            )
