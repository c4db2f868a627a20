"""Wire events and typed internal bus events for the Nox stream server."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    """Closed vocabulary of event types carried on the wire."""

    THINKING = "thinking"
    TYPING = "typing"
    SPEAKING = "speaking"
    EXECUTING = "executing"
    TOOL_RESULT = "tool_result"
    IDLE = "idle"
    NARRATE = "narrate"
    MOOD = "mood"
    TASK = "task"
    CHAT_MESSAGE = "chat_message"
    CHAT_RESPONSE = "chat_response"
    CONNECTED = "connected"


RECOGNIZED_KINDS = frozenset(k.value for k in EventKind)

# Kinds the agent bridge may send; chat and handshake kinds are server-side only
AGENT_KINDS = frozenset(
    {
        EventKind.THINKING.value,
        EventKind.TYPING.value,
        EventKind.SPEAKING.value,
        EventKind.EXECUTING.value,
        EventKind.TOOL_RESULT.value,
        EventKind.IDLE.value,
        EventKind.NARRATE.value,
        EventKind.MOOD.value,
        EventKind.TASK.value,
    }
)

# Kinds that get speech-synthesis enrichment when they carry text
SPOKEN_KINDS = frozenset({EventKind.SPEAKING.value, EventKind.NARRATE.value})


class InvalidEventError(ValueError):
    """Raised when a wire message cannot be turned into an Event."""


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Event:
    """A single event in the wire envelope ``{"type", "ts", "payload"}``.

    ``kind`` is kept as a plain string so that unrecognized values can be
    represented (and rejected) by the router instead of failing at parse time.
    """

    kind: str
    timestamp: Any
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, kind: EventKind | str, payload: dict[str, Any] | None = None) -> Event:
        """Build a new event stamped with the current time."""
        value = kind.value if isinstance(kind, EventKind) else kind
        return cls(kind=value, timestamp=now_ms(), payload=dict(payload or {}))

    @classmethod
    def from_wire(cls, data: str | bytes | dict[str, Any]) -> Event:
        """Parse a wire message.

        Raises:
            InvalidEventError: if the message is not JSON or not an object.
        """
        if isinstance(data, (str, bytes, bytearray)):
            try:
                data = json.loads(data)
            except (ValueError, UnicodeDecodeError) as exc:
                raise InvalidEventError(f"unparseable event: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidEventError(f"event must be an object, got {type(data).__name__}")

        payload = data.get("payload")
        return cls(
            kind=data.get("type") if isinstance(data.get("type"), str) else "",
            timestamp=data.get("ts"),
            payload=payload if isinstance(payload, dict) else {},
        )

    @property
    def is_recognized(self) -> bool:
        return self.kind in RECOGNIZED_KINDS

    @property
    def has_valid_timestamp(self) -> bool:
        ts = self.timestamp
        return isinstance(ts, (int, float)) and not isinstance(ts, bool)

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.kind, "ts": self.timestamp, "payload": self.payload}


# ── Internal bus events ────────────────────────────────────────────


@dataclass(frozen=True)
class ToolCalledEvent:
    """Published by the router when the agent starts executing a tool."""

    tool_name: str
    input_summary: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ToolResultEvent:
    """Published by the router when a tool result arrives."""

    success: bool
    output: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ChatReceivedEvent:
    """Published by the chat manager for every admitted viewer message."""

    username: str
    text: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SystemStatusEvent:
    """Component status for the status endpoint."""

    component: str  # "synthesis", "narration", "chat", "system"
    status: str  # "running", "error", "idle"
    message: str
    timestamp: float = field(default_factory=time.time)
