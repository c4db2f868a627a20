"""Tests for the event router: validation, enrichment and bus notification."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from nox_stream.core.event_bus import EventBus
from nox_stream.core.event_router import EventRouter, tool_result_succeeded
from nox_stream.core.events import (
    AGENT_KINDS,
    Event,
    EventKind,
    ToolCalledEvent,
    ToolResultEvent,
)
from nox_stream.synthesis.base import Phoneme, SynthesisResult


class FakeBroadcaster:
    def __init__(self) -> None:
        self.sent: list[Event] = []

    async def broadcast(self, event: Event) -> None:
        self.sent.append(event)


SPOKEN = SynthesisResult(
    audio_path="/tmp/nox-tts/abc.wav",
    audio_ref="/audio/abc.wav",
    phonemes=(Phoneme("AH", 0.05, 0.2), Phoneme("L", 0.2, 0.4)),
    duration=0.4,
)


@pytest.fixture
def broadcaster() -> FakeBroadcaster:
    return FakeBroadcaster()


@pytest.fixture
def synthesizer() -> AsyncMock:
    synth = AsyncMock()
    synth.synthesize = AsyncMock(return_value=SPOKEN)
    return synth


@pytest.fixture
def router(broadcaster: FakeBroadcaster, synthesizer: AsyncMock) -> EventRouter:
    return EventRouter(broadcaster, synthesizer, EventBus())


class TestValidation:
    async def test_unknown_kind_is_never_broadcast(
        self, router: EventRouter, broadcaster: FakeBroadcaster
    ) -> None:
        await router.route(Event(kind="moonwalk", timestamp=1, payload={}))
        assert broadcaster.sent == []
        assert router.dropped_count == 1

    async def test_non_numeric_timestamp_is_dropped(
        self, router: EventRouter, broadcaster: FakeBroadcaster
    ) -> None:
        await router.route(Event(kind="thinking", timestamp="yesterday", payload={}))
        assert broadcaster.sent == []

    async def test_malformed_json_is_dropped(
        self, router: EventRouter, broadcaster: FakeBroadcaster
    ) -> None:
        await router.route_raw("{{{")
        assert broadcaster.sent == []
        assert router.dropped_count == 1

    async def test_plain_kinds_pass_through_unchanged(
        self, router: EventRouter, broadcaster: FakeBroadcaster, synthesizer: AsyncMock
    ) -> None:
        await router.route_raw(json.dumps({"type": "thinking", "ts": 10, "payload": {"x": 1}}))
        assert len(broadcaster.sent) == 1
        assert broadcaster.sent[0].payload == {"x": 1}
        synthesizer.synthesize.assert_not_awaited()

    @pytest.mark.parametrize("kind", ["chat_message", "chat_response", "connected"])
    async def test_agent_cannot_send_server_side_kinds(
        self, router: EventRouter, broadcaster: FakeBroadcaster, kind: str
    ) -> None:
        raw = json.dumps(
            {
                "type": kind,
                "ts": 10,
                "payload": {"username": "<b>x</b>", "text": "<script>alert(1)</script>"},
            }
        )
        await router.route_raw(raw, AGENT_KINDS)
        assert broadcaster.sent == []
        assert router.dropped_count == 1

    async def test_agent_kinds_are_accepted(
        self, router: EventRouter, broadcaster: FakeBroadcaster
    ) -> None:
        for kind in ("thinking", "executing", "mood", "task"):
            await router.route_raw({"type": kind, "ts": 10, "payload": {}}, AGENT_KINDS)
        assert [e.kind for e in broadcaster.sent] == ["thinking", "executing", "mood", "task"]

    async def test_dispatch_raw_applies_allowed_kinds(
        self, router: EventRouter, broadcaster: FakeBroadcaster
    ) -> None:
        router.dispatch_raw({"type": "chat_message", "ts": 1, "payload": {}}, AGENT_KINDS)
        router.dispatch_raw({"type": "idle", "ts": 2, "payload": {}}, AGENT_KINDS)
        await router.drain()
        assert [e.kind for e in broadcaster.sent] == ["idle"]


class TestEnrichment:
    async def test_speaking_is_enriched(
        self, router: EventRouter, broadcaster: FakeBroadcaster, synthesizer: AsyncMock
    ) -> None:
        await router.route(Event.create(EventKind.SPEAKING, {"text": "Hello chat"}))

        synthesizer.synthesize.assert_awaited_once_with("Hello chat")
        payload = broadcaster.sent[0].payload
        assert payload["text"] == "Hello chat"
        assert payload["audioUrl"] == "/audio/abc.wav"
        assert payload["phonemes"][0] == {"phoneme": "AH", "start": 0.05, "end": 0.2}
        assert payload["duration"] == 0.4

    async def test_empty_text_is_not_synthesized(
        self, router: EventRouter, broadcaster: FakeBroadcaster, synthesizer: AsyncMock
    ) -> None:
        await router.route(Event.create(EventKind.NARRATE, {"text": "   "}))
        synthesizer.synthesize.assert_not_awaited()
        assert "audioUrl" not in broadcaster.sent[0].payload

    async def test_synthesis_failure_degrades_to_empty_audio(
        self, router: EventRouter, broadcaster: FakeBroadcaster, synthesizer: AsyncMock
    ) -> None:
        synthesizer.synthesize.side_effect = RuntimeError("tts down")
        await router.route(Event.create(EventKind.NARRATE, {"text": "still here"}))

        payload = broadcaster.sent[0].payload
        assert payload["audioUrl"] == ""
        assert payload["phonemes"] == []
        assert payload["duration"] == 0.0

    async def test_without_synthesizer_events_get_empty_audio(
        self, broadcaster: FakeBroadcaster
    ) -> None:
        router = EventRouter(broadcaster)
        await router.route(Event.create(EventKind.SPEAKING, {"text": "hi"}))
        assert broadcaster.sent[0].payload["audioUrl"] == ""


class TestDispatch:
    async def test_dispatch_runs_in_background(
        self, router: EventRouter, broadcaster: FakeBroadcaster, synthesizer: AsyncMock
    ) -> None:
        gate = asyncio.Event()

        async def slow(text: str) -> SynthesisResult:
            await gate.wait()
            return SPOKEN

        synthesizer.synthesize.side_effect = slow
        router.dispatch(Event.create(EventKind.SPEAKING, {"text": "slow"}))
        router.dispatch_raw(json.dumps({"type": "typing", "ts": 1, "payload": {}}))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        # The unenriched event overtakes the slow one
        assert [e.kind for e in broadcaster.sent] == ["typing"]
        gate.set()
        await router.drain()
        assert [e.kind for e in broadcaster.sent] == ["typing", "speaking"]


class TestBusNotification:
    async def test_executing_publishes_tool_called(self, broadcaster: FakeBroadcaster) -> None:
        bus = EventBus()
        received: list[ToolCalledEvent] = []

        async def on_call(event: ToolCalledEvent) -> None:
            received.append(event)

        bus.subscribe(ToolCalledEvent, on_call)
        router = EventRouter(broadcaster, event_bus=bus)

        await router.route(Event.create(EventKind.EXECUTING, {"command": "exec", "input": "npm test"}))
        await router.route(Event.create(EventKind.EXECUTING, {"tool": "exec", "command": "git push"}))

        assert [(e.tool_name, e.input_summary) for e in received] == [
            ("exec", "npm test"),
            ("exec", "git push"),
        ]

    async def test_tool_result_publishes_outcome(self, broadcaster: FakeBroadcaster) -> None:
        bus = EventBus()
        received: list[ToolResultEvent] = []

        async def on_result(event: ToolResultEvent) -> None:
            received.append(event)

        bus.subscribe(ToolResultEvent, on_result)
        router = EventRouter(broadcaster, event_bus=bus)

        await router.route(Event.create(EventKind.TOOL_RESULT, {"output": "all good"}))
        await router.route(
            Event.create(EventKind.TOOL_RESULT, {"output": "fatal: rejected (exit code 1)"})
        )

        assert [e.success for e in received] == [True, False]


class TestToolResultSucceeded:
    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"exitCode": 0, "output": "error: ignored"}, True),
            ({"exit_code": 2}, False),
            ({"isError": True, "output": "fine"}, False),
            ({"output": "Process exited with code 0"}, True),
            ({"output": "Command exited with code 128"}, False),
            ({"output": "Traceback (most recent call last):"}, False),
            ({"output": "bash: foo: command not found"}, False),
            ({"output": "3 passed in 0.2s"}, True),
            ({}, True),
        ],
    )
    def test_detection(self, payload: dict, expected: bool) -> None:
        assert tool_result_succeeded(payload) is expected
