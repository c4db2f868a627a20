"""Tests for chat admission, rate limiting and the AI responder."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from nox_stream.chat.manager import ChatManager, ChatRejection
from nox_stream.chat.ratelimit import RateLimiter, sanitize
from nox_stream.chat.responder import ChatResponder
from nox_stream.core.event_bus import EventBus
from nox_stream.core.events import ChatReceivedEvent, Event
from nox_stream.core.models import ChatConfig

T0 = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeBroadcaster:
    def __init__(self) -> None:
        self.sent: list[Event] = []

    async def broadcast(self, event: Event) -> None:
        self.sent.append(event)


class FakeSocket:
    def __init__(self) -> None:
        self.messages: list[str] = []

    async def send_text(self, text: str) -> None:
        self.messages.append(text)


# ── Sanitize & rate limit ────────────────────────────────────────


class TestSanitize:
    def test_escapes_html(self) -> None:
        assert sanitize('<script>alert("x")</script>') == (
            "&lt;script&gt;alert(&quot;x&quot;)&lt;/script&gt;"
        )

    def test_ampersand_escaped_once(self) -> None:
        assert sanitize("a & b's &lt;") == "a &amp; b&#x27;s &amp;lt;"

    def test_trims(self) -> None:
        assert sanitize("   hi   ") == "hi"


class TestRateLimiter:
    def test_three_per_window(self) -> None:
        limiter = RateLimiter(3, 10.0)
        assert [limiter.allow("1.2.3.4", T0 + i) for i in range(4)] == [True, True, True, False]

    def test_window_resets(self) -> None:
        limiter = RateLimiter(3, 10.0)
        for i in range(3):
            limiter.allow("ip", T0 + i)
        assert limiter.allow("ip", T0 + 9) is False
        assert limiter.allow("ip", T0 + 10.5) is True

    def test_identities_are_independent(self) -> None:
        limiter = RateLimiter(1, 10.0)
        assert limiter.allow("a", T0)
        assert limiter.allow("b", T0)
        assert not limiter.allow("a", T0 + 1)

    def test_sweep_removes_expired(self) -> None:
        limiter = RateLimiter(3, 10.0)
        limiter.allow("old", T0)
        limiter.allow("new", T0 + 8)
        assert limiter.sweep(T0 + 12) == 1
        assert len(limiter) == 1


# ── Chat manager ─────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broadcaster() -> FakeBroadcaster:
    return FakeBroadcaster()


@pytest.fixture
def responder() -> MagicMock:
    return MagicMock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def manager(broadcaster, responder, bus, clock) -> ChatManager:
    return ChatManager(broadcaster, responder, bus, ChatConfig(), clock=clock)


class TestAdmission:
    async def test_admitted_message_is_broadcast_published_and_answered(
        self, manager: ChatManager, broadcaster: FakeBroadcaster, responder: MagicMock, bus: EventBus
    ) -> None:
        received: list[ChatReceivedEvent] = []

        async def on_chat(event: ChatReceivedEvent) -> None:
            received.append(event)

        bus.subscribe(ChatReceivedEvent, on_chat)
        ws = FakeSocket()

        event = await manager.handle_message(ws, {"username": "ana", "text": " <b>hi</b> "}, "1.1.1.1")

        assert event is not None
        assert broadcaster.sent == [event]
        assert event.kind == "chat_message"
        assert event.payload["text"] == "&lt;b&gt;hi&lt;/b&gt;"
        assert event.payload["username"] == "ana"
        assert event.payload["id"].startswith("msg_1_")
        assert received[0].text == "&lt;b&gt;hi&lt;/b&gt;"
        responder.submit.assert_called_once_with("ana", "&lt;b&gt;hi&lt;/b&gt;")
        assert ws.messages == []

    async def test_fourth_message_in_window_rejected(
        self, manager: ChatManager, broadcaster: FakeBroadcaster
    ) -> None:
        ws = FakeSocket()
        for i in range(4):
            await manager.handle_message(ws, {"username": "ana", "text": f"msg {i}"}, "1.1.1.1")

        assert len(broadcaster.sent) == 3
        assert len(ws.messages) == 1
        error = Event.from_wire(ws.messages[0])
        assert error.kind == "error"
        assert error.payload["reason"] == "rate_limited"
        assert "Rate limit" in error.payload["message"]

    async def test_window_reopens(
        self, manager: ChatManager, broadcaster: FakeBroadcaster, clock: FakeClock
    ) -> None:
        ws = FakeSocket()
        for i in range(3):
            await manager.handle_message(ws, {"username": "a", "text": "x"}, "ip")
        clock.now += 11
        assert await manager.handle_message(ws, {"username": "a", "text": "x"}, "ip") is not None

    @pytest.mark.parametrize(
        ("payload", "reason"),
        [
            ({"text": "no name"}, "invalid"),
            ({"username": 5, "text": "x"}, "invalid"),
            ({"username": "ana"}, "invalid"),
            ({"username": "ana", "text": "   "}, "invalid"),
            ({"username": "ana", "text": "x" * 281}, "too_long"),
        ],
    )
    async def test_rejections_go_to_sender_only(
        self,
        manager: ChatManager,
        broadcaster: FakeBroadcaster,
        responder: MagicMock,
        payload: dict,
        reason: str,
    ) -> None:
        ws = FakeSocket()
        assert await manager.handle_message(ws, payload, "ip") is None
        assert broadcaster.sent == []
        responder.submit.assert_not_called()
        assert Event.from_wire(ws.messages[0]).payload["reason"] == reason

    def test_length_checked_after_sanitizing(self, manager: ChatManager) -> None:
        # 70 "<" become 280 characters once escaped
        manager.admit({"username": "a", "text": "<" * 70}, "ip")
        with pytest.raises(ChatRejection) as exc_info:
            manager.admit({"username": "a", "text": "<" * 71}, "ip2")
        assert exc_info.value.reason == "too_long"


# ── AI responder ─────────────────────────────────────────────────


def _reply(text: str) -> MagicMock:
    return MagicMock(content=[MagicMock(text=text)])


class TestResponder:
    async def test_reply_emits_chat_response_and_narrate(self) -> None:
        emitted: list[Event] = []

        async def emit(event: Event) -> None:
            emitted.append(event)

        client = MagicMock()
        client.messages.create = AsyncMock(return_value=_reply("Hey Ana!"))
        responder = ChatResponder(emit, ChatConfig(), client=client)

        responder.submit("ana", "hello nox")
        await responder.join()

        assert [e.kind for e in emitted] == ["chat_response", "narrate"]
        assert emitted[0].payload == {"text": "Hey Ana!", "username": "ana", "inReplyTo": "hello nox"}
        assert emitted[1].payload == {"text": "Hey Ana!", "source": "chat"}
        assert [t.role for t in responder.history] == ["viewer", "presenter"]

    async def test_messages_while_busy_coalesce_latest_wins(self) -> None:
        gate = asyncio.Event()
        prompts: list[str] = []

        async def create(**kwargs):
            prompts.append(kwargs["messages"][-1]["content"])
            await gate.wait()
            return _reply("ok")

        client = MagicMock()
        client.messages.create = create
        responder = ChatResponder(AsyncMock(), ChatConfig(), client=client)

        responder.submit("a", "first")
        await asyncio.sleep(0)
        assert responder.busy
        responder.submit("b", "second")
        responder.submit("c", "third")
        gate.set()
        await responder.join()

        assert prompts == ["a: first", "c: third"]
        assert not responder.busy

    async def test_failure_uses_fallback_and_skips_history(self) -> None:
        emitted: list[Event] = []

        async def emit(event: Event) -> None:
            emitted.append(event)

        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=RuntimeError("overloaded"))
        config = ChatConfig()
        responder = ChatResponder(emit, config, client=client)

        responder.submit("ana", "hi")
        await responder.join()

        assert emitted[0].payload["text"] == config.fallback_reply
        assert emitted[1].payload == {"text": config.fallback_reply, "source": "chat"}
        assert responder.history == []

    async def test_timeout_uses_fallback(self) -> None:
        async def hang(**kwargs):
            await asyncio.sleep(10)

        client = MagicMock()
        client.messages.create = hang
        emit = AsyncMock()
        responder = ChatResponder(
            emit, ChatConfig(response_timeout_s=0.01), client=client
        )

        responder.submit("ana", "hi")
        await responder.join()

        first = emit.await_args_list[0].args[0]
        assert first.payload["text"] == ChatConfig().fallback_reply

    async def test_history_is_bounded_and_sent_as_context(self) -> None:
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=_reply("sure"))
        responder = ChatResponder(AsyncMock(), ChatConfig(history_max_pairs=2), client=client)

        for i in range(3):
            responder.submit("v", f"q{i}")
            await responder.join()

        assert [t.text for t in responder.history] == ["v: q1", "sure", "v: q2", "sure"]
        last_messages = client.messages.create.await_args.kwargs["messages"]
        assert [m["role"] for m in last_messages] == ["user", "assistant", "user", "assistant", "user"]
        assert last_messages[-1]["content"] == "v: q2"

    async def test_aclose_cancels_reply_after_timeout(self) -> None:
        started = asyncio.Event()

        async def hang(**kwargs):
            started.set()
            await asyncio.sleep(10)

        client = MagicMock()
        client.messages.create = hang
        emit = AsyncMock()
        responder = ChatResponder(emit, ChatConfig(), client=client)

        responder.submit("ana", "hi")
        await started.wait()
        responder.submit("bob", "queued")
        await responder.aclose(timeout=0.01)

        assert not responder.busy
        emit.assert_not_awaited()
