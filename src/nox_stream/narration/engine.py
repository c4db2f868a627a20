"""Narration engine: turns agent and chat activity into moods and spoken lines.

The engine listens on the event bus, keeps an activity window and a mood
tracker, and on every tick decides whether to say something. Two
cooldowns govern it:

- event narration, after real activity, re-armed to a random interval
  after each line;
- idle musing, after a longer quiet period, capped at
  ``max_consecutive_idle`` lines until activity resumes.

Lines are routed as ``narrate`` events from a background task so the tick
never waits for speech synthesis.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from nox_stream.core.event_bus import EventBus
from nox_stream.core.events import (
    ChatReceivedEvent,
    Event,
    EventKind,
    SystemStatusEvent,
    ToolCalledEvent,
    ToolResultEvent,
)
from nox_stream.core.models import MoodConfig, NarrationConfig
from nox_stream.narration import lines
from nox_stream.narration.activity import ActivityRecord, ActivityWindow
from nox_stream.narration.mood import MoodState, MoodTracker

logger = logging.getLogger(__name__)

Emit = Callable[[Event], Awaitable[None]]


@dataclass(frozen=True)
class NarrationChoice:
    """A selected line and the rule that selected it."""

    category: str  # "high_energy", "error", "topic:<key>" or "idle"
    text: str


def truncate(text: str, limit: int) -> str:
    clean = " ".join(text.split())
    return clean if len(clean) <= limit else clean[:limit] + "…"


class NarrationEngine:
    """Mood tracking plus cooldown-governed narration."""

    def __init__(
        self,
        event_bus: EventBus,
        emit: Emit,
        config: NarrationConfig | None = None,
        mood_config: MoodConfig | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.event_bus = event_bus
        self.config = config or NarrationConfig()
        self._emit = emit
        self._rng = rng or random.Random()
        self._clock = clock

        started = clock()
        self.mood = MoodTracker(mood_config, started_at=started)
        self.window = ActivityWindow(self.config.activity_window_size)

        self._pending_activity = False
        self._last_result_failed: bool | None = None
        self._calls_since_narration = 0
        self._next_event_at = 0.0
        self._last_activity_at = started
        self._last_idle_at = started
        self.idle_count = 0

        self._narrating = False
        self._loop_task: asyncio.Task[None] | None = None
        self._speech_tasks: set[asyncio.Task[None]] = set()

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        """Subscribe to activity events and start the tick loop."""
        self.event_bus.subscribe(ToolCalledEvent, self._on_tool_called)
        self.event_bus.subscribe(ToolResultEvent, self._on_tool_result)
        self.event_bus.subscribe(ChatReceivedEvent, self._on_chat)
        self._loop_task = asyncio.create_task(self._run(), name="narration-tick")
        await self.event_bus.publish(
            SystemStatusEvent(
                component="narration",
                status="running",
                message=f"Narration engine started (mood: {self.mood.current.value})",
            )
        )
        logger.info("Narration engine started")

    async def stop(self) -> None:
        self.event_bus.unsubscribe(ToolCalledEvent, self._on_tool_called)
        self.event_bus.unsubscribe(ToolResultEvent, self._on_tool_result)
        self.event_bus.unsubscribe(ChatReceivedEvent, self._on_chat)
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.event_bus.publish(
            SystemStatusEvent(component="narration", status="idle", message="Narration stopped")
        )
        logger.info("Narration engine stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.config.tick_interval_s)
            try:
                await self.tick()
            except Exception as exc:
                logger.error("Narration tick failed: %s", exc)

    # ── Activity inputs ────────────────────────────────────────────

    async def _on_tool_called(self, event: ToolCalledEvent) -> None:
        now = self._clock()
        self.window.add(ActivityRecord(event.tool_name, event.input_summary, now))
        self._calls_since_narration += 1
        self._pending_activity = True
        self.mood.record_tool_call(now)
        self._mark_activity(now)
        await self.update_mood(now)

    async def _on_tool_result(self, event: ToolResultEvent) -> None:
        now = self._clock()
        self._last_result_failed = not event.success
        self._pending_activity = True
        self.mood.record_tool_result(event.success)
        self._mark_activity(now)
        await self.update_mood(now)

    async def _on_chat(self, event: ChatReceivedEvent) -> None:
        now = self._clock()
        self.mood.record_chat(event.text, now)
        self._mark_activity(now)
        await self.update_mood(now)

    def _mark_activity(self, now: float) -> None:
        self._last_activity_at = now
        self.idle_count = 0

    # ── Mood ───────────────────────────────────────────────────────

    async def update_mood(self, now: float | None = None) -> MoodState | None:
        """Re-evaluate the mood and emit a ``mood`` event if it changed."""
        previous = self.mood.current
        mood = self.mood.evaluate(self._clock() if now is None else now)
        if mood is not None:
            await self._emit(
                Event.create(
                    EventKind.MOOD, {"mood": mood.value, "previous": previous.value}
                )
            )
        return mood

    # ── Narration ──────────────────────────────────────────────────

    def _select_activity(self) -> NarrationChoice | None:
        """Pick a line for unnarrated activity, or None if nothing is worth saying."""
        if self._calls_since_narration >= self.config.rapid_activity_threshold:
            return NarrationChoice("high_energy", self._rng.choice(lines.HIGH_ENERGY_LINES))
        if self._last_result_failed:
            return NarrationChoice("error", self._rng.choice(lines.ERROR_LINES))

        dominant = self.window.dominant()
        if dominant is None:
            return None
        topic, record = dominant
        template = self._rng.choice(lines.TOPIC_LINES.get(topic, lines.TOPIC_LINES["tool"]))
        subject = record.input_summary if topic != "tool" else record.tool_name
        text = template.format(
            input=truncate(subject or record.tool_name, self.config.input_max_chars)
        )
        return NarrationChoice(f"topic:{topic}", text)

    def _select_idle(self) -> NarrationChoice:
        idle_lines = lines.IDLE_LINES.get(self.mood.current, lines.IDLE_LINES[MoodState.NEUTRAL])
        return NarrationChoice("idle", self._rng.choice(idle_lines))

    def maybe_narrate(self, now: float | None = None) -> NarrationChoice | None:
        """Return a line if a cooldown allows one now, and arm the next cooldown."""
        now = self._clock() if now is None else now
        if self._narrating:
            return None

        cfg = self.config
        if self._pending_activity:
            if now < self._next_event_at:
                return None
            choice = self._select_activity()
            if choice is None:
                # Only a successful result for an already narrated call
                self._reset_activity()
                return None
            self._next_event_at = now + self._rng.uniform(
                cfg.event_cooldown_min_s, cfg.event_cooldown_max_s
            )
        else:
            if (
                self.idle_count >= cfg.max_consecutive_idle
                or now - self._last_activity_at < cfg.idle_interval_s
                or now - self._last_idle_at < cfg.idle_interval_s
            ):
                return None
            choice = self._select_idle()
            self.idle_count += 1
            self._last_idle_at = now

        # Debounce: each line covers everything that happened before it
        self._reset_activity()
        return choice

    def _reset_activity(self) -> None:
        self.window.clear()
        self._calls_since_narration = 0
        self._pending_activity = False
        self._last_result_failed = None

    async def tick(self, now: float | None = None) -> NarrationChoice | None:
        """Update the mood and start speaking a line if one is due."""
        now = self._clock() if now is None else now
        await self.update_mood(now)
        choice = self.maybe_narrate(now)
        if choice is None:
            return None

        self._narrating = True
        task = asyncio.create_task(self._speak(choice), name="narration-speak")
        self._speech_tasks.add(task)
        task.add_done_callback(self._on_speech_done)
        return choice

    async def wait_speech(self) -> None:
        """Wait until lines being spoken have been routed."""
        while self._speech_tasks:
            await asyncio.gather(*list(self._speech_tasks), return_exceptions=True)

    async def _speak(self, choice: NarrationChoice) -> None:
        payload: dict[str, Any] = {
            "text": choice.text,
            "source": "narration",
            "category": choice.category,
            "mood": self.mood.current.value,
        }
        try:
            await self._emit(Event.create(EventKind.NARRATE, payload))
        finally:
            self._narrating = False

    def _on_speech_done(self, task: asyncio.Task[None]) -> None:
        self._speech_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Narration failed: %s", exc)
