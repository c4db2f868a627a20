"""Mood state machine driven by chat volume, sentiment and tool outcomes."""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from enum import Enum

from nox_stream.core.models import MoodConfig

logger = logging.getLogger(__name__)


class MoodState(str, Enum):
    NEUTRAL = "neutral"
    LONELY = "lonely"
    ENERGIZED = "energized"
    IRRITATED = "irritated"
    FRUSTRATED = "frustrated"
    CONFIDENT = "confident"
    EXCITED = "excited"


_COMPLIMENTS = re.compile(
    r"\b(?:love|awesome|amazing|great|nice|cool|good job|well done|gg|based|goat|genius|best|pog|poggers)\b",
    re.IGNORECASE,
)
_INSULTS = re.compile(
    r"\b(?:stupid|dumb|idiot|trash|garbage|sucks?|bad bot|hate|useless|boring|cringe|lame)\b",
    re.IGNORECASE,
)


def classify_sentiment(text: str) -> int:
    """+1 for a compliment, -1 for an insult, 0 otherwise."""
    positive = bool(_COMPLIMENTS.search(text))
    negative = bool(_INSULTS.search(text))
    if positive == negative:
        return 0
    return 1 if positive else -1


class _DecayingCounter:
    """A count that halves every ``half_life_s`` seconds."""

    def __init__(self, half_life_s: float) -> None:
        self.half_life_s = half_life_s
        self._value = 0.0
        self._updated_at = 0.0

    def value(self, now: float) -> float:
        if self._value == 0.0 or self.half_life_s <= 0:
            return self._value
        elapsed = max(0.0, now - self._updated_at)
        return self._value * 0.5 ** (elapsed / self.half_life_s)

    def add(self, now: float, amount: float = 1.0) -> None:
        self._value = self.value(now) + amount
        self._updated_at = now


class MoodTracker:
    """Keeps the counters that decide the presenter's mood.

    Transitions are a priority-ordered rule list evaluated against the
    counters; the same counters always give the same mood.
    """

    def __init__(self, config: MoodConfig | None = None, *, started_at: float | None = None) -> None:
        self.config = config or MoodConfig()
        self._chat_times: deque[float] = deque()
        self._tool_times: deque[float] = deque()
        self._compliments = _DecayingCounter(self.config.sentiment_half_life_s)
        self._insults = _DecayingCounter(self.config.sentiment_half_life_s)
        self.success_streak = 0
        self.failure_streak = 0
        self.last_chat_at = time.time() if started_at is None else started_at
        self.current = MoodState.NEUTRAL

    # ── Inputs ─────────────────────────────────────────────────────

    def record_chat(self, text: str, now: float) -> None:
        self._chat_times.append(now)
        self.last_chat_at = now
        sentiment = classify_sentiment(text)
        if sentiment > 0:
            self._compliments.add(now)
        elif sentiment < 0:
            self._insults.add(now)

    def record_tool_call(self, now: float) -> None:
        self._tool_times.append(now)

    def record_tool_result(self, success: bool) -> None:
        if success:
            self.success_streak += 1
            self.failure_streak = 0
        else:
            self.failure_streak += 1
            self.success_streak = 0

    # ── Derived values ─────────────────────────────────────────────

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.window_s
        for times in (self._chat_times, self._tool_times):
            while times and times[0] < cutoff:
                times.popleft()

    def chat_rate(self, now: float) -> float:
        """Chat messages per minute over the sliding window."""
        self._prune(now)
        return len(self._chat_times) * 60.0 / self.config.window_s

    def tool_calls(self, now: float) -> int:
        self._prune(now)
        return len(self._tool_times)

    def sentiment(self, now: float) -> tuple[float, float]:
        return self._compliments.value(now), self._insults.value(now)

    # ── Transition ─────────────────────────────────────────────────

    def compute(self, now: float) -> MoodState:
        cfg = self.config
        rate = self.chat_rate(now)
        compliments, insults = self.sentiment(now)

        if self.failure_streak >= cfg.frustrated_failure_streak:
            return MoodState.FRUSTRATED
        if rate >= cfg.irritated_chat_rate or (
            insults >= cfg.sentiment_threshold and insults > compliments
        ):
            return MoodState.IRRITATED
        if rate >= cfg.excited_chat_rate or (
            compliments >= cfg.sentiment_threshold and compliments > insults
        ):
            return MoodState.EXCITED
        if self.success_streak >= cfg.confident_success_streak:
            return MoodState.CONFIDENT
        if self.tool_calls(now) >= cfg.energized_tool_calls:
            return MoodState.ENERGIZED
        if now - self.last_chat_at >= cfg.lonely_after_s:
            return MoodState.LONELY
        return MoodState.NEUTRAL

    def evaluate(self, now: float) -> MoodState | None:
        """Recompute the mood; return it only if it changed."""
        mood = self.compute(now)
        if mood == self.current:
            return None
        logger.info("Mood %s -> %s", self.current.value, mood.value)
        self.current = mood
        return mood
