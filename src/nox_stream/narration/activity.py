"""Recent tool activity and its topical classification."""

from __future__ import annotations

import re
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Iterator


@dataclass(frozen=True)
class ActivityRecord:
    tool_name: str
    input_summary: str
    timestamp: float = field(default_factory=time.time)


# Command-line patterns checked in order; first match wins
_COMMAND_TOPICS: list[tuple[str, re.Pattern[str]]] = [
    ("git_push", re.compile(r"\bgit\s+push\b")),
    ("git_commit", re.compile(r"\bgit\s+commit\b")),
    ("git", re.compile(r"\bgit\b")),
    ("test", re.compile(r"\b(?:pytest|jest|vitest|(?:npm|pnpm|yarn|bun)\s+(?:run\s+)?test|cargo\s+test|go\s+test)\b")),
    ("install", re.compile(r"\b(?:(?:npm|pnpm|yarn|bun)\s+(?:install|add|i)|pip3?\s+install|apt(?:-get)?\s+install|brew\s+install)\b")),
    ("build", re.compile(r"\b(?:(?:npm|pnpm|yarn|bun)\s+run\s+build|make|cargo\s+build|tsc|vite\s+build)\b")),
    ("docker", re.compile(r"\b(?:docker|docker-compose|kubectl)\b")),
]

_TOOL_TOPICS: dict[str, str] = {
    "read": "file_read",
    "view": "file_read",
    "cat": "file_read",
    "write": "file_write",
    "edit": "file_write",
    "apply_patch": "file_write",
    "web_search": "web",
    "web_fetch": "web",
    "browser": "web",
}

_EXEC_TOOLS = frozenset({"exec", "bash", "shell", "run", "terminal", "process"})


def classify(record: ActivityRecord) -> str:
    """Map a tool call to a topic key used to pick narration lines."""
    tool = record.tool_name.strip().lower()
    if tool in _TOOL_TOPICS:
        return _TOOL_TOPICS[tool]

    command = record.input_summary.lower()
    if tool in _EXEC_TOOLS or not tool or tool == "tool":
        for topic, pattern in _COMMAND_TOPICS:
            if pattern.search(command):
                return topic
        return "exec"
    return "tool"


class ActivityWindow:
    """Bounded window of recent tool calls; the oldest fall out first."""

    def __init__(self, capacity: int = 20) -> None:
        self._records: deque[ActivityRecord] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ActivityRecord]:
        return iter(self._records)

    @property
    def capacity(self) -> int:
        return self._records.maxlen or 0

    def add(self, record: ActivityRecord) -> None:
        self._records.append(record)

    def clear(self) -> None:
        self._records.clear()

    def dominant(self) -> tuple[str, ActivityRecord] | None:
        """Most frequent topic and its most recent record.

        Ties go to the topic seen most recently.
        """
        if not self._records:
            return None
        topics = [(classify(r), r) for r in self._records]
        counts = Counter(topic for topic, _ in topics)
        best = max(counts.values())
        for topic, record in reversed(topics):
            if counts[topic] == best:
                return topic, record
        return None  # pragma: no cover
