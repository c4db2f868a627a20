"""Fixed-window rate limiting and text sanitization for viewer chat."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

_ESCAPES = (
    ("&", "&amp;"),  # must run first
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
)


def sanitize(text: str) -> str:
    """Escape HTML-significant characters and trim surrounding whitespace."""
    for raw, escaped in _ESCAPES:
        text = text.replace(raw, escaped)
    return text.strip()


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


class RateLimiter:
    """At most ``limit`` messages per ``window_s`` per identity.

    The window is fixed: it starts with the first accepted message and the
    count resets only once it has fully elapsed.
    """

    def __init__(
        self,
        limit: int = 3,
        window_s: float = 10.0,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def allow(self, identity: str, now: float | None = None) -> bool:
        """Count a message for *identity*; False if it exceeds the limit."""
        now = self._clock() if now is None else now
        entry = self._entries.get(identity)
        if entry is None or now > entry.reset_at:
            self._entries[identity] = RateLimitEntry(1, now + self.window_s)
            return True
        if entry.count >= self.limit:
            return False
        entry.count += 1
        return True

    def sweep(self, now: float | None = None) -> int:
        """Drop entries whose window has expired; return how many."""
        now = self._clock() if now is None else now
        expired = [key for key, entry in self._entries.items() if now > entry.reset_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d rate-limit entries", len(expired))
        return len(expired)
