"""Resilience utilities: retry with backoff and a per-backend circuit breaker.

Synthesis providers retry their own transient failures with
``retry_async``; the synthesis manager wraps every provider in a
``CircuitBreaker`` so a backend that keeps failing is skipped quickly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Retry with exponential backoff ─────────────────────────────────


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_attempts: int = 2
    base_delay_s: float = 0.5
    max_delay_s: float = 5.0
    exponential_base: float = 2.0


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """Execute an async function with exponential backoff retry.

    Args:
        func: The async callable to execute.
        config: Retry configuration.
        retry_on: Exception types that trigger a retry; anything else
            propagates immediately.

    Raises:
        The last exception if all attempts are exhausted.
    """
    cfg = config or RetryConfig()
    attempts = max(1, cfg.max_attempts)

    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except retry_on as exc:
            if attempt >= attempts - 1:
                raise
            delay = min(
                cfg.base_delay_s * (cfg.exponential_base ** attempt),
                cfg.max_delay_s,
            )
            logger.warning(
                "Attempt %d/%d of %s failed: %s (retrying in %.1fs)",
                attempt + 1,
                attempts,
                getattr(func, "__qualname__", "call"),
                exc,
                delay,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover


# ── Circuit Breaker ────────────────────────────────────────────────


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, calls rejected
    HALF_OPEN = "half_open"  # Probing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for the circuit breaker."""

    failure_threshold: int = 3
    recovery_timeout_s: float = 60.0
    half_open_max_calls: int = 1


class CircuitOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""


class CircuitBreaker:
    """Async circuit breaker.

    Counts consecutive failures and opens after ``failure_threshold``.
    Once ``recovery_timeout_s`` has passed it lets a single probe call
    through (half-open); success closes it again, failure re-opens it.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._half_open_calls = 0

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.config.recovery_timeout_s:
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                logger.info("Circuit %s half-open", self.name)
        return self._state

    async def call(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Execute a function through the circuit breaker."""
        current = self.state

        if current == CircuitState.OPEN:
            raise CircuitOpenError(f"circuit '{self.name}' is open")
        if (
            current == CircuitState.HALF_OPEN
            and self._half_open_calls >= self.config.half_open_max_calls
        ):
            raise CircuitOpenError(f"circuit '{self.name}' is probing recovery")

        if current == CircuitState.HALF_OPEN:
            self._half_open_calls += 1
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            # Not a verdict on the backend; release the half-open slot
            if current == CircuitState.HALF_OPEN:
                self._half_open_calls -= 1
            raise
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info("Circuit %s recovered", self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0

    def _on_failure(self) -> None:
        self._failure_count += 1
        if (
            self._state == CircuitState.HALF_OPEN
            or self._failure_count >= self.config.failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit %s open after %d failure(s)",
                self.name,
                self._failure_count,
            )

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
