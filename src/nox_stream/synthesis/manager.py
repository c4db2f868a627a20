"""Synthesis manager: cache lookup, then the provider fallback chain."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from nox_stream.core.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
)
from nox_stream.synthesis.base import SynthesisProvider, SynthesisResult
from nox_stream.synthesis.cache import SynthesisCache, normalize_text, text_digest
from nox_stream.synthesis.phonemes import complete_result

logger = logging.getLogger(__name__)


class SynthesisManager:
    """Orchestrates an ordered chain of providers behind a shared cache.

    ``synthesize`` never raises: a cache hit short-circuits the chain,
    otherwise providers are tried in order (each bounded by a timeout and
    skipped on failure), and if every one fails the empty result is
    returned so the caller can broadcast without audio.
    """

    def __init__(
        self,
        providers: Sequence[SynthesisProvider],
        cache: SynthesisCache | None = None,
        *,
        provider_timeout_s: float = 15.0,
        availability_timeout_s: float = 5.0,
        breaker_config: CircuitBreakerConfig | None = None,
    ) -> None:
        self.providers = list(providers)
        self.cache = cache
        self.provider_timeout_s = provider_timeout_s
        self.availability_timeout_s = availability_timeout_s
        self._availability: dict[str, bool] = {}
        self._breakers = {
            p.name: CircuitBreaker(f"tts-{p.name}", breaker_config)
            for p in self.providers
        }

    @property
    def availability(self) -> dict[str, bool]:
        """Availability of each provider checked so far."""
        return dict(self._availability)

    async def check_availability(self) -> dict[str, bool]:
        """Query every provider that has not been checked yet, concurrently."""
        pending = [p for p in self.providers if p.name not in self._availability]
        await asyncio.gather(*(self._is_available(p) for p in pending))
        return self.availability

    async def _is_available(self, provider: SynthesisProvider) -> bool:
        cached = self._availability.get(provider.name)
        if cached is not None:
            return cached
        try:
            available = bool(
                await asyncio.wait_for(
                    provider.is_available(), timeout=self.availability_timeout_s
                )
            )
        except Exception as exc:
            logger.warning("Availability check for %s failed: %s", provider.name, exc)
            available = False
        # Another task may have finished the same check meanwhile
        self._availability.setdefault(provider.name, available)
        logger.info("TTS provider %s available: %s", provider.name, available)
        return self._availability[provider.name]

    async def synthesize(self, text: str) -> SynthesisResult:
        normalized = normalize_text(text)
        if not normalized:
            return SynthesisResult.empty()

        digest = text_digest(normalized)
        cached = await self._cache_get(digest)
        if cached is not None:
            logger.debug("TTS cache hit for %s", digest)
            return cached

        for provider in self.providers:
            if not await self._is_available(provider):
                continue
            try:
                logger.info("Using %s for: %r", provider.name, normalized[:50])
                result = await self._breakers[provider.name].call(
                    self._attempt, provider, normalized, digest
                )
            except CircuitOpenError as exc:
                logger.debug("Skipping %s: %s", provider.name, exc)
                continue
            except asyncio.TimeoutError:
                logger.warning(
                    "TTS provider %s timed out after %.1fs",
                    provider.name,
                    self.provider_timeout_s,
                )
                continue
            except Exception as exc:
                logger.warning("TTS provider %s failed: %s", provider.name, exc)
                continue

            if result.is_empty:
                logger.warning("TTS provider %s returned no audio", provider.name)
                continue
            result = complete_result(result, normalized)
            await self._cache_put(digest, result)
            return result

        logger.error("All TTS providers failed, broadcasting without audio")
        return SynthesisResult.empty()

    async def _attempt(
        self, provider: SynthesisProvider, text: str, digest: str
    ) -> SynthesisResult:
        return await asyncio.wait_for(
            provider.synthesize(text, digest), timeout=self.provider_timeout_s
        )

    async def _cache_get(self, digest: str) -> SynthesisResult | None:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(digest)
        except Exception as exc:
            logger.error("TTS cache read failed for %s: %s", digest, exc)
            return None

    async def _cache_put(self, digest: str, result: SynthesisResult) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.put(digest, result)
        except Exception as exc:
            logger.error("TTS cache write failed for %s: %s", digest, exc)

    async def aclose(self) -> None:
        for provider in self.providers:
            try:
                await provider.aclose()
            except Exception as exc:
                logger.debug("Closing %s failed: %s", provider.name, exc)
