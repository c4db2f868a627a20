"""ElevenLabs provider: paid cloud synthesis, no phoneme data."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from nox_stream.core.resilience import RetryConfig, retry_async
from nox_stream.synthesis.base import SynthesisError, SynthesisProvider, SynthesisResult
from nox_stream.synthesis.phonemes import estimate_duration_from_size

logger = logging.getLogger(__name__)

API_BASE = "https://api.elevenlabs.io/v1"


class _TransientError(SynthesisError):
    """A failure worth retrying (5xx, 429, transport)."""


class ElevenLabsProvider(SynthesisProvider):
    """ElevenLabs text-to-speech over its REST API."""

    name = "elevenlabs"

    def __init__(
        self,
        api_key: str,
        cache_dir: str | Path,
        *,
        voice_id: str = "21m00Tcm4TlvDq8ikWAM",
        model_id: str = "eleven_monolingual_v1",
        retry: RetryConfig | None = None,
        audio_url_prefix: str = "/audio",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(cache_dir, audio_url_prefix)
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.retry = retry or RetryConfig()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def is_available(self) -> bool:
        if not self.api_key:
            return False
        try:
            response = await self._get_client().get(
                f"{API_BASE}/voices", headers={"xi-api-key": self.api_key}
            )
        except httpx.HTTPError as exc:
            logger.info("ElevenLabs not reachable: %s", exc)
            return False
        return response.is_success

    async def _request_audio(self, text: str) -> bytes:
        try:
            response = await self._get_client().post(
                f"{API_BASE}/text-to-speech/{self.voice_id}",
                headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
                json={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": {"stability": 0.5, "similarity_boost": 0.7},
                },
            )
        except httpx.TransportError as exc:
            raise _TransientError(f"ElevenLabs transport error: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise _TransientError(f"ElevenLabs API error: {response.status_code}")
        if not response.is_success:
            raise SynthesisError(
                f"ElevenLabs API error: {response.status_code} {response.text[:200]}"
            )
        return response.content

    async def synthesize(self, text: str, digest: str) -> SynthesisResult:
        audio = await retry_async(
            self._request_audio, text, config=self.retry, retry_on=(_TransientError,)
        )
        if not audio:
            raise SynthesisError("ElevenLabs returned empty audio")

        path = self.artifact_path(digest, "mp3")
        await asyncio.to_thread(path.write_bytes, audio)
        return SynthesisResult(
            audio_path=str(path),
            audio_ref=self.audio_ref_for(path),
            duration=estimate_duration_from_size(len(audio)),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
