"""Kokoro provider: local high-quality synthesis with real phoneme timings."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from typing import Any

import httpx

from nox_stream.synthesis.base import Phoneme, SynthesisError, SynthesisProvider, SynthesisResult
from nox_stream.synthesis.phonemes import estimate_duration_from_text

logger = logging.getLogger(__name__)


class KokoroProvider(SynthesisProvider):
    """Talks to a Kokoro HTTP server (``POST /synthesize``)."""

    name = "kokoro"

    def __init__(
        self,
        url: str,
        cache_dir: str | Path,
        *,
        voice: str = "af_heart",
        speed: float = 1.0,
        probe_timeout_s: float = 2.0,
        audio_url_prefix: str = "/audio",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(cache_dir, audio_url_prefix)
        self.url = url.rstrip("/")
        self.voice = voice
        self.speed = speed
        self.probe_timeout_s = probe_timeout_s
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def is_available(self) -> bool:
        # Any HTTP answer means the server is up
        try:
            await self._get_client().get(self.url, timeout=self.probe_timeout_s)
        except httpx.HTTPError as exc:
            logger.info("Kokoro not reachable at %s: %s", self.url, exc)
            return False
        return True

    async def synthesize(self, text: str, digest: str) -> SynthesisResult:
        response = await self._get_client().post(
            f"{self.url}/synthesize",
            json={
                "text": text,
                "voice": self.voice,
                "speed": self.speed,
                "return_phonemes": True,
            },
        )
        response.raise_for_status()
        data: dict[str, Any] = response.json()

        audio_b64 = data.get("audio")
        if not audio_b64:
            raise SynthesisError("no audio in Kokoro response")
        try:
            audio = base64.b64decode(audio_b64)
        except (binascii.Error, ValueError) as exc:
            raise SynthesisError(f"bad audio encoding from Kokoro: {exc}") from exc

        path = self.artifact_path(digest, "wav")
        await asyncio.to_thread(path.write_bytes, audio)

        phonemes = tuple(
            Phoneme.from_wire(p)
            for p in data.get("phonemes") or []
            if float(p.get("end", 0)) > float(p.get("start", 0))
        )
        duration = phonemes[-1].end if phonemes else estimate_duration_from_text(text)
        return SynthesisResult(
            audio_path=str(path),
            audio_ref=self.audio_ref_for(path),
            phonemes=phonemes,
            duration=duration,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
