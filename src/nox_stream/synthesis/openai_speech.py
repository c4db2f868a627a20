"""OpenAI speech provider (``audio.speech``), used when a key is configured."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from nox_stream.synthesis.base import SynthesisError, SynthesisProvider, SynthesisResult
from nox_stream.synthesis.phonemes import estimate_duration_from_size

logger = logging.getLogger(__name__)


class OpenAISpeechProvider(SynthesisProvider):
    """Synthesizes MP3 audio through the OpenAI async client."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        cache_dir: str | Path,
        *,
        model: str = "tts-1",
        voice: str = "alloy",
        audio_url_prefix: str = "/audio",
        client: object | None = None,
    ) -> None:
        super().__init__(cache_dir, audio_url_prefix)
        self.api_key = api_key
        self.model = model
        self.voice = voice
        self._client = client

    def _get_client(self):  # noqa: ANN202
        """Lazy-init the OpenAI async client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as exc:
                raise ImportError(
                    "The 'openai' package is required. Install it with: pip install openai"
                ) from exc
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def is_available(self) -> bool:
        return bool(self.api_key or self._client is not None)

    async def synthesize(self, text: str, digest: str) -> SynthesisResult:
        client = self._get_client()
        response = await client.audio.speech.create(
            model=self.model,
            voice=self.voice,
            input=text,
            response_format="mp3",
        )
        audio: bytes = response.content
        if not audio:
            raise SynthesisError("OpenAI speech returned empty audio")

        path = self.artifact_path(digest, "mp3")
        await asyncio.to_thread(path.write_bytes, audio)
        return SynthesisResult(
            audio_path=str(path),
            audio_ref=self.audio_ref_for(path),
            duration=estimate_duration_from_size(len(audio)),
        )

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()
        self._client = None
