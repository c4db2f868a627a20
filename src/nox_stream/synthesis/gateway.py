"""Gateway provider: the agent gateway's built-in TTS tool (free, always on).

The gateway writes the audio to a temporary path on its own host; the file
is copied into the cache directory because those paths may be ephemeral.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any

import httpx

from nox_stream.core.resilience import RetryConfig, retry_async
from nox_stream.synthesis.base import SynthesisError, SynthesisProvider, SynthesisResult
from nox_stream.synthesis.phonemes import estimate_duration_from_size

logger = logging.getLogger(__name__)

PROBE_TEXT = "test"


class GatewayProvider(SynthesisProvider):
    """Invokes ``{"tool": "tts"}`` on the gateway's ``/tools/invoke``."""

    name = "gateway"

    def __init__(
        self,
        url: str,
        token: str,
        cache_dir: str | Path,
        *,
        retry: RetryConfig | None = None,
        audio_url_prefix: str = "/audio",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(cache_dir, audio_url_prefix)
        self.url = url.rstrip("/")
        self.token = token
        self.retry = retry or RetryConfig()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=15.0)
        return self._client

    async def _invoke(self, text: str) -> str | None:
        """Run the TTS tool and return the gateway-side audio path."""
        response = await self._get_client().post(
            f"{self.url}/tools/invoke",
            headers={"Authorization": f"Bearer {self.token}"},
            json={"tool": "tts", "args": {"text": text}},
        )
        response.raise_for_status()
        data: dict[str, Any] = response.json()
        if not data.get("ok"):
            raise SynthesisError("gateway returned error")
        details = (data.get("result") or {}).get("details") or {}
        audio_path = details.get("audioPath")
        return audio_path if isinstance(audio_path, str) else None

    async def is_available(self) -> bool:
        try:
            return bool(await self._invoke(PROBE_TEXT))
        except (httpx.HTTPError, SynthesisError, ValueError) as exc:
            logger.info("Gateway TTS unavailable: %s", exc)
            return False

    async def synthesize(self, text: str, digest: str) -> SynthesisResult:
        source = await retry_async(
            self._invoke, text, config=self.retry, retry_on=(httpx.TransportError,)
        )
        if not source or not Path(source).is_file():
            raise SynthesisError("gateway TTS produced no file")

        path = self.artifact_path(digest, "mp3")
        await asyncio.to_thread(shutil.copyfile, source, path)
        size = path.stat().st_size
        logger.info("Gateway TTS cached %s (%dB)", path.name, size)
        return SynthesisResult(
            audio_path=str(path),
            audio_ref=self.audio_ref_for(path),
            duration=estimate_duration_from_size(size),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
