"""Synthesis result types and the provider interface."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SynthesisError(RuntimeError):
    """Raised by a provider when it cannot produce audio."""


@dataclass(frozen=True)
class Phoneme:
    """A timed mouth shape; ``start < end``, in seconds."""

    symbol: str
    start: float
    end: float

    def to_wire(self) -> dict[str, Any]:
        return {"phoneme": self.symbol, "start": self.start, "end": self.end}

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> Phoneme:
        return cls(
            symbol=str(data["phoneme"]),
            start=float(data["start"]),
            end=float(data["end"]),
        )


@dataclass(frozen=True)
class SynthesisResult:
    """A synthesized (or cached) audio artifact.

    The empty result (no ``audio_ref``, no phonemes, zero duration) is the
    well-defined "no audio available" value.
    """

    audio_path: str = ""
    audio_ref: str = ""
    phonemes: tuple[Phoneme, ...] = field(default_factory=tuple)
    duration: float = 0.0

    @classmethod
    def empty(cls) -> SynthesisResult:
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.audio_ref

    def enrichment(self) -> dict[str, Any]:
        """Fields merged into a ``speaking``/``narrate`` payload."""
        return {
            "audioUrl": self.audio_ref,
            "phonemes": [p.to_wire() for p in self.phonemes],
            "duration": float(self.duration),
        }


class SynthesisProvider(ABC):
    """Capability contract every synthesis backend satisfies.

    Providers write their artifact as ``<digest>.<ext>`` inside the shared
    cache directory so the cache can serve it later regardless of which
    backend produced it.
    """

    name: str = "provider"

    def __init__(self, cache_dir: str | Path, audio_url_prefix: str = "/audio") -> None:
        self.cache_dir = Path(cache_dir)
        self.audio_url_prefix = audio_url_prefix.rstrip("/")

    @abstractmethod
    async def synthesize(self, text: str, digest: str) -> SynthesisResult:
        """Synthesize ``text`` and return the stored artifact."""
        ...

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether this backend can be used at all in this process."""
        ...

    async def aclose(self) -> None:
        """Release any network clients held by the provider."""

    def artifact_path(self, digest: str, ext: str) -> Path:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        return self.cache_dir / f"{digest}.{ext}"

    def audio_ref_for(self, path: Path) -> str:
        return f"{self.audio_url_prefix}/{path.name}"
