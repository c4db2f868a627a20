"""Speech synthesis: provider chain, cache and manager."""

from nox_stream.synthesis.base import Phoneme, SynthesisError, SynthesisProvider, SynthesisResult
from nox_stream.synthesis.cache import SynthesisCache, text_digest
from nox_stream.synthesis.manager import SynthesisManager

__all__ = [
    "Phoneme",
    "SynthesisCache",
    "SynthesisError",
    "SynthesisManager",
    "SynthesisProvider",
    "SynthesisResult",
    "text_digest",
]
