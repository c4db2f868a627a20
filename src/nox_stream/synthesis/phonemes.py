"""Duration estimates and approximate phoneme tracks.

Backends without real alignment data still need something for the avatar's
mouth to follow. The track built here only drives lip amplitude; it makes
no claim to phonetic accuracy.
"""

from __future__ import annotations

import logging
import wave
from dataclasses import replace
from pathlib import Path

from nox_stream.synthesis.base import Phoneme, SynthesisResult

logger = logging.getLogger(__name__)

VOWELS = ("AA", "AE", "AH", "AO", "AW", "AY", "EH", "EY", "IH", "IY", "OW", "OY", "UH", "UW")
CONSONANTS = (
    "B", "CH", "D", "DH", "F", "G", "HH", "JH", "K", "L", "M", "N",
    "NG", "P", "R", "S", "SH", "T", "TH", "V", "W", "Y", "Z", "ZH",
)

MP3_BYTES_PER_SECOND = 4000.0  # ~32 kbps
MIN_DURATION_S = 0.5
SECONDS_PER_CHAR = 0.06
LEAD_IN_S = 0.05
WORD_PAUSE_S = 0.05


def estimate_duration_from_size(size_bytes: int) -> float:
    """Rough MP3 duration from file size."""
    return max(MIN_DURATION_S, size_bytes / MP3_BYTES_PER_SECOND)


def estimate_duration_from_text(text: str) -> float:
    return max(MIN_DURATION_S, len(text.strip()) * SECONDS_PER_CHAR)


def estimate_duration(path: str | Path, text: str = "") -> float:
    """Best-effort duration of an artifact: WAV header, then size, then text."""
    path = Path(path)
    if path.suffix.lower() == ".wav":
        try:
            with wave.open(str(path), "rb") as wf:
                rate = wf.getframerate()
                if rate > 0:
                    return wf.getnframes() / float(rate)
        except (wave.Error, EOFError, OSError) as exc:
            logger.debug("Could not read WAV header of %s: %s", path, exc)
    try:
        return estimate_duration_from_size(path.stat().st_size)
    except OSError:
        return estimate_duration_from_text(text)


def _symbol_for(ch: str) -> str:
    pool = VOWELS if ch in "aeiou" else CONSONANTS
    return pool[ord(ch) % len(pool)]


def approximate_phonemes(text: str, duration: float) -> list[Phoneme]:
    """Spread one pseudo-phoneme per character evenly across ``duration``.

    Words are separated by a fixed pause; whatever time remains after the
    lead-in and the pauses is divided evenly between the characters.
    """
    words = text.split()
    if not words or duration <= 0:
        return []

    n_chars = sum(len(w) for w in words)
    pause = WORD_PAUSE_S
    speech_time = duration - LEAD_IN_S - pause * (len(words) - 1)
    if speech_time <= 0:
        # Too short for fixed pauses: drop them and share the time evenly
        pause = 0.0
        speech_time = duration
    per_char = speech_time / n_chars

    phonemes: list[Phoneme] = []
    t = duration - speech_time - pause * (len(words) - 1)
    for i, word in enumerate(words):
        if i:
            t += pause
        for ch in word.lower():
            phonemes.append(Phoneme(symbol=_symbol_for(ch), start=t, end=t + per_char))
            t += per_char
    return phonemes


def complete_result(result: SynthesisResult, text: str) -> SynthesisResult:
    """Fill in a missing duration and phoneme track for a provider result."""
    duration = result.duration
    if duration <= 0:
        if result.phonemes:
            duration = result.phonemes[-1].end
        elif result.audio_path:
            duration = estimate_duration(result.audio_path, text)
        else:
            duration = estimate_duration_from_text(text)
    phonemes = result.phonemes or tuple(approximate_phonemes(text, duration))
    return replace(result, duration=duration, phonemes=tuple(phonemes))
