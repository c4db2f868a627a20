"""Configuration dataclasses for the server components."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SynthesisConfig:
    """Configuration for the speech-synthesis chain and its cache."""

    cache_dir: str = "/tmp/nox-tts"
    audio_url_prefix: str = "/audio"

    # Per-provider call timeout; bounds how long the router waits
    provider_timeout_s: float = 15.0
    availability_timeout_s: float = 5.0

    # Kokoro (local, best quality)
    kokoro_url: str = "http://localhost:3202"
    kokoro_voice: str = "af_heart"
    kokoro_speed: float = 1.0

    # ElevenLabs (paid cloud)
    elevenlabs_key: str = ""
    elevenlabs_voice_id: str = "21m00Tcm4TlvDq8ikWAM"  # "Rachel"
    elevenlabs_model_id: str = "eleven_monolingual_v1"

    # OpenAI speech (paid cloud, only used when a key is configured)
    openai_api_key: str = ""
    openai_model: str = "tts-1"
    openai_voice: str = "alloy"

    # Gateway TTS (free fallback)
    gateway_url: str = "http://127.0.0.1:18789"
    gateway_token: str = ""

    # Provider-level retries for transient HTTP errors
    max_retries: int = 2
    retry_base_delay_s: float = 0.5

    # Circuit breaker around each provider
    breaker_failure_threshold: int = 3
    breaker_recovery_s: float = 60.0

    # Cache eviction; 0 disables the corresponding limit
    cache_max_entries: int = 2000
    cache_max_age_s: float = 7 * 24 * 3600.0


@dataclass
class ChatConfig:
    """Configuration for chat admission and the AI responder."""

    max_length: int = 280
    rate_limit: int = 3  # Messages per window per identity
    rate_window_s: float = 10.0
    sweep_interval_s: float = 60.0

    # AI responder
    model: str = "claude-3-5-haiku-latest"
    max_tokens: int = 200
    response_timeout_s: float = 20.0
    history_max_pairs: int = 10
    fallback_reply: str = "Sorry chat, my brain just blue-screened. Ask me again?"
    presenter_name: str = "Nox"


@dataclass
class MoodConfig:
    """Thresholds for the mood state machine."""

    window_s: float = 60.0
    excited_chat_rate: float = 6.0  # messages per minute
    irritated_chat_rate: float = 15.0
    frustrated_failure_streak: int = 3
    confident_success_streak: int = 5
    energized_tool_calls: int = 4  # tool calls inside the window
    lonely_after_s: float = 300.0
    sentiment_half_life_s: float = 120.0
    sentiment_threshold: float = 2.5


@dataclass
class NarrationConfig:
    """Cooldowns and thresholds for narration."""

    tick_interval_s: float = 1.0
    event_cooldown_min_s: float = 8.0
    event_cooldown_max_s: float = 20.0
    idle_interval_s: float = 45.0
    max_consecutive_idle: int = 3
    rapid_activity_threshold: int = 5  # tool calls since last narration
    activity_window_size: int = 20
    input_max_chars: int = 60
