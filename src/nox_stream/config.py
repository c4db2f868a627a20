"""Server configuration: dataclass defaults, TOML file, environment."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from nox_stream.core.models import ChatConfig, MoodConfig, NarrationConfig, SynthesisConfig

logger = logging.getLogger(__name__)

# Standard location for the default config file
_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "default.toml"


@dataclass
class AppConfig:
    """Top-level application configuration."""

    # Web server
    host: str = "0.0.0.0"
    port: int = 3200

    # Shared secret for the agent bridge; empty disables the check
    agent_secret: str = ""

    # Anthropic key for the chat responder (the SDK also reads the env var)
    anthropic_api_key: str = ""

    # Optional front-end build served at "/"
    static_dir: str = ""

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # Component configs
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    narration: NarrationConfig = field(default_factory=NarrationConfig)
    mood: MoodConfig = field(default_factory=MoodConfig)


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return the parsed dict."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _apply_section(target: object, data: dict[str, Any]) -> None:
    for key, value in data.items():
        if hasattr(target, key):
            setattr(target, key, value)
        else:
            logger.warning("Unknown config key %r in [%s]", key, type(target).__name__)


def _apply_defaults_to_config(config: AppConfig, defaults: dict[str, Any]) -> None:
    """Apply values from a TOML dict onto an AppConfig.

    Only sets values present in the TOML; dataclass defaults remain for
    everything else.
    """
    _apply_section(config.synthesis, defaults.get("synthesis", {}))
    _apply_section(config.chat, defaults.get("chat", {}))
    _apply_section(config.narration, defaults.get("narration", {}))
    _apply_section(config.mood, defaults.get("mood", {}))

    server = defaults.get("server", {})
    for key in ("host", "port", "static_dir"):
        if key in server:
            setattr(config, key, server[key])

    logging_data = defaults.get("logging", {})
    if "level" in logging_data:
        config.log_level = logging_data["level"]
    if "json" in logging_data:
        config.json_logs = bool(logging_data["json"])


def _env_int(name: str, current: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return current
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return current


def _apply_env(config: AppConfig) -> None:
    env = os.environ
    config.host = env.get("NOX_HOST", config.host)
    config.port = _env_int("PORT", config.port)
    config.agent_secret = env.get("NOX_SECRET", config.agent_secret)
    config.anthropic_api_key = env.get("ANTHROPIC_API_KEY", config.anthropic_api_key)
    config.static_dir = env.get("NOX_STATIC_DIR", config.static_dir)

    synth = config.synthesis
    synth.cache_dir = env.get("TTS_CACHE_DIR", synth.cache_dir)
    synth.kokoro_url = env.get("KOKORO_URL", synth.kokoro_url)
    synth.elevenlabs_key = env.get("ELEVENLABS_KEY", synth.elevenlabs_key)
    synth.elevenlabs_voice_id = env.get("ELEVENLABS_VOICE_ID", synth.elevenlabs_voice_id)
    synth.openai_api_key = env.get("OPENAI_API_KEY", synth.openai_api_key)
    synth.gateway_url = env.get("GATEWAY_URL", synth.gateway_url)
    synth.gateway_token = env.get("GATEWAY_TOKEN", synth.gateway_token)

    chat = config.chat
    chat.max_length = _env_int("CHAT_MAX_LENGTH", chat.max_length)
    chat.rate_limit = _env_int("CHAT_RATE_LIMIT", chat.rate_limit)
    window_ms = _env_int("CHAT_RATE_WINDOW_MS", int(chat.rate_window_s * 1000))
    chat.rate_window_s = window_ms / 1000.0


def load_app_config(defaults_path: str | Path | None = None) -> AppConfig:
    """Build an AppConfig.

    Loading order (later wins):
      1. Dataclass defaults (core/models.py)
      2. config/default.toml, or *defaults_path* if given
      3. Environment variables
    """
    config = AppConfig()

    default_path = Path(defaults_path) if defaults_path else _DEFAULT_CONFIG_PATH
    if default_path.is_file():
        try:
            _apply_defaults_to_config(config, _load_toml(default_path))
            logger.debug("Loaded config from %s", default_path)
        except Exception as exc:
            logger.warning("Failed to load config %s: %s", default_path, exc)
    elif defaults_path:
        logger.warning("Config file %s not found; using defaults", default_path)

    _apply_env(config)
    return config
