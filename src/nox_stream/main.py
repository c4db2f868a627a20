"""Entry point that wires and runs the Nox stream server.

Usage:
    nox-stream --port 3200 --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from nox_stream.chat.manager import ChatManager
from nox_stream.chat.responder import ChatResponder
from nox_stream.config import AppConfig, load_app_config
from nox_stream.core.event_bus import EventBus
from nox_stream.core.event_router import EventRouter
from nox_stream.core.events import SystemStatusEvent
from nox_stream.core.resilience import CircuitBreakerConfig, RetryConfig
from nox_stream.logging_config import setup_logging
from nox_stream.narration.engine import NarrationEngine
from nox_stream.synthesis import SynthesisCache, SynthesisManager, SynthesisProvider
from nox_stream.synthesis.elevenlabs import ElevenLabsProvider
from nox_stream.synthesis.gateway import GatewayProvider
from nox_stream.synthesis.kokoro import KokoroProvider
from nox_stream.synthesis.openai_speech import OpenAISpeechProvider
from nox_stream.web.websocket import Broadcaster

logger = logging.getLogger(__name__)


def build_providers(config: AppConfig) -> list[SynthesisProvider]:
    """Build the synthesis chain in preference order.

    Kokoro and the gateway are always present (their availability is probed
    at startup); the paid cloud providers only when a key is configured.
    """
    synth = config.synthesis
    retry = RetryConfig(
        max_attempts=synth.max_retries + 1, base_delay_s=synth.retry_base_delay_s
    )
    common = {"audio_url_prefix": synth.audio_url_prefix}

    providers: list[SynthesisProvider] = [
        KokoroProvider(
            synth.kokoro_url,
            synth.cache_dir,
            voice=synth.kokoro_voice,
            speed=synth.kokoro_speed,
            **common,
        )
    ]
    if synth.elevenlabs_key:
        providers.append(
            ElevenLabsProvider(
                synth.elevenlabs_key,
                synth.cache_dir,
                voice_id=synth.elevenlabs_voice_id,
                model_id=synth.elevenlabs_model_id,
                retry=retry,
                **common,
            )
        )
    if synth.openai_api_key:
        providers.append(
            OpenAISpeechProvider(
                synth.openai_api_key,
                synth.cache_dir,
                model=synth.openai_model,
                voice=synth.openai_voice,
                **common,
            )
        )
    providers.append(
        GatewayProvider(
            synth.gateway_url, synth.gateway_token, synth.cache_dir, retry=retry, **common
        )
    )
    return providers


class Application:
    """Coordinates all server components.

    Lifecycle:
        1. Open the synthesis cache and prune stale entries.
        2. Probe provider availability once.
        3. Start the narration tick loop and the chat sweeper.
        4. Start the web server.
        5. On shutdown, stop everything in reverse order.
    """

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.event_bus = EventBus()
        self.broadcaster = Broadcaster()

        synth = config.synthesis
        self.cache = SynthesisCache(
            synth.cache_dir,
            max_entries=synth.cache_max_entries,
            max_age_s=synth.cache_max_age_s,
        )
        self.synthesis = SynthesisManager(
            build_providers(config),
            self.cache,
            provider_timeout_s=synth.provider_timeout_s,
            availability_timeout_s=synth.availability_timeout_s,
            breaker_config=CircuitBreakerConfig(
                failure_threshold=synth.breaker_failure_threshold,
                recovery_timeout_s=synth.breaker_recovery_s,
            ),
        )
        self.router = EventRouter(self.broadcaster, self.synthesis, self.event_bus)
        self.narration = NarrationEngine(
            self.event_bus, self.router.route, config.narration, config.mood
        )
        self.responder = ChatResponder(self.router.route, config.chat)
        self.chat = ChatManager(
            self.broadcaster, self.responder, self.event_bus, config.chat
        )

        self._web_task: asyncio.Task[None] | None = None
        self._shutdown_event = asyncio.Event()

    async def _start_web(self) -> None:
        """Start the FastAPI web server as a background task."""
        import uvicorn

        from nox_stream.web.app import create_app

        app = create_app(
            self.event_bus,
            self.broadcaster,
            self.router,
            chat_manager=self.chat,
            synthesis=self.synthesis,
            narration=self.narration,
            agent_secret=self.config.agent_secret,
            audio_dir=self.config.synthesis.cache_dir,
            audio_url_prefix=self.config.synthesis.audio_url_prefix,
            static_dir=self.config.static_dir or None,
        )
        uv_config = uvicorn.Config(
            app,
            host=self.config.host,
            port=self.config.port,
            log_level="warning",
            log_config=None,
        )
        server = uvicorn.Server(uv_config)

        async def _serve() -> None:
            try:
                await server.serve()
            finally:
                # uvicorn exits on its own if it cannot bind
                self._shutdown_event.set()

        self._web_task = asyncio.create_task(_serve(), name="web-server")
        logger.info(
            "Stream server on http://%s:%d (stream: /ws/stream, agent: /ws/agent)",
            self.config.host,
            self.config.port,
        )

    async def start(self) -> None:
        """Start all components."""
        logger.info("Nox stream server starting up")
        if not self.config.agent_secret:
            logger.warning("NOX_SECRET not set; agent endpoint accepts any connection")
        if not self.config.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY not set; chat replies will use the fallback")

        await self.cache.open()
        try:
            await self.cache.evict()
        except Exception as exc:
            logger.warning("Cache eviction failed: %s", exc)

        availability = await self.synthesis.check_availability()
        await self.event_bus.publish(
            SystemStatusEvent(
                component="synthesis",
                status="running" if any(availability.values()) else "error",
                message=", ".join(
                    f"{name}={'up' if ok else 'down'}" for name, ok in availability.items()
                ),
            )
        )

        await self.narration.start()
        await self.chat.start()
        await self._start_web()

        await self.event_bus.publish(
            SystemStatusEvent(component="system", status="running", message="Nox is live")
        )
        logger.info("Nox stream server is ready")

    async def shutdown(self) -> None:
        """Gracefully shut down all components."""
        logger.info("Nox stream server shutting down")
        self._shutdown_event.set()

        for component in (self.chat, self.narration):
            try:
                await component.stop()
            except Exception as exc:
                logger.error("Failed to stop %s: %s", type(component).__name__, exc)

        # Speech still being routed needs the synthesis cache open
        await self.responder.aclose(timeout=self.config.chat.response_timeout_s)
        await self.narration.wait_speech()

        if self._web_task is not None:
            self._web_task.cancel()
            try:
                await self._web_task
            except (asyncio.CancelledError, Exception):
                pass
            self._web_task = None

        await self.router.drain()
        await self.synthesis.aclose()
        await self.cache.close()
        logger.info("Nox stream server stopped")

    async def run_forever(self) -> None:
        """Run until a shutdown signal is received."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="nox-stream",
        description="Nox stream server: live AI presenter with speech and chat",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to a TOML configuration file (default: config/default.toml)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Bind address (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listen port (default: 3200)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON lines",
    )
    return parser


def apply_cli_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.log_level:
        config.log_level = args.log_level
    if args.json_logs:
        config.json_logs = True
    return config


async def async_main(args: argparse.Namespace) -> None:
    """Async entry point."""
    config = apply_cli_overrides(load_app_config(args.config), args)
    setup_logging(level=config.log_level, json_output=config.json_logs)

    app = Application(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app._shutdown_event.set)

    await app.run_forever()


def cli_main() -> None:
    """CLI entry point (used by pyproject.toml [project.scripts])."""
    parser = build_parser()
    args = parser.parse_args()
    try:
        asyncio.run(async_main(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli_main()
