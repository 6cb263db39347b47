#!/usr/bin/env python3
"""
Relay Gateway - Main Entry Point

This server accepts WebSocket sessions from arm control clients and:
- Acknowledges commands, pose data and heartbeats
- Evicts sessions that stay silent
- Optionally rebroadcasts commands to other sessions
- Optionally forwards commands to the controller board over MQTT

Environment Variables:
    RELAY_HOST: Bind address (default: 0.0.0.0)
    RELAY_PORT: Bind port (default: 8000)
    SWEEP_INTERVAL_S: Seconds between liveness sweeps (default: 10)
    SESSION_TIMEOUT_S: Seconds of silence before eviction (default: 30)
    RELAY_REBROADCAST: Rebroadcast commands to other sessions (default: false)
    MQTT_ENABLED: Forward commands over MQTT (default: false)
    MQTT_HOST: MQTT broker host (default: localhost)
    MQTT_PORT: MQTT broker port (default: 1883)
    MQTT_CMD_TOPIC: Command topic (default: arm/cmd)

Usage:
    export MQTT_ENABLED=1
    python -m relay_gateway.main
"""

import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass
from typing import Mapping, Optional

import uvicorn

from .mqtt_bridge import AsyncMQTTBridge
from .protocol import CommandMessage
from .ws_server import DEFAULT_SESSION_TIMEOUT, DEFAULT_SWEEP_INTERVAL, RelayServer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class GatewaySettings:
    """Relay gateway settings read from the environment."""
    host: str = "0.0.0.0"
    port: int = 8000
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    session_timeout: float = DEFAULT_SESSION_TIMEOUT
    rebroadcast: bool = False
    mqtt_enabled: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_cmd_topic: str = "arm/cmd"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'GatewaySettings':
        """
        Load settings from environment variables.

        Raises:
            ValueError: If a numeric variable does not parse or is not positive
        """
        env = os.environ if env is None else env
        settings = cls(
            host=env.get("RELAY_HOST", cls.host),
            port=int(env.get("RELAY_PORT", cls.port)),
            sweep_interval=float(env.get("SWEEP_INTERVAL_S", cls.sweep_interval)),
            session_timeout=float(env.get("SESSION_TIMEOUT_S", cls.session_timeout)),
            rebroadcast=env.get("RELAY_REBROADCAST", "").lower() in _TRUE_VALUES,
            mqtt_enabled=env.get("MQTT_ENABLED", "").lower() in _TRUE_VALUES,
            mqtt_host=env.get("MQTT_HOST", cls.mqtt_host),
            mqtt_port=int(env.get("MQTT_PORT", cls.mqtt_port)),
            mqtt_cmd_topic=env.get("MQTT_CMD_TOPIC", cls.mqtt_cmd_topic),
        )
        if settings.sweep_interval <= 0 or settings.session_timeout <= 0:
            raise ValueError("SWEEP_INTERVAL_S and SESSION_TIMEOUT_S must be positive")
        return settings


class RelayGateway:
    """
    Main relay gateway integrating WebSocket sessions and MQTT.

    Architecture:
        Client -> WebSocket -> RelayGateway -> MQTT (arm/cmd) -> board
    """

    def __init__(self, settings: GatewaySettings):
        self.settings = settings

        # Components
        self.relay = RelayServer(
            sweep_interval=settings.sweep_interval,
            session_timeout=settings.session_timeout,
            rebroadcast=settings.rebroadcast,
            on_command=self._on_command,
        )
        self.mqtt_bridge: Optional[AsyncMQTTBridge] = None

    async def start(self) -> None:
        """Start the MQTT bridge if enabled."""
        logger.info("Starting Relay Gateway...")

        if self.settings.mqtt_enabled:
            try:
                self.mqtt_bridge = AsyncMQTTBridge(
                    host=self.settings.mqtt_host,
                    port=self.settings.mqtt_port,
                    cmd_topic=self.settings.mqtt_cmd_topic,
                    on_telemetry=self._on_telemetry,
                )
                if await self.mqtt_bridge.start():
                    logger.info("MQTT bridge started")
                else:
                    logger.warning("MQTT bridge failed to connect")
            except Exception as e:
                logger.error(f"Failed to start MQTT bridge: {e}")
                logger.warning("Continuing without MQTT bridge")
                self.mqtt_bridge = None

        logger.info(f"Relay Gateway listening on {self.settings.host}:{self.settings.port}")

    async def stop(self) -> None:
        """Stop all gateway components."""
        logger.info("Stopping Relay Gateway...")

        if self.mqtt_bridge:
            await self.mqtt_bridge.stop()
            logger.info("MQTT bridge stopped")

        logger.info("Relay Gateway stopped")

    async def _on_command(self, session_id: str, command: CommandMessage) -> None:
        """Forward a relayed command to the board."""
        if self.mqtt_bridge and self.mqtt_bridge.connected:
            await self.mqtt_bridge.publish_command(command.to_dict())

    def _on_telemetry(self, data: dict) -> None:
        """Handle telemetry from the board."""
        logger.debug(f"Telemetry: {data}")

    def get_stats(self) -> dict:
        """Get gateway statistics."""
        return {
            "relay": self.relay.get_stats(),
            "mqtt_bridge": self.mqtt_bridge.get_stats() if self.mqtt_bridge else {},
        }


async def run_server(gateway: RelayGateway) -> None:
    """Run the relay app with uvicorn."""
    config = uvicorn.Config(
        gateway.relay.app,
        host=gateway.settings.host,
        port=gateway.settings.port,
        log_level="info",
        access_log=True,
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main_async() -> None:
    """Async main entry point."""
    try:
        settings = GatewaySettings.from_env()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    gateway = RelayGateway(settings)

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await gateway.start()

        # Run server until shutdown
        server_task = asyncio.create_task(run_server(gateway))
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        done, pending = await asyncio.wait(
            [server_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"Server error: {e}")
    finally:
        await gateway.stop()
        logger.info(f"Final stats: {gateway.get_stats()}")


def main() -> None:
    """Main entry point."""
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
