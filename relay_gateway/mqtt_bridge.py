"""
MQTT forwarding of relayed arm commands.

Commands received by the relay are republished on ``arm/cmd`` as the same
flat JSON object the board accepts on its WebSocket link. Board telemetry on
``arm/telemetry`` is decoded and handed to an optional callback.
"""

import asyncio
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5.0


class MQTTBridge:
    """
    Blocking paho-mqtt client running its network loop in a background thread.

    Publishing is fire-and-forget (QoS 0): a stale servo command is worth
    less than the next one, so nothing is queued while the broker is away.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1883,
        cmd_topic: str = "arm/cmd",
        telemetry_topic: str = "arm/telemetry",
        on_telemetry: Optional[Callable[[dict], None]] = None,
    ):
        """
        Args:
            host: Broker host
            port: Broker port
            cmd_topic: Topic servo commands are published on
            telemetry_topic: Topic the board reports on
            on_telemetry: Called with each decoded telemetry object
        """
        self.host = host
        self.port = port
        self.cmd_topic = cmd_topic
        self.telemetry_topic = telemetry_topic
        self.on_telemetry = on_telemetry

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._connected_event = threading.Event()

        self._commands_published = 0
        self._telemetry_received = 0
        self._last_publish_time: Optional[float] = None

    @property
    def connected(self) -> bool:
        return self._connected

    def start(self, timeout: float = CONNECT_TIMEOUT) -> bool:
        """
        Connect and start the network loop.

        Returns:
            True once the broker accepted the connection within ``timeout``
        """
        if self._client is not None:
            return self._connected

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"arm_relay_{int(time.time())}",
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        logger.info(f"MQTT broker {self.host}:{self.port}, commands on {self.cmd_topic}")
        try:
            client.connect(self.host, self.port, keepalive=60)
        except (OSError, ValueError) as e:
            logger.error(f"MQTT connect to {self.host}:{self.port} failed: {e}")
            return False

        self._client = client
        client.loop_start()

        if not self._connected_event.wait(timeout):
            logger.warning(f"No CONNACK from MQTT broker after {timeout:.0f}s")
            return False
        return True

    def stop(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        client.loop_stop()
        client.disconnect()
        self._connected = False
        self._connected_event.clear()
        logger.info("MQTT bridge stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"MQTT broker refused connection: {reason_code}")
            return

        self._connected = True
        self._connected_event.set()
        client.subscribe(self.telemetry_topic)
        logger.info(f"MQTT connected, telemetry on {self.telemetry_topic}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        self._connected = False
        self._connected_event.clear()
        if reason_code.is_failure:
            logger.warning(f"MQTT connection lost: {reason_code}")
        else:
            logger.info("MQTT disconnected")

    def _on_message(self, client, userdata, msg):
        self._telemetry_received += 1
        try:
            telemetry = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Dropping malformed telemetry: {e}")
            return

        logger.debug(f"Telemetry: {telemetry}")
        if self.on_telemetry is None:
            return
        try:
            self.on_telemetry(telemetry)
        except Exception as e:
            logger.error(f"Telemetry callback failed: {e}")

    def publish_command(self, command: Dict[str, Any]) -> bool:
        """
        Publish one servo command object.

        Returns:
            False when not connected or the publish call failed
        """
        client = self._client
        if client is None or not self._connected:
            return False

        try:
            client.publish(self.cmd_topic, json.dumps(command, separators=(",", ":")), qos=0)
        except (OSError, ValueError) as e:
            logger.error(f"Publishing command to {self.cmd_topic} failed: {e}")
            return False

        self._commands_published += 1
        self._last_publish_time = time.time()
        logger.debug(f"Published {command} to {self.cmd_topic}")
        return True

    def get_stats(self) -> dict:
        return {
            "connected": self._connected,
            "messages_sent": self._commands_published,
            "messages_received": self._telemetry_received,
            "last_send_time": self._last_publish_time,
        }


class AsyncMQTTBridge:
    """MQTTBridge whose blocking calls run in the default executor."""

    def __init__(self, **kwargs):
        self._bridge = MQTTBridge(**kwargs)

    @property
    def connected(self) -> bool:
        return self._bridge.connected

    async def _run(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def start(self) -> bool:
        return await self._run(self._bridge.start)

    async def stop(self) -> None:
        await self._run(self._bridge.stop)

    async def publish_command(self, command: Dict[str, Any]) -> bool:
        return await self._run(self._bridge.publish_command, command)

    def get_stats(self) -> dict:
        return self._bridge.get_stats()
