"""MQTT sink used by the publication gate and Home Assistant discovery."""

from __future__ import annotations

import contextlib
import time
from typing import Any, Callable, Optional, Protocol
from urllib.parse import urlsplit

from aiomqtt import Client, MqttError

from smi2mqtt.core.logging_utils import get_module_logger

DEFAULT_PORT = 1883
DEFAULT_QOS = 0
RECONNECT_THROTTLE = 5.0
_SCHEMES = ("tcp", "mqtt")


class Publisher(Protocol):
    """Anything that can hand a payload to the broker; raises on failure."""

    async def publish(self, payload: str, topic: str, retained: bool) -> None:
        ...


def parse_broker_url(url: str) -> tuple[str, int]:
    """Split ``tcp://host:port`` into host and port (1883 when omitted)."""
    text = url.strip()
    if "://" not in text:
        text = f"tcp://{text}"
    parts = urlsplit(text)
    if parts.scheme not in _SCHEMES:
        raise ValueError(f"unsupported broker scheme {parts.scheme!r} in {url!r}")
    if not parts.hostname:
        raise ValueError(f"broker URL {url!r} has no host")
    try:
        port = parts.port or DEFAULT_PORT
    except ValueError as exc:
        raise ValueError(f"broker URL {url!r} has an invalid port") from exc
    return parts.hostname, port


class MqttPublisher:
    """
    Publisher backed by an aiomqtt client.

    ``connect`` must succeed once at startup. If the connection is lost
    afterwards, the next ``publish`` makes one reconnect attempt (at most
    every ``reconnect_throttle`` seconds) before failing. Failed publishes
    are never retried.
    """

    def __init__(
        self,
        broker: str,
        client_id: str,
        username: str = "",
        password: str = "",
        *,
        qos: int = DEFAULT_QOS,
        reconnect_throttle: float = RECONNECT_THROTTLE,
        client_factory: Callable[..., Any] = Client,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.host, self.port = parse_broker_url(broker)
        self.broker = broker
        self.client_id = client_id
        self.username = username or None
        self.password = password or None
        self.qos = qos
        self.reconnect_throttle = reconnect_throttle
        self._client_factory = client_factory
        self._clock = clock
        self._client: Optional[Any] = None
        self._connected = False
        self._last_attempt: Optional[float] = None
        self.logger = get_module_logger("MqttPublisher")

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the broker connection; raises MqttError on failure."""
        self._last_attempt = self._clock()
        client = self._client_factory(
            self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            identifier=self.client_id,
        )
        await client.__aenter__()
        self._client = client
        self._connected = True
        self.logger.info("Connected to MQTT broker %s:%d as %s", self.host, self.port, self.client_id)

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        self._connected = False
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except MqttError as exc:
            self.logger.debug("Error while disconnecting: %s", exc)
        else:
            self.logger.info("Disconnected from MQTT broker")

    async def publish(self, payload: str, topic: str, retained: bool = False) -> None:
        if not self._connected:
            await self._reconnect()
        try:
            await self._client.publish(topic, payload, qos=self.qos, retain=retained)
        except MqttError as exc:
            self._connected = False
            self.logger.error("Connection lost: %s", exc)
            raise

    async def _reconnect(self) -> None:
        now = self._clock()
        if self._last_attempt is not None and now - self._last_attempt < self.reconnect_throttle:
            raise MqttError("not connected to broker (reconnect throttled)")

        stale, self._client = self._client, None
        if stale is not None:
            with contextlib.suppress(MqttError):
                await stale.__aexit__(None, None, None)

        self.logger.info("Reconnecting to MQTT broker %s:%d", self.host, self.port)
        try:
            await self.connect()
        except MqttError as exc:
            self.logger.error("Reconnect failed: %s", exc)
            raise


__all__ = ["DEFAULT_PORT", "MqttPublisher", "Publisher", "parse_broker_url"]
