"""Mock MQTT side of the bridge.

``FakePublisher`` replaces the broker-backed publisher for pipeline tests;
``FakeMqttClient`` stands in for ``aiomqtt.Client`` when testing
``MqttPublisher`` itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from aiomqtt import MqttError


@dataclass
class PublishedMessage:
    """One message accepted by a fake publisher or client."""
    topic: str
    payload: str
    retained: bool
    qos: int = 0


class FakePublisher:
    """In-memory stand-in for the MQTT publisher."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: List[PublishedMessage] = []
        self.attempts = 0

    async def publish(self, payload: str, topic: str, retained: bool = False) -> None:
        self.attempts += 1
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.messages.append(PublishedMessage(topic, payload, retained))

    def on_topic(self, topic: str) -> List[PublishedMessage]:
        return [message for message in self.messages if message.topic == topic]


@dataclass
class FakeMqttClient:
    """Mimics the parts of ``aiomqtt.Client`` used by MqttPublisher."""
    hostname: str
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    identifier: Optional[str] = None
    fail_connect: bool = False
    fail_publish: bool = False
    entered: bool = False
    exited: bool = False
    published: List[PublishedMessage] = field(default_factory=list)

    async def __aenter__(self) -> "FakeMqttClient":
        if self.fail_connect:
            raise MqttError("connection refused")
        self.entered = True
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.exited = True

    async def publish(self, topic: str, payload: Any = None, qos: int = 0, retain: bool = False) -> None:
        if self.fail_publish:
            raise MqttError("connection lost")
        self.published.append(PublishedMessage(topic, payload, retain, qos))


class FakeClientFactory:
    """Records every client created; later clients inherit the failure flags."""

    def __init__(self, fail_connect: bool = False):
        self.fail_connect = fail_connect
        self.clients: List[FakeMqttClient] = []

    def __call__(self, hostname: str, **kwargs: Any) -> FakeMqttClient:
        client = FakeMqttClient(hostname, fail_connect=self.fail_connect, **kwargs)
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeMqttClient:
        return self.clients[-1]
