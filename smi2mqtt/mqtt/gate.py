"""Publication gate: edge-triggered publishing with a staleness heartbeat."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import AsyncIterable, Callable, Optional

from smi2mqtt.core.logging_utils import get_module_logger
from smi2mqtt.gpu.types import DeviceState

from .client import Publisher

DEFAULT_HEARTBEAT_INTERVAL = 30.0


def state_topic(base_topic: str, uuid: str) -> str:
    return f"{base_topic}/{uuid}/state"


@dataclass(slots=True)
class PublishedRecord:
    state: DeviceState
    published_at: float


class PublicationGate:
    """
    Decides which fused states reach the broker.

    A state is published when its device has never been published, when it
    differs from the last published state, or when the last publication is
    older than the heartbeat interval. The record map is only touched by the
    task running ``run``.
    """

    def __init__(
        self,
        publisher: Publisher,
        base_topic: str,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.publisher = publisher
        self.base_topic = base_topic
        self.heartbeat_interval = heartbeat_interval
        self._clock = clock
        self._records: dict[str, PublishedRecord] = {}
        self.logger = get_module_logger("Gate")

    def last_published(self, uuid: str) -> Optional[PublishedRecord]:
        return self._records.get(uuid)

    def should_publish(self, state: DeviceState, now: float) -> bool:
        record = self._records.get(state.device.uuid)
        if record is None:
            return True
        if state != record.state:
            return True
        return now - record.published_at > self.heartbeat_interval

    async def offer(self, state: DeviceState) -> bool:
        """Publish ``state`` if the gate lets it through; True when emitted."""
        now = self._clock()
        if not self.should_publish(state, now):
            return False

        uuid = state.device.uuid
        try:
            payload = json.dumps(state.to_dict())
        except (TypeError, ValueError) as exc:
            self.logger.error("Failed to serialize state for %s: %s", uuid, exc)
            return False

        topic = state_topic(self.base_topic, uuid)
        try:
            await self.publisher.publish(payload, topic, False)
        except Exception as exc:
            self.logger.error("Failed to publish to %s: %s", topic, exc)
        else:
            self.logger.debug("Published state to %s", topic)

        # Recorded whether or not the publish succeeded.
        self._records[uuid] = PublishedRecord(state, self._clock())
        return True

    async def run(self, states: AsyncIterable[DeviceState]) -> None:
        self.logger.info("Publication gate started (base topic %s)", self.base_topic)
        async for state in states:
            await self.offer(state)
        self.logger.info("State stream closed, publication gate stopped")


__all__ = [
    "DEFAULT_HEARTBEAT_INTERVAL",
    "PublicationGate",
    "PublishedRecord",
    "state_topic",
]
