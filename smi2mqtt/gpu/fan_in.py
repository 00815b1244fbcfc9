"""Fan-in of every per-device state channel into one stream."""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Sequence

from smi2mqtt.core.channel import Channel, ChannelClosed
from smi2mqtt.core.logging_utils import get_module_logger
from smi2mqtt.core.supervisor import WaitGroup

from .fuser import BackgroundSpawner, DeviceFuser, spawn_logged
from .types import Device, DeviceState

logger = get_module_logger("FanIn")

FuserFactory = Callable[[Device, asyncio.Event, BackgroundSpawner], DeviceFuser]


def default_fuser_factory(
    device: Device,
    cancel: asyncio.Event,
    background: BackgroundSpawner,
) -> DeviceFuser:
    return DeviceFuser(device, cancel, background=background)


class FanInAggregator:
    """
    Relays N device channels into one output channel.

    One forwarder task per input channel; a tracker task waits for all of
    them and is the only place the output gets closed. Per-device ordering
    is preserved, there is no ordering across devices.
    """

    def __init__(self, cancel: asyncio.Event, background: BackgroundSpawner = spawn_logged):
        self.cancel = cancel
        self._background = background
        self._forwarders = WaitGroup()
        self._output: Channel[DeviceState] = Channel("aggregated-states")
        self._started = False

    @property
    def output(self) -> Channel[DeviceState]:
        return self._output

    def start(self, sources: Sequence[Channel[DeviceState]]) -> Channel[DeviceState]:
        if self._started:
            raise RuntimeError("aggregator already started")
        self._started = True

        for source in sources:
            self._forwarders.add()
            self._background(self._forward(source), f"forward-{source.name}")
        self._background(self._close_when_done(len(sources)), "fan-in-tracker")
        return self._output

    async def _forward(self, source: Channel[DeviceState]) -> None:
        try:
            while True:
                try:
                    state = await source.receive()
                except ChannelClosed:
                    logger.debug("Source channel %s closed", source.name)
                    return
                if not await self._output.send(state, self.cancel):
                    logger.debug("Forwarder for %s cancelled", source.name)
                    return
        finally:
            self._forwarders.done()

    async def _close_when_done(self, count: int) -> None:
        try:
            await self._forwarders.wait()
        finally:
            self._output.close()
            logger.debug("All %d forwarder(s) finished, output closed", count)


def build_pipelines(
    devices: Iterable[Device],
    cancel: asyncio.Event,
    background: BackgroundSpawner = spawn_logged,
    fuser_factory: FuserFactory = default_fuser_factory,
) -> list[Channel[DeviceState]]:
    """Start one fuser per device; a device that fails to start is skipped."""
    channels: list[Channel[DeviceState]] = []
    for device in devices:
        try:
            fuser = fuser_factory(device, cancel, background)
            channels.append(fuser.start())
        except Exception:
            logger.exception("Failed to start pipeline for GPU %d (%s)", device.index, device.uuid)
            continue
        logger.info("Pipeline started for GPU %d: %s", device.index, device.name)
    return channels


__all__ = ["FanInAggregator", "FuserFactory", "build_pipelines", "default_fuser_factory"]
