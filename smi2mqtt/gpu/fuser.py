"""Per-device fusion of the stream and poll sources."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional

from smi2mqtt.core.asyncio_utils import create_logged_task, wait_or_cancelled
from smi2mqtt.core.channel import Channel, ChannelClosed
from smi2mqtt.core.logging_utils import get_module_logger

from .sources import PollSource, SampleSource, StreamSource
from .types import Device, DeviceState, Sample

BackgroundSpawner = Callable[[Coroutine[Any, Any, Any], str], asyncio.Task]


def spawn_logged(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    """Default spawner for stages used outside a supervisor."""
    return create_logged_task(coro, context=name)


@dataclass(frozen=True, slots=True)
class _SourceEvent:
    kind: str
    sample: Optional[Sample] = None

    @property
    def finished(self) -> bool:
        return self.sample is None


class DeviceFuser:
    """
    Merges the two sources of one device into a stream of DeviceState.

    Each source is pumped by its own task into a rendezvous inbox; the fuser
    task applies every sample to the current state and emits the full
    snapshot. The fuser ends when both sources have finished or the
    cancellation signal fires, and then closes its output exactly once.
    """

    def __init__(
        self,
        device: Device,
        cancel: asyncio.Event,
        *,
        stream_source: Optional[SampleSource] = None,
        poll_source: Optional[SampleSource] = None,
        background: BackgroundSpawner = spawn_logged,
    ):
        self.device = device
        self.cancel = cancel
        self.sources: tuple[SampleSource, ...] = (
            stream_source or StreamSource(),
            poll_source or PollSource(),
        )
        self._background = background
        self.logger = get_module_logger(f"Fuser.{device.uuid or device.index}")
        self._inbox: Channel[_SourceEvent] = Channel(f"inbox-{device.uuid}")
        self._output: Optional[Channel[DeviceState]] = None

    def start(self) -> Channel[DeviceState]:
        """Spawn the source pumps and the fuser task; returns the output channel."""
        if self._output is not None:
            raise RuntimeError(f"fuser for {self.device.uuid} already started")
        self._output = Channel(f"states-{self.device.uuid}")
        for source in self.sources:
            self._background(self._pump(source), f"{source.kind}-{self.device.uuid}")
        self._background(self._fuse(self._output), f"fuser-{self.device.uuid}")
        return self._output

    async def _pump(self, source: SampleSource) -> None:
        samples = source.run(self.cancel, self.device)
        try:
            async for sample in samples:
                if not await self._inbox.send(_SourceEvent(source.kind, sample), self.cancel):
                    self.logger.debug("%s send aborted by cancellation", source.kind)
                    return
        finally:
            await samples.aclose()
            if not self.cancel.is_set():
                await self._inbox.send(_SourceEvent(source.kind), self.cancel)

    async def _fuse(self, output: Channel[DeviceState]) -> None:
        state = DeviceState(self.device)
        pending = {source.kind for source in self.sources}
        try:
            while pending:
                if self.cancel.is_set():
                    self.logger.info("Fuser cancelled, shutting down")
                    return

                event = await self._receive()
                if event is None:
                    self.logger.info("Fuser cancelled, shutting down")
                    return

                if event.finished:
                    pending.discard(event.kind)
                    self.logger.debug("%s source finished", event.kind)
                    continue

                state = state.with_sample(event.sample)
                if not await output.send(state, self.cancel):
                    self.logger.info("Fuser cancelled during send, shutting down")
                    return

            self.logger.info("All sources finished, shutting down fuser")
        finally:
            output.close()

    async def _receive(self) -> Optional[_SourceEvent]:
        try:
            ok, event = await wait_or_cancelled(self._inbox.receive(), self.cancel)
        except ChannelClosed:
            return None
        return event if ok else None


__all__ = ["BackgroundSpawner", "DeviceFuser", "spawn_logged"]
