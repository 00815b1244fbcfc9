"""GPU data types shared by the sampling pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class Device:
    """Stable identity of one GPU as reported by discovery."""

    index: int
    name: str
    uuid: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class StreamSample:
    """One ``nvidia-smi dmon -s pucvmet`` row, in column order."""

    id: int = 0
    pwr: int = 0
    gtemp: int = 0
    mtemp: int = 0
    sm: int = 0
    mem: int = 0
    enc: int = 0
    dec: int = 0
    jpg: int = 0
    ofa: int = 0
    mclk: int = 0
    pclk: int = 0
    pviol: int = 0
    tviol: int = 0
    fb: int = 0
    bar1: int = 0
    ccpm: int = 0
    sbecc: int = 0
    dbecc: int = 0
    pci: int = 0
    rxpci: int = 0
    txpci: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


STREAM_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(StreamSample))


@dataclass(frozen=True, slots=True)
class PollSample:
    """One ``nvidia-smi --query-gpu`` result line."""

    utilgpu: int = 0
    memused: int = 0
    memfree: int = 0
    drivver: str = ""
    fanspe: int = 0
    pstat: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


POLL_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(PollSample))

Sample = Union[StreamSample, PollSample]

# Existing payload consumers expect a zero-valued device record nested in "dmon".
_EMPTY_DEVICE_RECORD: dict[str, Any] = {"index": 0, "name": "", "uuid": ""}


@dataclass(frozen=True, slots=True)
class DeviceState:
    """Fused view of one device: latest sample of each kind.

    Snapshots are immutable; the fuser derives a new one per sample so
    downstream stages can compare and keep them freely.
    """

    device: Device
    stream: StreamSample = field(default_factory=StreamSample)
    poll: PollSample = field(default_factory=PollSample)

    def with_sample(self, sample: Sample) -> "DeviceState":
        if isinstance(sample, StreamSample):
            return DeviceState(self.device, sample, self.poll)
        if isinstance(sample, PollSample):
            return DeviceState(self.device, self.stream, sample)
        raise TypeError(f"unsupported sample type {type(sample).__name__}")

    def to_dict(self) -> dict[str, Any]:
        """Wire shape published to the broker (``gpu``/``dmon``/``query``)."""
        return {
            "gpu": self.device.to_dict(),
            "dmon": {**self.stream.to_dict(), "gpu": dict(_EMPTY_DEVICE_RECORD)},
            "query": self.poll.to_dict(),
        }


__all__ = [
    "Device",
    "DeviceState",
    "POLL_FIELDS",
    "PollSample",
    "STREAM_FIELDS",
    "Sample",
    "StreamSample",
]
