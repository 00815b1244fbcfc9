"""Line parsers for ``nvidia-smi`` CSV output.

Parsing is deliberately lenient: a line with the wrong number of fields
yields the zero-valued sample and an unparseable field yields 0. A genuine
zero reading therefore cannot be told apart from a bad field.
"""

from __future__ import annotations

import re
from typing import Optional

from .types import STREAM_FIELDS, Device, PollSample, StreamSample

FIELD_DELIMITER = ","
STREAM_FIELD_COUNT = len(STREAM_FIELDS)
POLL_FIELD_COUNT = 6
DEVICE_FIELD_COUNT = 3
PLACEHOLDER = "-"

_INT_RE = re.compile(r"[+-]?[0-9]+")
_GPU_UUID_RE = re.compile(
    r"^GPU-[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def parse_int(value: Optional[str]) -> int:
    """Parse one CSV cell; ``"-"`` and garbage become 0."""
    if value is None:
        return 0
    text = value.strip()
    if text == PLACEHOLDER or _INT_RE.fullmatch(text) is None:
        return 0
    return int(text)


def parse_stream_line(line: str) -> StreamSample:
    parts = line.split(FIELD_DELIMITER)
    if len(parts) != STREAM_FIELD_COUNT:
        return StreamSample()
    return StreamSample(*(parse_int(part) for part in parts))


def parse_poll_line(line: str) -> PollSample:
    parts = line.strip().split(FIELD_DELIMITER)
    if len(parts) != POLL_FIELD_COUNT:
        return PollSample()
    return PollSample(
        utilgpu=parse_int(parts[0]),
        memused=parse_int(parts[1]),
        memfree=parse_int(parts[2]),
        drivver=parts[3].strip(),
        fanspe=parse_int(parts[4]),
        pstat=parts[5].strip(),
    )


def parse_device_line(line: str) -> Optional[Device]:
    """Parse an ``index, name, uuid`` discovery row; None when malformed."""
    parts = line.split(FIELD_DELIMITER)
    if len(parts) != DEVICE_FIELD_COUNT:
        return None
    try:
        index = int(parts[0].strip())
    except ValueError:
        return None
    return Device(index=index, name=parts[1].strip(), uuid=parts[2].strip())


def is_valid_gpu_uuid(uuid: str) -> bool:
    return _GPU_UUID_RE.fullmatch(uuid) is not None


__all__ = [
    "POLL_FIELD_COUNT",
    "STREAM_FIELD_COUNT",
    "is_valid_gpu_uuid",
    "parse_device_line",
    "parse_int",
    "parse_poll_line",
    "parse_stream_line",
]
