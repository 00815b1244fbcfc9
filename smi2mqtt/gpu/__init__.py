"""
GPU sampling pipeline.

Per device: StreamSource + PollSource -> DeviceFuser. All device channels
are merged by the FanInAggregator.
"""

from .discovery import DiscoveryError, discover_devices
from .fan_in import FanInAggregator, build_pipelines
from .fuser import DeviceFuser
from .sources import PollSource, SampleSource, StreamSource
from .types import Device, DeviceState, PollSample, StreamSample

__all__ = [
    # Discovery
    'DiscoveryError',
    'discover_devices',
    # Types
    'Device',
    'DeviceState',
    'PollSample',
    'StreamSample',
    # Pipeline
    'SampleSource',
    'StreamSource',
    'PollSource',
    'DeviceFuser',
    'FanInAggregator',
    'build_pipelines',
]
