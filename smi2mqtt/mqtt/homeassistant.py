"""Home Assistant MQTT auto-discovery for GPU sensors."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from smi2mqtt.core.logging_utils import get_module_logger
from smi2mqtt.gpu.types import Device

from .client import Publisher
from .gate import state_topic

logger = get_module_logger("HomeAssistant")

DISCOVERY_PREFIX = "homeassistant"
MANUFACTURER = "NVIDIA"
EXPIRE_AFTER = 60
AVAILABILITY_ONLINE = "online"


class HomeAssistantError(RuntimeError):
    """Publishing the discovery configs failed."""


@dataclass(frozen=True, slots=True)
class SensorDescription:
    name: str
    value_path: str
    device_class: Optional[str] = None
    unit: Optional[str] = None


SENSOR_DESCRIPTIONS: dict[str, SensorDescription] = {
    "pwr": SensorDescription("Power Usage", "dmon.pwr", "power", "W"),
    "gtemp": SensorDescription("GPU Temp", "dmon.gtemp", "temperature", "°C"),
    "mtemp": SensorDescription("Memory Temp", "dmon.mtemp", "temperature", "°C"),
    "sm": SensorDescription("SM Util", "dmon.sm", unit="%"),
    "mem": SensorDescription("Memory Util", "dmon.mem", unit="%"),
    "enc": SensorDescription("Encoder Util", "dmon.enc", unit="%"),
    "dec": SensorDescription("Decoder Util", "dmon.dec", unit="%"),
    "jpg": SensorDescription("JPG Util", "dmon.jpg", unit="%"),
    "ofa": SensorDescription("Optical Flow Util", "dmon.ofa", unit="%"),
    "mclk": SensorDescription("Memory Clock", "dmon.mclk", "frequency", "MHz"),
    "pclk": SensorDescription("Processor Clock", "dmon.pclk", "frequency", "MHz"),
    "pci": SensorDescription("PCI Throughput", "dmon.pci", "data_rate", "MB/s"),
    "rxpci": SensorDescription("PCI RX", "dmon.rxpci", "data_rate", "MB/s"),
    "txpci": SensorDescription("PCI TX", "dmon.txpci", "data_rate", "MB/s"),
    "utilgpu": SensorDescription("GPU Utilization", "query.utilgpu", unit="%"),
    "memused": SensorDescription("Memory Used", "query.memused", "data_size", "MiB"),
    "memfree": SensorDescription("Memory Free", "query.memfree", "data_size", "MiB"),
    "drivver": SensorDescription("Driver Version", "query.drivver"),
    "fanspe": SensorDescription("Fan Speed", "query.fanspe", unit="%"),
    "pstat": SensorDescription("Power State", "query.pstat"),
}


def availability_topic(base_topic: str) -> str:
    return f"{base_topic}/availability"


def config_topic(uuid: str, key: str) -> str:
    return f"{DISCOVERY_PREFIX}/sensor/{uuid}_{key}/config"


def build_sensor_config(device: Device, key: str, base_topic: str) -> dict[str, Any]:
    """Discovery payload for one sensor of one GPU."""
    desc = SENSOR_DESCRIPTIONS[key]
    payload: dict[str, Any] = {
        "device": {
            "name": device.name,
            "identifiers": [device.uuid],
            "manufacturer": MANUFACTURER,
            "model": device.name,
        },
        "name": desc.name,
        "value_template": f"{{{{ value_json.{desc.value_path} }}}}",
        "unique_id": f"{device.uuid}_{key}",
        "expire_after": EXPIRE_AFTER,
        "enabled_by_default": True,
        "availability_topic": availability_topic(base_topic),
        "state_topic": state_topic(base_topic, device.uuid),
    }
    if desc.device_class:
        payload["device_class"] = desc.device_class
    if desc.unit:
        payload["unit_of_measurement"] = desc.unit
        payload["state_class"] = "measurement"
    return payload


async def publish_configs(publisher: Publisher, devices: Iterable[Device], base_topic: str) -> int:
    """Publish every sensor config (retained), then mark the bridge online.

    Returns the number of configs published; the first failure aborts the
    run with HomeAssistantError.
    """
    count = 0
    for device in devices:
        for key in SENSOR_DESCRIPTIONS:
            config = build_sensor_config(device, key, base_topic)
            try:
                await publisher.publish(json.dumps(config), config_topic(device.uuid, key), True)
            except Exception as exc:
                raise HomeAssistantError(f"failed to publish config for {config['unique_id']}: {exc}") from exc
            count += 1

    try:
        await publisher.publish(AVAILABILITY_ONLINE, availability_topic(base_topic), True)
    except Exception as exc:
        raise HomeAssistantError(f"failed to publish availability: {exc}") from exc

    logger.info("Published %d Home Assistant sensor config(s)", count)
    return count


__all__ = [
    "HomeAssistantError",
    "SENSOR_DESCRIPTIONS",
    "SensorDescription",
    "availability_topic",
    "build_sensor_config",
    "config_topic",
    "publish_configs",
]
