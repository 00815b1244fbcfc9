"""Unit tests for Home Assistant auto-discovery."""

import json

import pytest

from smi2mqtt.mqtt.homeassistant import (
    SENSOR_DESCRIPTIONS,
    HomeAssistantError,
    build_sensor_config,
    config_topic,
    publish_configs,
)
from tests.infrastructure.mocks.mqtt_mocks import FakePublisher


def test_sensor_set():
    dmon_keys = {"pwr", "gtemp", "mtemp", "sm", "mem", "enc", "dec", "jpg", "ofa",
                 "mclk", "pclk", "pci", "rxpci", "txpci"}
    query_keys = {"utilgpu", "memused", "memfree", "drivver", "fanspe", "pstat"}

    assert set(SENSOR_DESCRIPTIONS) == dmon_keys | query_keys
    for key in dmon_keys:
        assert SENSOR_DESCRIPTIONS[key].value_path == f"dmon.{key}"
    for key in query_keys:
        assert SENSOR_DESCRIPTIONS[key].value_path == f"query.{key}"


class TestBuildSensorConfig:
    """Test the discovery payload of a single sensor."""

    def test_measurement_sensor(self, gpu_a):
        config = build_sensor_config(gpu_a, "pwr", "base")

        assert config == {
            "device": {
                "name": gpu_a.name,
                "identifiers": [gpu_a.uuid],
                "manufacturer": "NVIDIA",
                "model": gpu_a.name,
            },
            "name": "Power Usage",
            "device_class": "power",
            "unit_of_measurement": "W",
            "value_template": "{{ value_json.dmon.pwr }}",
            "unique_id": f"{gpu_a.uuid}_pwr",
            "state_class": "measurement",
            "expire_after": 60,
            "enabled_by_default": True,
            "availability_topic": "base/availability",
            "state_topic": f"base/{gpu_a.uuid}/state",
        }

    def test_text_sensor_has_no_unit_or_state_class(self, gpu_a):
        config = build_sensor_config(gpu_a, "drivver", "base")

        assert config["value_template"] == "{{ value_json.query.drivver }}"
        assert "unit_of_measurement" not in config
        assert "state_class" not in config
        assert "device_class" not in config

    def test_unit_without_device_class(self, gpu_a):
        config = build_sensor_config(gpu_a, "sm", "base")

        assert config["unit_of_measurement"] == "%"
        assert config["state_class"] == "measurement"
        assert "device_class" not in config


class TestPublishConfigs:
    """Test publishing every config for every GPU."""

    @pytest.mark.asyncio
    async def test_publishes_all_configs_then_availability(self, gpu_a, gpu_b, fake_publisher):
        count = await publish_configs(fake_publisher, [gpu_a, gpu_b], "base")

        assert count == 2 * len(SENSOR_DESCRIPTIONS)
        assert len(fake_publisher.messages) == count + 1
        assert all(message.retained for message in fake_publisher.messages)

        last = fake_publisher.messages[-1]
        assert (last.topic, last.payload) == ("base/availability", "online")

        topics = {message.topic for message in fake_publisher.messages[:-1]}
        assert config_topic(gpu_b.uuid, "memfree") in topics
        assert f"homeassistant/sensor/{gpu_a.uuid}_pwr/config" in topics

        payload = json.loads(fake_publisher.on_topic(config_topic(gpu_a.uuid, "gtemp"))[0].payload)
        assert payload["unit_of_measurement"] == "°C"

    @pytest.mark.asyncio
    async def test_failure_raises_home_assistant_error(self, gpu_a):
        publisher = FakePublisher(fail=True)

        with pytest.raises(HomeAssistantError, match="failed to publish config"):
            await publish_configs(publisher, [gpu_a], "base")

        assert publisher.attempts == 1
