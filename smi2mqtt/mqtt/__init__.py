"""MQTT sink: broker client, publication gate and Home Assistant discovery."""

from .client import MqttPublisher, Publisher, parse_broker_url
from .gate import PublicationGate, state_topic
from .homeassistant import HomeAssistantError, publish_configs

__all__ = [
    'MqttPublisher',
    'Publisher',
    'parse_broker_url',
    'PublicationGate',
    'state_topic',
    'HomeAssistantError',
    'publish_configs',
]
