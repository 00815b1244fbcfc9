"""Typed configuration for the bridge."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .config_manager import ConfigManager, get_config_manager

DEFAULT_CONFIG_PATH = Path("/opt/smi2mqtt/config.txt")


class ConfigError(ValueError):
    """Raised when the configuration cannot be used to start the bridge."""


@dataclass(slots=True)
class BridgeConfig:
    """Typed configuration for the bridge."""

    # MQTT
    broker: str = ""
    client_id: str = ""
    topic: str = "smi2mqtt"
    mqtt_username: str = ""
    mqtt_password: str = ""
    ha: bool = True

    # Sampling
    update_interval: int = 1
    poll_interval: float = 1.0

    # Publication / lifecycle
    heartbeat_interval: float = 30.0
    shutdown_timeout: float = 10.0

    # Logging
    log_level: str = "info"
    log_file: Optional[Path] = None

    @classmethod
    def from_mapping(
        cls,
        values: Dict[str, str],
        manager: Optional[ConfigManager] = None,
    ) -> "BridgeConfig":
        """Build config from raw ``key = value`` pairs, keeping defaults for gaps."""
        cm = manager or get_config_manager()
        defaults = cls()
        log_file = cm.get_str(values, "log_file", "")

        return cls(
            broker=cm.get_str(values, "broker", defaults.broker),
            client_id=cm.get_str(values, "client_id", defaults.client_id),
            topic=cm.get_str(values, "topic", defaults.topic),
            mqtt_username=cm.get_str(values, "mqtt_username", defaults.mqtt_username),
            mqtt_password=cm.get_str(values, "mqtt_password", defaults.mqtt_password),
            ha=cm.get_bool(values, "ha", defaults.ha),
            update_interval=cm.get_int(values, "update_interval", defaults.update_interval),
            poll_interval=cm.get_float(values, "poll_interval", defaults.poll_interval),
            heartbeat_interval=cm.get_float(values, "heartbeat_interval", defaults.heartbeat_interval),
            shutdown_timeout=cm.get_float(values, "shutdown_timeout", defaults.shutdown_timeout),
            log_level=cm.get_str(values, "log_level", defaults.log_level),
            log_file=Path(log_file) if log_file else None,
        )

    @classmethod
    def load(cls, path: Path, manager: Optional[ConfigManager] = None) -> "BridgeConfig":
        cm = manager or get_config_manager()
        return cls.from_mapping(cm.read_config(path), cm)

    @classmethod
    async def load_async(cls, path: Path, manager: Optional[ConfigManager] = None) -> "BridgeConfig":
        cm = manager or get_config_manager()
        return cls.from_mapping(await cm.read_config_async(path), cm)

    def apply_overrides(self, overrides: Dict[str, Any]) -> "BridgeConfig":
        """Apply CLI values; ``None`` means the flag was not given."""
        names = {f.name for f in fields(self)}
        for name, value in overrides.items():
            if name in names and value is not None:
                setattr(self, name, value)
        return self

    def ensure_client_id(self) -> str:
        if not self.client_id:
            self.client_id = str(uuid.uuid4())
        return self.client_id

    def save(self, path: Path, manager: Optional[ConfigManager] = None) -> bool:
        """Persist every field, generating a client id on first save."""
        self.ensure_client_id()
        cm = manager or get_config_manager()
        return cm.write_config(path, self.to_dict())

    async def save_async(self, path: Path, manager: Optional[ConfigManager] = None) -> bool:
        self.ensure_client_id()
        cm = manager or get_config_manager()
        return await cm.write_config_async(path, self.to_dict())

    def validate(self) -> None:
        if not self.broker:
            raise ConfigError("broker address is required")
        if not self.topic:
            raise ConfigError("topic is required")
        if self.update_interval < 1:
            raise ConfigError("update interval must be at least 1 second")
        if self.poll_interval <= 0:
            raise ConfigError("poll interval must be positive")
        if self.heartbeat_interval <= 0:
            raise ConfigError("heartbeat interval must be positive")
        if self.shutdown_timeout <= 0:
            raise ConfigError("shutdown timeout must be positive")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["log_file"] = str(self.log_file) if self.log_file else ""
        return data


__all__ = ["BridgeConfig", "ConfigError", "DEFAULT_CONFIG_PATH"]
