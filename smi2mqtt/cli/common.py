from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict

LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# argparse dest -> BridgeConfig field
CONFIG_OVERRIDES: dict[str, str] = {
    "broker": "broker",
    "topic": "topic",
    "username": "mqtt_username",
    "password": "mqtt_password",
    "ha": "ha",
    "interval": "update_interval",
    "log_level": "log_level",
    "log_file": "log_file",
}


def _positive_number(value: str, typ: type, name: str):
    """Generic positive number validator for argparse."""
    try:
        parsed = typ(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Value must be a {name}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return parsed


def positive_int(value: str) -> int:
    return _positive_number(value, int, "integer")


def add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=None,
        help="Logging verbosity (default: info)",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path to write rotating logs",
    )


def add_mqtt_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--broker",
        type=str,
        default=None,
        help="MQTT broker address, e.g. tcp://localhost:1883",
    )

    parser.add_argument(
        "--topic",
        type=str,
        default=None,
        help="Base MQTT topic (default: smi2mqtt)",
    )

    parser.add_argument("--username", type=str, default=None, help="MQTT username")
    parser.add_argument("--password", type=str, default=None, help="MQTT password")

    ha_group = parser.add_mutually_exclusive_group()
    ha_group.add_argument(
        "--ha",
        dest="ha",
        action="store_true",
        default=None,
        help="Publish Home Assistant discovery configs (default)",
    )
    ha_group.add_argument(
        "--no-ha",
        dest="ha",
        action="store_false",
        help="Skip Home Assistant discovery",
    )


def config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map parsed flags onto BridgeConfig field names; unset flags are None."""
    return {field: getattr(args, dest, None) for dest, field in CONFIG_OVERRIDES.items()}


__all__ = [
    "CONFIG_OVERRIDES",
    "LOG_LEVELS",
    "add_logging_arguments",
    "add_mqtt_arguments",
    "config_overrides",
    "positive_int",
]
