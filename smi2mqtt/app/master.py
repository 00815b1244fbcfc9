import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

from aiomqtt import MqttError

from smi2mqtt import __version__
from smi2mqtt.cli.common import (
    add_logging_arguments,
    add_mqtt_arguments,
    config_overrides,
    positive_int,
)
from smi2mqtt.core.config import DEFAULT_CONFIG_PATH, BridgeConfig, ConfigError
from smi2mqtt.core.logging_config import configure_logging
from smi2mqtt.core.logging_utils import get_module_logger
from smi2mqtt.core.supervisor import LifecycleSupervisor, SupervisorState
from smi2mqtt.gpu.discovery import DiscoveryError, discover_devices
from smi2mqtt.gpu.fan_in import FanInAggregator, FuserFactory, build_pipelines
from smi2mqtt.gpu.fuser import BackgroundSpawner, DeviceFuser
from smi2mqtt.gpu.sources import PollSource
from smi2mqtt.gpu.types import Device
from smi2mqtt.mqtt.client import MqttPublisher, Publisher
from smi2mqtt.mqtt.gate import PublicationGate
from smi2mqtt.mqtt.homeassistant import HomeAssistantError, publish_configs


logger = get_module_logger("Master")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments; unset flags stay None so the config file wins."""
    parser = argparse.ArgumentParser(
        prog="smi2mqtt",
        description="smi2mqtt - publish NVIDIA GPU metrics to an MQTT broker",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})",
    )

    add_mqtt_arguments(parser)

    parser.add_argument(
        "--interval",
        type=positive_int,
        default=None,
        help="Update interval in seconds (default: 1)",
    )

    add_logging_arguments(parser)

    parser.add_argument(
        "--version",
        action="store_true",
        default=False,
        help="Display version and exit",
    )

    return parser.parse_args(argv)


def _fuser_factory(config: BridgeConfig) -> FuserFactory:
    def factory(device: Device, cancel: asyncio.Event, background: BackgroundSpawner) -> DeviceFuser:
        return DeviceFuser(
            device,
            cancel,
            poll_source=PollSource(interval=config.poll_interval),
            background=background,
        )

    return factory


async def serve(
    config: BridgeConfig,
    publisher: Publisher,
    devices: Sequence[Device],
    *,
    supervisor: Optional[LifecycleSupervisor] = None,
    fuser_factory: Optional[FuserFactory] = None,
    install_signals: bool = True,
) -> SupervisorState:
    """
    Run the bridge until a shutdown request, then drain.

    Pipeline per device: stream + poll sources -> DeviceFuser, then every
    fuser channel -> FanInAggregator -> PublicationGate -> publisher. All
    tasks run under the supervisor so shutdown is bounded by its grace
    period.
    """
    if config.ha:
        logger.info("Publishing Home Assistant auto-discovery configs")
        try:
            await publish_configs(publisher, devices, config.topic)
        except HomeAssistantError as exc:
            logger.warning("Failed to publish HA discovery configs: %s", exc)

    supervisor = supervisor or LifecycleSupervisor(config.shutdown_timeout)
    channels = build_pipelines(
        devices,
        supervisor.cancel,
        supervisor.background,
        fuser_factory or _fuser_factory(config),
    )
    if not channels:
        logger.warning("No device pipeline could be started, nothing will be published")

    states = FanInAggregator(supervisor.cancel, supervisor.background).start(channels)
    gate = PublicationGate(publisher, config.topic, config.heartbeat_interval)
    supervisor.background(gate.run(states), "publication-gate")

    if install_signals:
        supervisor.install_signal_handlers()

    try:
        await supervisor.wait_for_shutdown_request()
        logger.info("Shutting down")
    finally:
        result = await supervisor.drain()
        if install_signals:
            supervisor.remove_signal_handlers()
    return result


async def main(argv: Optional[list[str]] = None) -> int:
    """
    Entry point: configure, connect, discover, then serve until signalled.

    Returns the process exit status: 0 after a shutdown (drained or
    forced), 1 for any fatal startup error.
    """
    args = parse_args(argv)

    config = await BridgeConfig.load_async(args.config)
    config.apply_overrides(config_overrides(args))

    try:
        configure_logging(config.log_level, log_file=config.log_file)
    except (ValueError, OSError) as exc:
        configure_logging("info")
        logger.error("Invalid logging configuration: %s", exc)
        return 1

    if not await config.save_async(args.config):
        logger.error("Failed to save config to %s", args.config)
        return 1

    if args.version:
        print(f"Version:\t{__version__}")
        return 0

    try:
        config.validate()
    except ConfigError as exc:
        logger.error("Invalid config: %s", exc)
        return 1

    logger.info("=" * 60)
    logger.info("smi2mqtt %s starting", __version__)
    logger.info("Broker: %s", config.broker)
    logger.info("Base topic: %s", config.topic)
    logger.info("=" * 60)

    try:
        publisher = MqttPublisher(
            config.broker,
            config.client_id,
            config.mqtt_username,
            config.mqtt_password,
        )
        await publisher.connect()
    except (ValueError, MqttError) as exc:
        logger.error("Failed to connect to MQTT broker: %s", exc)
        return 1

    try:
        try:
            devices = await discover_devices()
        except DiscoveryError as exc:
            logger.error("Failed to find NVIDIA GPUs: %s", exc)
            return 1
        if not devices:
            logger.error("Found 0 NVIDIA GPUs")
            return 1

        state = await serve(config, publisher, devices)
    finally:
        await publisher.disconnect()

    logger.info("smi2mqtt stopped (%s)", state.value)
    return 0


def run(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as exc:  # pragma: no cover - fatal guard
        print(f"Fatal error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(run())
