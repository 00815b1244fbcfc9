"""GPU discovery through ``nvidia-smi --query-gpu``."""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from smi2mqtt.core.logging_utils import get_module_logger

from .parsers import parse_device_line
from .types import Device

logger = get_module_logger("Discovery")

SMI_EXECUTABLE = "nvidia-smi"
DISCOVERY_ARGS = ("--query-gpu", "index,gpu_name,gpu_uuid", "--format", "csv,noheader,nounits")


class DiscoveryError(RuntimeError):
    """The GPU listing tool could not be run or reported a failure."""


def parse_device_listing(output: str) -> list[Device]:
    devices: list[Device] = []
    for line in output.splitlines():
        device = parse_device_line(line)
        if device is None:
            if line.strip():
                logger.debug("Skipping malformed discovery line: %r", line)
            continue
        devices.append(device)
    return devices


async def discover_devices(
    command: Optional[Sequence[str]] = None,
    timeout: float = 30.0,
) -> list[Device]:
    """Return every GPU reported by the driver, in driver index order."""
    argv = list(command) if command is not None else [SMI_EXECUTABLE, *DISCOVERY_ARGS]
    logger.debug("Command: %s", " ".join(argv))

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise DiscoveryError(f"failed to run {argv[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        process.kill()
        await process.wait()
        raise DiscoveryError(f"{argv[0]} did not answer within {timeout:.0f}s") from exc

    if process.returncode != 0:
        detail = stderr.decode(errors="replace").strip()
        raise DiscoveryError(f"{argv[0]} exited with code {process.returncode}: {detail}")

    devices = parse_device_listing(stdout.decode(errors="replace"))
    for device in devices:
        logger.info("Found GPU %d: %s (%s)", device.index, device.name, device.uuid)
    return devices


__all__ = ["DiscoveryError", "discover_devices", "parse_device_listing"]
