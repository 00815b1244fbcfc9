"""Sample sources: the two external producers behind every GPU.

``StreamSource`` supervises one long-lived ``nvidia-smi dmon`` process and
``PollSource`` re-invokes ``nvidia-smi --query-gpu`` on a fixed interval.
Both expose ``run(cancel, device)`` as an async generator: lazy, single
consumer, not restartable, finished once the producer exits or the
cancellation signal fires.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncGenerator, AsyncIterator, Optional, Protocol

from smi2mqtt.core.asyncio_utils import create_logged_task, wait_or_cancelled
from smi2mqtt.core.logging_utils import StructuredLogger, get_module_logger

from .parsers import is_valid_gpu_uuid, parse_poll_line, parse_stream_line
from .types import Device, PollSample, Sample, StreamSample

SMI_EXECUTABLE = "nvidia-smi"
DMON_METRIC_GROUPS = "pucvmet"
QUERY_FIELDS = "utilization.gpu,memory.used,memory.free,driver_version,fan.speed,pstate"
DEFAULT_POLL_INTERVAL = 1.0


class SampleSource(Protocol):
    kind: str

    def run(self, cancel: asyncio.Event, device: Device) -> AsyncGenerator[Sample, None]:
        ...


def _device_logger(prefix: str, device: Device) -> StructuredLogger:
    return get_module_logger(f"{prefix}.{device.uuid or device.index}")


async def _read_record(reader: asyncio.StreamReader) -> Optional[bytes]:
    """Read one newline-terminated record.

    Returns ``b""`` at end of stream, or ``None`` when the record was longer
    than the reader's buffer limit and has been discarded up to its newline.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as exc:
        return exc.partial
    except asyncio.LimitOverrunError as exc:
        await reader.read(exc.consumed)

    while True:
        try:
            await reader.readuntil(b"\n")
            return None
        except asyncio.IncompleteReadError:
            return None
        except asyncio.LimitOverrunError as exc:
            await reader.read(exc.consumed)


async def _terminate(
    process: asyncio.subprocess.Process,
    logger: StructuredLogger,
    timeout: float,
) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Process %d did not terminate, killing...", process.pid)
            process.kill()
            await process.wait()
    except ProcessLookupError:
        pass


class StreamSource:
    """Streams one StreamSample per ``nvidia-smi dmon`` output line."""

    kind = "stream"

    def __init__(self, executable: str = SMI_EXECUTABLE, terminate_timeout: float = 2.0):
        self.executable = executable
        self.terminate_timeout = terminate_timeout

    def command(self, device: Device) -> list[str]:
        return [
            self.executable, "dmon",
            "-s", DMON_METRIC_GROUPS,
            "--format", "csv,noheader,nounit",
            "-i", device.uuid,
        ]

    async def run(self, cancel: asyncio.Event, device: Device) -> AsyncIterator[StreamSample]:
        logger = _device_logger("StreamSource", device)
        if not is_valid_gpu_uuid(device.uuid):
            logger.error("Invalid GPU UUID format: %r", device.uuid)
            return

        argv = self.command(device)
        logger.debug("Command: %s", " ".join(argv))
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Failed to start dmon: %s", exc)
            return

        logger.info("dmon started with PID: %d", process.pid)
        stderr_task = create_logged_task(
            self._stderr_reader(process, logger),
            logger=logger,
            context=f"dmon-stderr-{device.uuid}",
        )

        try:
            while True:
                ok, raw = await wait_or_cancelled(_read_record(process.stdout), cancel)
                if not ok:
                    logger.info("dmon cancelled, shutting down monitor")
                    return
                if raw is None:
                    logger.warning("Discarded dmon line longer than the read buffer")
                    yield StreamSample()
                    continue
                if not raw:
                    break
                yield parse_stream_line(raw.decode(errors="replace").rstrip("\r\n"))
            logger.info("dmon process finished, shutting down monitor")
        finally:
            await _terminate(process, logger, self.terminate_timeout)
            with contextlib.suppress(asyncio.TimeoutError, asyncio.CancelledError):
                await asyncio.wait_for(stderr_task, timeout=self.terminate_timeout)

    async def _stderr_reader(self, process: asyncio.subprocess.Process, logger: StructuredLogger) -> None:
        if process.stderr is None:
            return
        while True:
            line = await process.stderr.readline()
            if not line:
                break
            text = line.decode(errors="replace").strip()
            if text:
                logger.error("dmon process error: %s", text)


class PollSource:
    """Emits one PollSample per tick from ``nvidia-smi --query-gpu``."""

    kind = "poll"

    def __init__(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        executable: str = SMI_EXECUTABLE,
        timeout: Optional[float] = None,
    ):
        if interval <= 0:
            raise ValueError("poll interval must be positive")
        self.interval = interval
        self.executable = executable
        self.timeout = timeout

    def command(self, device: Device) -> list[str]:
        return [
            self.executable,
            f"--query-gpu={QUERY_FIELDS}",
            "--format=csv,noheader,nounits",
            "-i", device.uuid,
        ]

    async def run(self, cancel: asyncio.Event, device: Device) -> AsyncIterator[PollSample]:
        logger = _device_logger("PollSource", device)
        if not is_valid_gpu_uuid(device.uuid):
            logger.error("Invalid GPU UUID format: %r", device.uuid)
            return

        argv = self.command(device)
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval

        while not cancel.is_set():
            ok, _ = await wait_or_cancelled(asyncio.sleep(max(0.0, next_tick - loop.time())), cancel)
            if not ok:
                break
            # Like a ticker: ticks missed while busy are dropped, not queued.
            while next_tick <= loop.time():
                next_tick += self.interval

            ok, output = await wait_or_cancelled(self._invoke(argv, logger), cancel)
            if not ok:
                break
            if output is None:
                continue
            yield parse_poll_line(output)

        logger.debug("query polling stopped")

    async def _invoke(self, argv: list[str], logger: StructuredLogger) -> Optional[str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Failed to run query-gpu: %s", exc)
            return None

        try:
            if self.timeout is None:
                stdout, stderr = await process.communicate()
            else:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("query-gpu did not answer within %.1fs", self.timeout)
            return None
        finally:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await asyncio.shield(process.wait())

        if process.returncode != 0:
            logger.error(
                "query-gpu exited with code %d: %s",
                process.returncode,
                stderr.decode(errors="replace").strip(),
            )
            return None
        return stdout.decode(errors="replace")


__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "PollSource",
    "SampleSource",
    "StreamSource",
]
