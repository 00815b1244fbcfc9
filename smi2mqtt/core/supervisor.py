"""
Lifecycle Supervisor - single point of control for cooperative shutdown.

Owns the shared cancellation signal and the completion tracking of every
background task spawned by the bridge.

State machine:
    RUNNING       -> SHUTTING_DOWN   (signal or explicit request)
    SHUTTING_DOWN -> DRAINED         (every tracked task finished)
    SHUTTING_DOWN -> FORCED_EXIT     (grace period expired first)
"""

from __future__ import annotations

import asyncio
import signal
import time
from enum import Enum
from typing import Any, Coroutine, Optional

from .logging_utils import get_module_logger

DEFAULT_SHUTDOWN_TIMEOUT = 10.0


class SupervisorState(Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    DRAINED = "drained"
    FORCED_EXIT = "forced_exit"


class WaitGroup:
    """Counter of outstanding workers with a single waiter."""

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    def add(self, delta: int = 1) -> None:
        self._count += delta
        if self._count < 0:
            raise ValueError("WaitGroup counter went negative")
        if self._count == 0:
            self._idle.set()
        else:
            self._idle.clear()

    def done(self) -> None:
        self.add(-1)

    async def wait(self) -> None:
        await self._idle.wait()


class LifecycleSupervisor:
    """
    Spawns tracked background tasks and drives the shutdown sequence.

    Every task started through ``background`` is counted in a WaitGroup and
    has its faults caught at the task boundary, so one failing worker is
    logged and counted as finished without disturbing its siblings.
    """

    def __init__(self, shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT):
        self.logger = get_module_logger("Supervisor")
        self.shutdown_timeout = shutdown_timeout
        self.cancel = asyncio.Event()
        self._state = SupervisorState.RUNNING
        self._workers = WaitGroup()
        self._tasks: set[asyncio.Task] = set()
        self._shutdown_requested = asyncio.Event()
        self._shutdown_started: Optional[float] = None
        self._signals_installed: list[int] = []

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_shutting_down(self) -> bool:
        return self._state is not SupervisorState.RUNNING

    @property
    def active_workers(self) -> int:
        return self._workers.count

    def background(self, coro: Coroutine[Any, Any, Any], name: str = "worker") -> asyncio.Task:
        """Run ``coro`` as a tracked, fault-contained background task."""
        self._workers.add()
        try:
            task = asyncio.get_running_loop().create_task(self._guard(coro, name), name=name)
        except BaseException:
            self._workers.done()
            coro.close()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            self.logger.debug("Task %s cancelled", name)
        except Exception:
            self.logger.exception("Background task %s failed", name)
        finally:
            self._workers.done()

    def request_shutdown(self, source: str = "unknown") -> None:
        """Enter SHUTTING_DOWN and fire the cancellation signal; idempotent."""
        if self._state is not SupervisorState.RUNNING:
            self.logger.debug(
                "Shutdown already initiated (state=%s), ignoring request from %s",
                self._state.value,
                source,
            )
            return
        self.logger.info("Shutdown requested by %s", source)
        self._state = SupervisorState.SHUTTING_DOWN
        self._shutdown_started = time.monotonic()
        self.cancel.set()
        self._shutdown_requested.set()

    async def wait_for_shutdown_request(self) -> None:
        await self._shutdown_requested.wait()

    async def drain(self) -> SupervisorState:
        """Wait for every tracked task, bounded by the grace period."""
        if self._state is SupervisorState.RUNNING:
            self.request_shutdown("drain")
        if self._state is not SupervisorState.SHUTTING_DOWN:
            return self._state

        elapsed = time.monotonic() - (self._shutdown_started or time.monotonic())
        remaining = max(0.0, self.shutdown_timeout - elapsed)
        try:
            await asyncio.wait_for(self._workers.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            self._state = SupervisorState.FORCED_EXIT
            self.logger.warning(
                "Shutdown timeout after %.1fs with %d task(s) still running, forcing exit",
                self.shutdown_timeout,
                self._workers.count,
            )
            for task in list(self._tasks):
                task.cancel()
            return self._state

        self._state = SupervisorState.DRAINED
        self.logger.info(
            "All tasks finished gracefully in %.3fs",
            time.monotonic() - (self._shutdown_started or time.monotonic()),
        )
        return self._state

    def install_signal_handlers(self, signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)) -> None:
        loop = asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                # add_signal_handler is unavailable on Windows event loops.
                continue
            self._signals_installed.append(sig)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()

    def _on_signal(self, sig: int) -> None:
        self.logger.info("Caught signal %s", signal.Signals(sig).name)
        self.request_shutdown(f"signal {signal.Signals(sig).name}")


__all__ = ["LifecycleSupervisor", "SupervisorState", "WaitGroup", "DEFAULT_SHUTDOWN_TIMEOUT"]
