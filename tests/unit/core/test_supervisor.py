"""Unit tests for the lifecycle supervisor."""

import asyncio
import logging
import signal
import time

import pytest

from smi2mqtt.core.supervisor import LifecycleSupervisor, SupervisorState, WaitGroup


class TestWaitGroup:
    """Test the worker counter."""

    @pytest.mark.asyncio
    async def test_wait_returns_when_empty(self):
        group = WaitGroup()
        await asyncio.wait_for(group.wait(), 0.5)

    @pytest.mark.asyncio
    async def test_wait_blocks_until_done(self):
        group = WaitGroup()
        group.add(2)
        waiter = asyncio.create_task(group.wait())

        group.done()
        await asyncio.sleep(0.01)
        assert not waiter.done()

        group.done()
        await asyncio.wait_for(waiter, 0.5)
        assert group.count == 0

    def test_negative_counter_rejected(self):
        group = WaitGroup()
        with pytest.raises(ValueError):
            group.done()


class TestLifecycleSupervisor:
    """Test spawning, shutdown and draining."""

    @pytest.mark.asyncio
    async def test_initial_state(self):
        supervisor = LifecycleSupervisor()

        assert supervisor.state is SupervisorState.RUNNING
        assert not supervisor.is_shutting_down
        assert not supervisor.cancel.is_set()

    @pytest.mark.asyncio
    async def test_drain_after_cooperative_shutdown(self):
        supervisor = LifecycleSupervisor(shutdown_timeout=1.0)

        async def worker():
            await supervisor.cancel.wait()

        for i in range(3):
            supervisor.background(worker(), f"worker-{i}")
        await asyncio.sleep(0)
        assert supervisor.active_workers == 3

        supervisor.request_shutdown("test")
        state = await supervisor.drain()

        assert state is SupervisorState.DRAINED
        assert supervisor.active_workers == 0

    @pytest.mark.asyncio
    async def test_request_shutdown_is_idempotent(self):
        supervisor = LifecycleSupervisor()

        supervisor.request_shutdown("first")
        supervisor.request_shutdown("second")

        assert supervisor.state is SupervisorState.SHUTTING_DOWN
        assert supervisor.cancel.is_set()
        await asyncio.wait_for(supervisor.wait_for_shutdown_request(), 0.5)

    @pytest.mark.asyncio
    async def test_drain_without_request_shuts_down(self):
        supervisor = LifecycleSupervisor()

        assert await supervisor.drain() is SupervisorState.DRAINED
        assert supervisor.cancel.is_set()

    @pytest.mark.asyncio
    async def test_failing_task_is_contained(self, caplog):
        caplog.set_level(logging.ERROR)
        supervisor = LifecycleSupervisor(shutdown_timeout=1.0)

        async def boom():
            raise RuntimeError("worker exploded")

        async def sibling():
            await supervisor.cancel.wait()

        failing = supervisor.background(boom(), "boom")
        healthy = supervisor.background(sibling(), "sibling")
        await asyncio.wait_for(failing, 0.5)

        assert not healthy.done()
        assert supervisor.active_workers == 1
        assert "Background task boom failed" in caplog.text
        assert "worker exploded" in caplog.text

        supervisor.request_shutdown("test")
        assert await supervisor.drain() is SupervisorState.DRAINED

    @pytest.mark.asyncio
    async def test_stuck_task_forces_exit_at_grace_bound(self, caplog):
        caplog.set_level(logging.WARNING)
        supervisor = LifecycleSupervisor(shutdown_timeout=0.2)

        async def stubborn():
            await asyncio.sleep(30)

        stuck = supervisor.background(stubborn(), "stubborn")
        supervisor.request_shutdown("test")

        started = time.monotonic()
        state = await supervisor.drain()
        elapsed = time.monotonic() - started

        assert state is SupervisorState.FORCED_EXIT
        assert elapsed < 1.0
        assert "forcing exit" in caplog.text

        await asyncio.wait_for(stuck, 0.5)
        assert supervisor.active_workers == 0

    @pytest.mark.asyncio
    async def test_drain_after_forced_exit_keeps_state(self):
        supervisor = LifecycleSupervisor(shutdown_timeout=0.05)
        task = supervisor.background(asyncio.sleep(30), "sleeper")

        assert await supervisor.drain() is SupervisorState.FORCED_EXIT
        assert await supervisor.drain() is SupervisorState.FORCED_EXIT
        await asyncio.wait_for(task, 0.5)

    @pytest.mark.asyncio
    async def test_signal_requests_shutdown(self):
        supervisor = LifecycleSupervisor()

        supervisor._on_signal(signal.SIGTERM)

        assert supervisor.state is SupervisorState.SHUTTING_DOWN
        assert supervisor.cancel.is_set()

    @pytest.mark.asyncio
    async def test_install_and_remove_signal_handlers(self):
        supervisor = LifecycleSupervisor()

        supervisor.install_signal_handlers()
        supervisor.remove_signal_handlers()

        assert supervisor.state is SupervisorState.RUNNING
