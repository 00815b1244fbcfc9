"""Asyncio helpers shared by every pipeline stage."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Optional, Tuple, TypeVar

from .logging_utils import LoggerLike, ensure_structured_logger

T = TypeVar("T")


def _task_label(task: asyncio.Task[Any], context: Optional[str]) -> str:
    if context:
        return context
    return task.get_name() or "background task"


def add_task_exception_logger(
    task: asyncio.Task[Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
) -> asyncio.Task[Any]:
    """Ensure task exceptions are retrieved and logged.

    Without this a failing fire-and-forget task only surfaces as a
    "Task exception was never retrieved" warning at interpreter exit.
    """
    task_logger = ensure_structured_logger(logger, fallback_name="asyncio")

    def _done(done_task: asyncio.Task[Any]) -> None:
        if done_task.cancelled():
            return
        exc = done_task.exception()
        if exc is not None:
            task_logger.error(
                "Unhandled exception in %s",
                _task_label(done_task, context),
                exc_info=exc,
            )

    task.add_done_callback(_done)
    return task


def create_logged_task(
    coro: Awaitable[Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[set[asyncio.Task[Any]]] = None,
) -> asyncio.Task[Any]:
    """Create a task that won't lose exceptions, optionally tracking it."""
    task = asyncio.get_running_loop().create_task(coro, name=context)
    add_task_exception_logger(task, logger=logger, context=context)

    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)

    return task


async def wait_or_cancelled(
    awaitable: Awaitable[T],
    cancel: Optional[asyncio.Event],
) -> Tuple[bool, Optional[T]]:
    """Race ``awaitable`` against the cancellation signal.

    Returns ``(True, result)`` when the awaitable finished first and
    ``(False, None)`` when ``cancel`` fired first, in which case the
    awaitable is cancelled. Exceptions raised by the awaitable propagate.
    """
    if cancel is None:
        return True, await awaitable
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        return False, None

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (work, waiter):
            if not pending.done():
                pending.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await waiter

    if work.done() and not work.cancelled():
        return True, work.result()
    with contextlib.suppress(asyncio.CancelledError):
        await work
    return False, None


__all__ = ["add_task_exception_logger", "create_logged_task", "wait_or_cancelled"]
