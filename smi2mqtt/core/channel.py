"""Rendezvous hand-off channel used between pipeline stages."""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from .asyncio_utils import wait_or_cancelled

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised by ``receive`` once a channel is closed and drained."""


class Channel(Generic[T]):
    """Unbuffered hand-off between any number of producers and one consumer.

    ``send`` only returns once the consumer has taken the item, so a slow
    consumer stalls its producers instead of letting work pile up. A send
    aborted by the cancellation signal is withdrawn and never delivered.
    Only the owner of the producing side may call ``close``.
    """

    def __init__(self, name: str = "channel") -> None:
        self.name = name
        self._slot: asyncio.Queue[Tuple[T, asyncio.Future[None]]] = asyncio.Queue(maxsize=1)
        self._closed = asyncio.Event()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"Channel({self.name!r}, {state})"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def send(self, item: T, cancel: Optional[asyncio.Event] = None) -> bool:
        """Hand ``item`` to the consumer; False if cancelled first."""
        if self.closed:
            raise ChannelClosed(f"send on closed channel {self.name}")

        delivered: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        placed, _ = await wait_or_cancelled(self._slot.put((item, delivered)), cancel)
        if not placed:
            return False

        try:
            taken, _ = await wait_or_cancelled(asyncio.shield(delivered), cancel)
        except asyncio.CancelledError:
            delivered.cancel()
            raise
        if not taken:
            if delivered.done() and not delivered.cancelled():
                return True
            # Withdraw the offer; the consumer skips withdrawn items.
            delivered.cancel()
            return False
        return True

    async def receive(self) -> T:
        while True:
            if self._slot.empty() and self.closed:
                raise ChannelClosed(self.name)

            getter = asyncio.ensure_future(self._slot.get())
            closer = asyncio.ensure_future(self._closed.wait())
            try:
                await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                closer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await closer
                if not getter.done():
                    getter.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await getter

            if getter.done() and not getter.cancelled():
                item, delivered = getter.result()
                if delivered.done():
                    continue
                delivered.set_result(None)
                return item

    def close(self) -> None:
        """Mark the channel closed; idempotent."""
        self._closed.set()

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            try:
                item = await self.receive()
            except ChannelClosed:
                return
            yield item


__all__ = ["Channel", "ChannelClosed"]
