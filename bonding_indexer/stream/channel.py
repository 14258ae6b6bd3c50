# bonding_indexer/stream/channel.py

import asyncio
from typing import Generic, List, Optional, TypeVar

from msgspec import Struct

from ..types import EvmLog, EvmBlockHeader


T = TypeVar('T')


class RangeBatch(Struct):
    """Logs for one fully fetched sub-range, plus the header closing it."""
    token: str
    from_block: int
    to_block: int
    logs: List[EvmLog]
    epoch: int
    checkpoint: Optional[EvmBlockHeader] = None


class ChannelClosedError(RuntimeError):
    pass


class TradeChannel(Generic[T]):
    """Bounded channel between one producer and one consumer.

    ``put`` waits while ``maxsize`` items are pending. ``close`` never
    waits, so a producer can call it from a cancellation handler; the
    consumer drains what is queued and then stops, or re-raises the error
    the channel was closed with.
    """

    _END = object()

    def __init__(self, maxsize: int = 16):
        if maxsize < 1:
            raise ValueError("maxsize must be positive")
        self._queue: asyncio.Queue = asyncio.Queue()
        self._slots = asyncio.Semaphore(maxsize)
        self._closed = False
        self._error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize() - (1 if self._closed else 0)

    async def put(self, item: T) -> None:
        if self._closed:
            raise ChannelClosedError("put on closed channel")
        await self._slots.acquire()
        if self._closed:
            self._slots.release()
            raise ChannelClosedError("channel closed while waiting for space")
        self._queue.put_nowait(item)

    def close(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._queue.put_nowait(self._END)

    def __aiter__(self) -> 'TradeChannel[T]':
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is self._END:
            # keep the marker so later reads stop too
            self._queue.put_nowait(self._END)
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        self._slots.release()
        return item
