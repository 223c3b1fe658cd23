from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class SerializerClosedError(RuntimeError):
    pass


class WriteSerializer:
    """Process-local FIFO gate for mutating operations.

    ``enqueue`` runs one operation at a time in submission order. A failing
    operation only fails its own caller; the queue keeps going. This does not
    coordinate across processes.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending = 0
        self._closed = False

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def closed(self) -> bool:
        return self._closed

    async def enqueue(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self._closed:
            raise SerializerClosedError("write serializer is closed")
        self._pending += 1
        try:
            async with self._lock:
                return await operation()
        finally:
            self._pending -= 1

    async def drain(self) -> None:
        # asyncio.Lock hands off to waiters in FIFO order, so acquiring it
        # here waits for everything enqueued before this call.
        async with self._lock:
            return None

    async def close(self) -> None:
        self._closed = True
        await self.drain()
