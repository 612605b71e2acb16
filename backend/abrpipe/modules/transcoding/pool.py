"""Bounded pool of encode slots shared by every job in the process."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from abrpipe.core.metrics import ENCODE_SLOTS_IN_USE, ENCODE_SLOTS_TOTAL

logger = logging.getLogger(__name__)


class WorkerPool:
    """Caps how many external encodes run at once.

    A slot is held only while an encode process runs; retry backoff waits
    happen outside the slot.
    """

    def __init__(self, size: int):
        if size < 1:
            raise ValueError("worker pool size must be at least 1")
        self.size = size
        self._semaphore = asyncio.Semaphore(size)
        self._in_use = 0
        ENCODE_SLOTS_TOTAL.set(size)

    def __repr__(self) -> str:
        return f"<WorkerPool {self._in_use}/{self.size}>"

    @property
    def in_use(self) -> int:
        return self._in_use

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block."""
        await self._semaphore.acquire()
        self._in_use += 1
        ENCODE_SLOTS_IN_USE.inc()
        try:
            yield
        finally:
            self._in_use -= 1
            ENCODE_SLOTS_IN_USE.dec()
            self._semaphore.release()
