"""asyncio reader/writer lock."""

import asyncio
from contextlib import asynccontextmanager


class ReadWriteLock:
    """
    Many concurrent readers or one writer.

    Waiting writers block new readers so a steady stream of snapshot
    requests cannot starve the expiry sweep.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def locked(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self):
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and not self._writers_waiting
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self):
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and not self._readers)
            finally:
                self._writers_waiting -= 1
                # Readers parked behind a cancelled writer must re-check
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()
