"""
Prepared statement cache.

``StmtCache`` keeps up to ``capacity`` prepared statements keyed by SQL text,
evicting the least recently used one. Each entry is wrapped in a
``StmtDecorator`` that counts borrowers: an evicted statement is closed only
once every borrower has released it.

- O(1) lookup and eviction via OrderedDict
- borrow with ``async with decorator:`` or ``acquire()``/``release()``
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Optional

from .backends.base import Statement

logger = logging.getLogger("tessera.db.stmt")

__all__ = ["StmtDecorator", "StmtCache"]


class StmtDecorator:
    """Reference-counted wrapper around a prepared statement."""

    __slots__ = ("_stmt", "_refs", "_idle", "_destroy_task", "_destroyed")

    def __init__(self, stmt: Statement):
        self._stmt = stmt
        self._refs = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._destroy_task: Optional[asyncio.Task] = None
        self._destroyed = False

    def get_stmt(self) -> Statement:
        return self._stmt

    @property
    def refs(self) -> int:
        return self._refs

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def acquire(self) -> None:
        self._refs += 1
        self._idle.clear()

    def release(self) -> None:
        if self._refs <= 0:
            return
        self._refs -= 1
        if self._refs == 0:
            self._idle.set()

    def destroy(self) -> None:
        """Close the statement in the background once no borrower holds it."""
        if self._destroyed:
            return
        self._destroyed = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop; nothing can still be borrowing it
            self._stmt._closed = True
            return
        self._destroy_task = loop.create_task(self._close_when_idle())

    async def _close_when_idle(self) -> None:
        await self._idle.wait()
        await self._stmt.close()
        logger.debug(f"Closed cached statement: {self._stmt.sql}")

    async def wait_closed(self) -> None:
        if self._destroy_task is not None:
            await self._destroy_task

    async def __aenter__(self) -> Statement:
        return self._stmt

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


class StmtCache:
    """LRU of ``StmtDecorator`` keyed by SQL text."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("must provide a positive size")
        self.capacity = capacity
        self._store: "OrderedDict[str, StmtDecorator]" = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, query: str) -> bool:
        return query in self._store

    def keys(self):
        return list(self._store.keys())

    def peek(self, query: str) -> Optional[StmtDecorator]:
        """Lookup without LRU promotion."""
        return self._store.get(query)

    def _get_and_acquire(self, query: str) -> Optional[StmtDecorator]:
        sd = self._store.get(query)
        if sd is None:
            return None
        self._store.move_to_end(query)
        sd.acquire()
        return sd

    def add(self, query: str, sd: StmtDecorator) -> None:
        old = self._store.pop(query, None)
        if old is not None and old is not sd:
            old.destroy()
        self._store[query] = sd
        while len(self._store) > self.capacity:
            _, evicted = self._store.popitem(last=False)
            evicted.destroy()

    async def get_stmt_decorator(
        self, query: str, prepare: Callable[[str], Awaitable[Statement]]
    ) -> StmtDecorator:
        """
        Borrow the cached statement for ``query``, preparing it on a miss.

        The returned decorator is already acquired; the caller must
        ``release()`` it.
        """
        sd = self._get_and_acquire(query)
        if sd is not None:
            return sd
        async with self._lock:
            sd = self._get_and_acquire(query)
            if sd is not None:
                return sd
            stmt = await prepare(query)
            sd = StmtDecorator(stmt)
            sd.acquire()
            self.add(query, sd)
            return sd

    def purge(self) -> None:
        """Destroy every cached statement."""
        while self._store:
            _, sd = self._store.popitem(last=False)
            sd.destroy()
