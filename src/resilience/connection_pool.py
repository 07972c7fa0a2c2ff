"""Bounded pool of logical connection slots for outbound search calls."""

from __future__ import annotations

import asyncio
import itertools
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

import structlog

from src.resilience.errors import PoolTimeoutError

logger = structlog.get_logger(__name__)


@dataclass
class Connection:
    """One logical connection slot."""

    id: int
    created_at: float
    last_used: float
    in_use: bool = field(default=False)


class ConnectionPool:
    """Hands out at most ``max_connections`` slots; waiters block on a condition."""

    def __init__(
        self,
        max_connections: int = 20,
        idle_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.max_connections = max_connections
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._connections: dict[int, Connection] = {}
        self._ids = itertools.count(1)
        self._condition = asyncio.Condition()
        self._waiters = 0
        self.total_acquired = 0

    def _free(self) -> Connection | None:
        for conn in self._connections.values():
            if not conn.in_use:
                return conn
        return None

    def _take(self) -> Connection | None:
        conn = self._free()
        if conn is None and len(self._connections) < self.max_connections:
            now = self._clock()
            conn = Connection(id=next(self._ids), created_at=now, last_used=now)
            self._connections[conn.id] = conn
        if conn is not None:
            conn.in_use = True
            conn.last_used = self._clock()
            self.total_acquired += 1
        return conn

    async def acquire(self, timeout: float | None = None) -> Connection:
        """Return a free slot, creating one up to the limit, else wait for a release."""
        async with self._condition:
            self._drop_idle()
            conn = self._take()
            if conn is not None:
                return conn

            self._waiters += 1
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(lambda: self._free() is not None or len(self._connections) < self.max_connections),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                raise PoolTimeoutError(f"No connection slot available within {timeout}s") from None
            finally:
                self._waiters -= 1
            return self._take()

    async def release(self, conn: Connection) -> None:
        async with self._condition:
            tracked = self._connections.get(conn.id)
            if tracked is None or not tracked.in_use:
                logger.warning("release_unknown_connection", connection_id=conn.id)
                return
            tracked.in_use = False
            tracked.last_used = self._clock()
            self._drop_idle()
            self._condition.notify()

    @asynccontextmanager
    async def connection(self, timeout: float | None = None) -> AsyncIterator[Connection]:
        conn = await self.acquire(timeout)
        try:
            yield conn
        finally:
            await self.release(conn)

    def _drop_idle(self) -> int:
        """Caller holds the condition lock."""
        now = self._clock()
        stale = [
            conn_id
            for conn_id, conn in self._connections.items()
            if not conn.in_use and now - conn.last_used > self.idle_timeout
        ]
        for conn_id in stale:
            del self._connections[conn_id]
        if stale:
            logger.debug("pruned_idle_connections", count=len(stale))
            self._condition.notify(len(stale))
        return len(stale)

    async def prune_idle(self) -> int:
        """Drop free slots that have been idle longer than the idle timeout.

        Runs on every acquire and release as well.
        """
        async with self._condition:
            return self._drop_idle()

    def stats(self) -> dict[str, int]:
        in_use = sum(1 for conn in self._connections.values() if conn.in_use)
        return {
            "total": len(self._connections),
            "in_use": in_use,
            "idle": len(self._connections) - in_use,
            "waiting": self._waiters,
            "max": self.max_connections,
        }
