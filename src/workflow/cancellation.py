"""Cancellation token and run deadline threaded through every suspension point."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

import structlog

from src.resilience.errors import RunCancelledError, RunDeadlineExceededError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by everything a run awaits."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info("run_cancel_requested", reason=reason)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()


class RunDeadline:
    """Absolute deadline for one run; ``None`` seconds means unbounded."""

    def __init__(self, seconds: float | None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


class RunGuard:
    """Bounds awaited work by the run's cancellation token and deadline."""

    def __init__(self, token: CancellationToken | None = None, deadline: RunDeadline | None = None):
        self.token = token or CancellationToken()
        self.deadline = deadline or RunDeadline(None)

    def check(self) -> None:
        self.token.raise_if_cancelled()
        if self.deadline.expired:
            raise RunDeadlineExceededError(f"Run exceeded its {self.deadline.seconds}s deadline")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires or the deadline passes first.

        The inner task is cancelled in either case.
        """
        task = asyncio.ensure_future(awaitable)
        try:
            self.check()
        except BaseException:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise

        waiter = asyncio.ensure_future(self.token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.deadline.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self.token.raise_if_cancelled()
        raise RunDeadlineExceededError(f"Run exceeded its {self.deadline.seconds}s deadline")

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            self.check()
            return
        await self.run(asyncio.sleep(seconds))
