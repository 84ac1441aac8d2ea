"""Cooperative cancellation for long-running generations.

A ``CancellationToken`` combines an explicit cancel signal with an
optional deadline. The agent loop and tool executor check it before each
model call and tool call, and run every awaited provider call through
``guarded()`` so a cancel interrupts the wait.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

from switchboard.shared.errors import DeadlineExceeded, OperationCancelled

T = TypeVar("T")


class CancellationToken:
    def __init__(self, timeout: float | None = None):
        self._event = asyncio.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise DeadlineExceeded("Deadline exceeded")

    async def run(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the token is cancelled or the deadline passes first."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.raise_if_cancelled()
        raise DeadlineExceeded("Deadline exceeded")


async def guarded(aw: Awaitable[T], cancel: CancellationToken | None) -> T:
    if cancel is None:
        return await aw
    return await cancel.run(aw)
