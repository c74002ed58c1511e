"""Cooperative cancellation shared by producers, scoring passes and tickers."""

import asyncio
from typing import List, Optional, Set


class CancellationToken:
    """
    One token per source or per filter pass.

    Cancelling sets the flag, cancels every task attached to the token and
    propagates to child tokens. Safe to call any number of times, including
    when nothing is running.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()
        self._children: List["CancellationToken"] = []
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if not self._event.is_set():
            self._event.set()
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        for child in self._children:
            child.cancel()

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def attach(self, task: asyncio.Task) -> asyncio.Task:
        """Tie ``task`` to this token; it is cancelled together with it."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if self.cancelled:
            task.cancel()
        return task

    async def wait(self) -> None:
        await self._event.wait()

    async def join(self, timeout: float) -> bool:
        """Wait up to ``timeout`` for attached tasks to finish."""
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending
