#!/usr/bin/env python3
"""
In-flight request tracker.

Coalesces concurrent calls for the same key into one shared task
(single-flight). The task is registered before the first await, so any
caller arriving later on the same loop sees it, and it unregisters itself
before its result is delivered, so a call made after completion always
starts fresh.
"""

from asyncio import Task, create_task, shield
from typing import Awaitable, Callable, Dict, TypeVar

from config import get_logger

logger = get_logger("inflight")

T = TypeVar("T")


class InFlightTracker:
    """Registry of pending computations keyed by URL."""

    def __init__(self) -> None:
        self._pending: Dict[str, Task] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Await the pending computation for `key`, starting it if needed."""
        task = self._pending.get(key)
        if task is None:
            task = create_task(self._execute(key, factory))
            self._pending[key] = task
        else:
            logger.debug(f"Joining in-flight request for {key}")
        # One caller being cancelled must not cancel the shared work
        return await shield(task)

    async def _execute(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        finally:
            self._pending.pop(key, None)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def count(self) -> int:
        return len(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def cancel_all(self) -> None:
        """Cancel every pending computation."""
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()


__all__ = ["InFlightTracker"]
