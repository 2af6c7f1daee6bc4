"""Debounced background writes keyed by session id."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from acf_coach.config import settings

logger = logging.getLogger(__name__)

SaveFactory = Callable[[], Awaitable[object]]


@dataclass
class _PendingSave:
    task: asyncio.Task
    factory: SaveFactory


class DebouncedSaver:
    """
    Runs at most one delayed write per key.

    Scheduling a new write for a key cancels the one still waiting out its
    delay. A write that has already started is never interrupted; writes for
    the same key run one after another in the order they started. Failures
    are logged and swallowed, never surfaced to the caller that scheduled them.
    """

    def __init__(self, delay_seconds: float | None = None) -> None:
        self.delay_seconds = (
            settings.autosave_delay_seconds if delay_seconds is None else delay_seconds
        )
        self._waiting: dict[str, _PendingSave] = {}
        self._running: dict[str, asyncio.Task] = {}

    def schedule(self, key: str, factory: SaveFactory) -> None:
        """Schedule factory() to run after the debounce delay, replacing any waiting write."""
        self.cancel(key)
        task = asyncio.create_task(self._run_later(key, factory))
        self._waiting[key] = _PendingSave(task=task, factory=factory)

    def cancel(self, key: str) -> bool:
        """
        Drop the waiting write for key. A running write is left alone.

        Returns:
            True if a write was cancelled before it started
        """
        waiting = self._waiting.pop(key, None)
        if waiting is None:
            return False
        waiting.task.cancel()
        logger.debug(f"[DebouncedSaver] Cancelled pending save for {key}")
        return True

    def pending(self, key: str) -> bool:
        """True while a write for key is waiting or running."""
        return key in self._waiting or key in self._running

    async def wait(self, key: str) -> None:
        """Wait for the running write for key, if any, to finish."""
        running = self._running.get(key)
        if running is not None:
            await asyncio.gather(running, return_exceptions=True)

    async def flush(self, key: str) -> None:
        """Run the waiting write now, after any running one has finished."""
        waiting = self._waiting.pop(key, None)
        if waiting is not None:
            waiting.task.cancel()
        await self.wait(key)
        if waiting is not None:
            await self._write(key, waiting.factory)

    async def shutdown(self) -> None:
        """Flush every outstanding write."""
        keys = set(self._waiting) | set(self._running)
        if keys:
            logger.info(f"[DebouncedSaver] Flushing {len(keys)} pending saves")
        for key in keys:
            await self.flush(key)

    async def _run_later(self, key: str, factory: SaveFactory) -> None:
        try:
            await asyncio.sleep(self.delay_seconds)
        except asyncio.CancelledError:
            return

        current = asyncio.current_task()
        waiting = self._waiting.get(key)
        if waiting is None or waiting.task is not current:
            return
        del self._waiting[key]

        previous = self._running.get(key)
        self._running[key] = current
        try:
            if previous is not None:
                await asyncio.gather(previous, return_exceptions=True)
            await self._write(key, factory)
        finally:
            if self._running.get(key) is current:
                del self._running[key]

    async def _write(self, key: str, factory: SaveFactory) -> None:
        try:
            await factory()
            logger.debug(f"[DebouncedSaver] Saved {key}")
        except Exception as e:
            logger.warning(f"[DebouncedSaver] Auto-save failed for {key}: {e}")
