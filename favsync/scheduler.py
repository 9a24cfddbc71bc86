"""Background scheduling for favorites sync.

One SyncScheduler drives the engine's flush from several wake-up sources:

- a periodic tick (only while visible and online),
- connectivity restored (``set_online(True)``),
- visibility restored (``set_visible(True)``),
- explicit requests (``request_flush``), e.g. right after a local write.

All of them end in the same flush callable, which guards itself against
reentrancy. A second periodic task persists state, and ``stop`` persists one
last time, so at most one persistence interval of changes can be lost.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

SYNC_INTERVAL = 15.0  # seconds
PERSIST_INTERVAL = 5.0  # seconds


class SyncScheduler:
    """Funnel timer and lifecycle triggers into a single flush operation.

    Args:
        flush: Coroutine function performing one guarded flush.
        persist: Synchronous function saving state to durable storage.
        sync_interval: Seconds between periodic flush attempts.
        persist_interval: Seconds between periodic saves.
    """

    def __init__(
        self,
        flush: Callable[[], Awaitable[Any]],
        persist: Optional[Callable[[], Any]] = None,
        *,
        sync_interval: float = SYNC_INTERVAL,
        persist_interval: float = PERSIST_INTERVAL,
    ):
        self._flush = flush
        self._persist = persist
        self.sync_interval = sync_interval
        self.persist_interval = persist_interval
        self.online = True
        self.visible = True
        self._tasks: Set[asyncio.Task] = set()
        self._loops: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._loops)

    @property
    def can_sync(self) -> bool:
        return self.online and self.visible

    # === Lifecycle ===

    def start(self) -> None:
        """Start the periodic tasks. Must be called from a running event loop."""
        if self._loops:
            return
        loop = asyncio.get_running_loop()
        self._loops.add(loop.create_task(self._sync_loop(), name="favsync-sync-loop"))
        if self._persist is not None:
            self._loops.add(loop.create_task(self._persist_loop(), name="favsync-persist-loop"))
        logger.debug(
            f"Scheduler started (sync every {self.sync_interval}s, "
            f"persist every {self.persist_interval}s)"
        )

    async def stop(self) -> None:
        """Cancel every scheduled task and persist one last time."""
        tasks = list(self._loops) + list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._tasks.clear()
        self._save()
        logger.debug("Scheduler stopped")

    # === Triggers ===

    def request_flush(self, delay: float = 0.0) -> bool:
        """Schedule a flush after ``delay`` seconds without blocking the caller.

        Returns False when no event loop is running (the next tick picks it up).
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, flush deferred to next tick")
            return False
        task = loop.create_task(self._delayed_flush(delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def set_online(self, online: bool) -> None:
        """Record connectivity; coming back online triggers a flush."""
        was_online = self.online
        self.online = online
        if online and not was_online:
            logger.info("Online - triggering favorites sync")
            self.request_flush()

    def set_visible(self, visible: bool) -> None:
        """Record visibility; becoming visible triggers a flush."""
        was_visible = self.visible
        self.visible = visible
        if visible and not was_visible:
            logger.info("Visible again - triggering favorites sync")
            self.request_flush()

    async def tick(self) -> bool:
        """Run one periodic step. Returns True if a flush was attempted."""
        if not self.can_sync:
            return False
        await self._run_flush()
        return True

    async def wait_idle(self) -> None:
        """Wait for every requested flush scheduled so far to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # === Internals ===

    async def _run_flush(self) -> None:
        try:
            await self._flush()
        except Exception as e:
            logger.error(f"Scheduled flush failed: {e}", exc_info=True)

    async def _delayed_flush(self, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        await self._run_flush()

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            await self.tick()

    async def _persist_loop(self) -> None:
        while True:
            await asyncio.sleep(self.persist_interval)
            self._save()

    def _save(self) -> None:
        if self._persist is None:
            return
        try:
            self._persist()
        except Exception as e:
            logger.error(f"Periodic save failed: {e}", exc_info=True)
