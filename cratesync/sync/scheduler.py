# cratesync/sync/scheduler.py
from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

from cratesync.domain.common.errors import SyncError
from cratesync.store.models import Snapshot

logger = logging.getLogger(__name__)

Fetch = Callable[[], Awaitable[Snapshot]]
Apply = Callable[[Snapshot], None]
StaleHook = Callable[[bool], None]
AfterApply = Callable[[Snapshot], Awaitable[None]]


class SyncScheduler:
    """
    Poll loop: first poll after uniform(0, jitter_ms), then every
    interval_ms after the previous poll started. request_resync() wakes
    the loop early; several requests before the next poll collapse
    into one.

    Health: consecutive_failures counts failed polls, stale latches once
    it reaches stale_after and clears on the next success.
    """

    def __init__(
        self,
        fetch: Fetch,
        apply: Apply,
        *,
        interval_ms: int = 15000,
        jitter_ms: int = 5000,
        stale_after: int = 3,
        on_stale_change: Optional[StaleHook] = None,
        after_apply: Optional[AfterApply] = None,
        rng: Optional[random.Random] = None,
        loop_time: Optional[Callable[[], float]] = None,
    ) -> None:
        self.fetch = fetch
        self.apply = apply
        self.interval_ms = interval_ms
        self.jitter_ms = jitter_ms
        self.stale_after = stale_after
        self.on_stale_change = on_stale_change
        self.after_apply = after_apply
        self.rng = rng or random.Random()
        self._loop_time = loop_time

        self.consecutive_failures = 0
        self.stale = False
        self.polls = 0

        self._wake = asyncio.Event()
        self._inflight = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    def first_delay_ms(self) -> float:
        return self.rng.uniform(0, self.jitter_ms)

    def _now(self) -> float:
        if self._loop_time is not None:
            return self._loop_time()
        return asyncio.get_running_loop().time()

    # ----------------------------
    # Lifecycle
    # ----------------------------
    def start(self) -> None:
        if self._task is not None:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name="sync-scheduler")

    async def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def request_resync(self) -> None:
        if not self._stopped and not self._wake.is_set():
            logger.info("forced resync requested")
            self._wake.set()

    # ----------------------------
    # Loop
    # ----------------------------
    async def _wait(self, delay_ms: float) -> None:
        """Sleep delay_ms, or less if a resync is requested."""
        if delay_ms <= 0:
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            pass

    async def _run(self) -> None:
        await self._wait(self.first_delay_ms())
        while not self._stopped:
            started = self._now()
            try:
                await self.poll_once()
            except Exception as e:
                logger.exception("snapshot poll raised")
                self._record_failure(SyncError(f"{e.__class__.__name__}: {e}", code="UNEXPECTED"))
            elapsed_ms = (self._now() - started) * 1000
            await self._wait(self.interval_ms - elapsed_ms)

    async def poll_once(self) -> bool:
        """
        One fetch + apply. Returns True on success. A poll that is already
        in flight absorbs concurrent callers.
        """
        if self._inflight.locked():
            return False
        async with self._inflight:
            # Requests made before this fetch started are served by it
            self._wake.clear()
            self.polls += 1
            try:
                snapshot = await self.fetch()
            except SyncError as e:
                self._record_failure(e)
                return False
            if self._stopped:
                return False
            self.apply(snapshot)
            self._record_success()
            logger.debug("snapshot applied (%d entries)", len(snapshot.entries))
            if self.after_apply is not None:
                await self.after_apply(snapshot)
            return True

    def _record_failure(self, error: SyncError) -> None:
        self.consecutive_failures += 1
        logger.warning(
            "snapshot poll failed (%s: %s), %d in a row",
            error.code,
            error.message,
            self.consecutive_failures,
        )
        if not self.stale and self.consecutive_failures >= self.stale_after:
            self._set_stale(True)

    def _record_success(self) -> None:
        self.consecutive_failures = 0
        if self.stale:
            self._set_stale(False)

    def _set_stale(self, value: bool) -> None:
        self.stale = value
        if value:
            logger.warning("connection stale after %d failed polls", self.consecutive_failures)
        else:
            logger.info("connection restored")
        if self.on_stale_change is not None:
            self.on_stale_change(value)

    def health(self) -> dict[str, Any]:
        return {
            "stale": self.stale,
            "consecutive_failures": self.consecutive_failures,
            "polls": self.polls,
            "running": self.running,
        }
