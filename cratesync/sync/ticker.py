# cratesync/sync/ticker.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from cratesync.util.timeutil import now_ms

logger = logging.getLogger(__name__)

TickHandler = Callable[[int], None]


class Ticker:
    """
    The one shared once-a-second signal. Every countdown subscribes here
    instead of owning a timer, so stop() is the only teardown needed.
    """

    def __init__(self, period_ms: int = 1000, *, clock: Callable[[], int] = now_ms) -> None:
        self.period_ms = period_ms
        self._clock = clock
        self._handlers: List[TickHandler] = []
        self._task: Optional[asyncio.Task] = None

    def subscribe(self, handler: TickHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def fire(self, now: Optional[int] = None) -> None:
        ts = self._clock() if now is None else now
        for handler in list(self._handlers):
            try:
                handler(ts)
            except Exception:
                logger.exception("tick handler failed")

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="ticker")

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._handlers.clear()
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

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.period_ms / 1000)
            self.fire()
