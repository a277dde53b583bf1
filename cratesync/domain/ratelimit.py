# cratesync/domain/ratelimit.py
from __future__ import annotations

from typing import Callable, Dict, Optional

from cratesync.util.timeutil import now_ms


class RateLimiter:
    """
    Per-key cooldown gate for local actions (double-tap suppression).
    Fixed window: a key is blocked for cooldown_ms after its last
    accepted action. Server-side 429s are a separate concern.
    """

    def __init__(self, cooldown_ms: int = 3000, *, clock: Callable[[], int] = now_ms) -> None:
        self.cooldown_ms = cooldown_ms
        self._clock = clock
        self._last: Dict[str, int] = {}

    def allow(self, key: str, now: Optional[int] = None) -> bool:
        ts = self._clock() if now is None else now
        last = self._last.get(key)
        return last is None or ts - last >= self.cooldown_ms

    def record(self, key: str, now: Optional[int] = None) -> None:
        ts = self._clock() if now is None else now
        self._last[key] = ts
        self._prune(ts)

    def retry_in_ms(self, key: str, now: Optional[int] = None) -> int:
        ts = self._clock() if now is None else now
        last = self._last.get(key)
        if last is None:
            return 0
        return max(0, self.cooldown_ms - (ts - last))

    def _prune(self, ts: int) -> None:
        expired = [k for k, last in self._last.items() if ts - last >= self.cooldown_ms]
        for k in expired:
            self._last.pop(k, None)
