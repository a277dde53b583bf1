# cratesync/util/timeutil.py
from __future__ import annotations

import time


def now_ms() -> int:
    """Wall clock in epoch milliseconds (the authority's time unit)."""
    return int(time.time() * 1000)


def remaining_ms(end_time: int | None, now: int) -> int:
    if not end_time:
        return 0
    return max(0, int(end_time) - now)
