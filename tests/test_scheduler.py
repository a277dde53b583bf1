import asyncio
import random
from collections import Counter

import pytest

from cratesync.domain.common.errors import AuthorityError, NetworkError
from cratesync.store.models import Snapshot
from cratesync.sync.scheduler import SyncScheduler
from cratesync.sync.ticker import Ticker


class FakeFetch:
    """Pops scripted results; an exception instance is raised instead of returned."""

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        item = self.script.pop(0) if self.script else Snapshot()
        if isinstance(item, Exception):
            raise item
        return item


async def _settle():
    await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_stale_after_three_failures_and_reset_on_success():
    fetch = FakeFetch([NetworkError("down"), NetworkError("down"), AuthorityError("500"), Snapshot()])
    applied, changes = [], []
    sched = SyncScheduler(fetch, applied.append, on_stale_change=changes.append)

    assert await sched.poll_once() is False
    assert await sched.poll_once() is False
    assert sched.stale is False
    assert await sched.poll_once() is False
    assert sched.stale is True
    assert sched.consecutive_failures == 3

    assert await sched.poll_once() is True
    assert sched.stale is False
    assert sched.consecutive_failures == 0
    assert len(applied) == 1
    assert changes == [True, False]


@pytest.mark.asyncio
async def test_stale_hook_fires_once_per_change():
    fetch = FakeFetch([NetworkError("down")] * 5)
    changes = []
    sched = SyncScheduler(fetch, lambda s: None, on_stale_change=changes.append)
    for _ in range(5):
        await sched.poll_once()
    assert changes == [True]
    assert sched.consecutive_failures == 5


def test_first_poll_jitter_is_spread_over_window():
    rng = random.Random(42)
    delays = [
        SyncScheduler(FakeFetch(), lambda s: None, jitter_ms=5000, rng=rng).first_delay_ms()
        for _ in range(1000)
    ]
    assert all(0 <= d < 5000 for d in delays)

    buckets = Counter(int(d // 100) for d in delays)
    assert len(buckets) == 50
    # Uniform would put ~20 in each 100 ms bucket
    assert max(buckets.values()) <= 50
    assert 2250 < sum(delays) / len(delays) < 2750


@pytest.mark.asyncio
async def test_loop_polls_and_resync_requests_coalesce():
    fetch = FakeFetch()
    applied = []
    sched = SyncScheduler(fetch, applied.append, interval_ms=60_000, jitter_ms=0)
    sched.start()
    await _settle()
    assert fetch.calls == 1

    sched.request_resync()
    sched.request_resync()
    sched.request_resync()
    await _settle()
    assert fetch.calls == 2
    assert len(applied) == 2

    await sched.stop()
    assert sched.running is False
    sched.request_resync()
    await _settle()
    assert fetch.calls == 2


@pytest.mark.asyncio
async def test_snapshot_arriving_after_stop_is_not_applied():
    gate = asyncio.Event()

    async def slow_fetch():
        await gate.wait()
        return Snapshot()

    applied = []
    sched = SyncScheduler(slow_fetch, applied.append)
    poll = asyncio.create_task(sched.poll_once())
    await asyncio.sleep(0)
    sched._stopped = True
    gate.set()
    assert await poll is False
    assert applied == []


@pytest.mark.asyncio
async def test_after_apply_hook_runs_on_success_only():
    fetch = FakeFetch([NetworkError("down"), Snapshot(viewer_count=3)])
    saved = []

    async def save(snapshot):
        saved.append(snapshot.viewer_count)

    sched = SyncScheduler(fetch, lambda s: None, after_apply=save)
    await sched.poll_once()
    await sched.poll_once()
    assert saved == [3]


@pytest.mark.asyncio
async def test_loop_survives_unexpected_fetch_errors_and_goes_stale():
    fetch = FakeFetch([RuntimeError("boom")] * 3)
    changes = []
    sched = SyncScheduler(fetch, lambda s: None, interval_ms=10, jitter_ms=0, stale_after=3, on_stale_change=changes.append)
    sched.start()
    await asyncio.sleep(0.1)
    assert sched.running
    assert fetch.calls > 3
    assert changes == [True, False]
    assert sched.stale is False
    await sched.stop()


@pytest.mark.asyncio
async def test_loop_counts_apply_errors_as_failures():
    def bad_apply(snapshot):
        raise ValueError("bad snapshot")

    sched = SyncScheduler(FakeFetch(), bad_apply, interval_ms=10, jitter_ms=0, stale_after=2)
    sched.start()
    await _settle()
    assert sched.running
    assert sched.stale is True
    assert sched.consecutive_failures >= 2
    await sched.stop()


# ---- Ticker ----

def test_ticker_fans_out_and_unsubscribes():
    ticker = Ticker(1000, clock=lambda: 42)
    seen = []
    unsubscribe = ticker.subscribe(seen.append)
    ticker.fire()
    unsubscribe()
    ticker.fire()
    assert seen == [42]


def test_ticker_handler_error_does_not_stop_others():
    ticker = Ticker()
    seen = []

    def boom(now):
        raise RuntimeError("bad handler")

    ticker.subscribe(boom)
    ticker.subscribe(seen.append)
    ticker.fire(7)
    assert seen == [7]


@pytest.mark.asyncio
async def test_ticker_stop_tears_down_task():
    ticker = Ticker(10, clock=lambda: 1)
    seen = []
    ticker.subscribe(seen.append)
    ticker.start()
    await _settle()
    assert ticker.running
    await ticker.stop()
    count = len(seen)
    assert count > 0
    await _settle()
    assert len(seen) == count
    assert ticker.running is False
