# cratesync/live.py
from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from redis.exceptions import RedisError

from cratesync.domain.common.errors import NetworkError, RateLimitError, SyncError
from cratesync.domain.common.ops import Outcome, Rejected
from cratesync.domain.common.types import BattleChoice, Direction
from cratesync.domain.ledger import VoteLedger
from cratesync.domain.modes import TimedModeCoordinator
from cratesync.domain.ranking import InteractionLock, RankingEngine
from cratesync.domain.ratelimit import RateLimiter
from cratesync.settings import Settings, get_settings
from cratesync.store.models import Entry, Snapshot
from cratesync.store.redis_repo import RedisRepo
from cratesync.store.state import LiveState
from cratesync.sync.scheduler import SyncScheduler
from cratesync.sync.ticker import Ticker
from cratesync.transport.authority import AuthorityClient, with_retry
from cratesync.transport.protocols import (
    OutActionResult,
    OutBase,
    OutConnectionChanged,
    OutTopThreeReached,
    dump_events,
)
from cratesync.util.timeutil import now_ms

logger = logging.getLogger(__name__)


class LiveSession:
    """
    One visitor's view of a live session.

    Wires the state container, ledger, ranking, timed modes, poll loop and
    ticker. Presentation calls the actions below and reads view() and
    drain_events(); nothing else mutates the caches.
    """

    def __init__(
        self,
        client: AuthorityClient,
        *,
        settings: Optional[Settings] = None,
        repo: Optional[RedisRepo] = None,
        elevated: bool = False,
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        s = settings or get_settings()
        self.settings = s
        self.client = client
        self.repo = repo
        self._clock = clock
        self._sleep = sleep

        self.state = LiveState(client.visitor_id, activity_seen_max=s.ACTIVITY_SEEN_MAX)
        self.limiter = RateLimiter(s.VOTE_COOLDOWN_MS, clock=clock)
        self.ledger = VoteLedger(self.state, self.limiter, elevated=elevated, clock=clock)
        self.lock = InteractionLock(s.INTERACTION_LOCK_MS, clock=clock)
        self.ranking = RankingEngine(self.lock, top_n=s.INTERACTION_TOP_N)
        self.modes = TimedModeCoordinator(
            self.state,
            self.ledger,
            dismiss_ms=s.BATTLE_DISMISS_MS,
            warning_ms=s.SEGMENT_WARNING_MS,
            urgent_ms=s.SEGMENT_URGENT_MS,
            clock=clock,
        )
        self.scheduler = SyncScheduler(
            self._fetch,
            self.apply_snapshot,
            interval_ms=s.POLL_INTERVAL_MS,
            jitter_ms=s.POLL_JITTER_MS,
            stale_after=s.STALE_AFTER_FAILURES,
            on_stale_change=self._on_stale_change,
            after_apply=self._persist,
            rng=rng,
        )
        self.ticker = Ticker(s.TICK_MS, clock=clock)

        self._events: Deque[OutBase] = deque(maxlen=s.EVENT_BUFFER_MAX)
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._started = False
        self._closed = False
        self.last_synced_at: Optional[int] = None

    # ----------------------------
    # Lifecycle
    # ----------------------------
    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._closed = False
        await self.warm_start()
        self._unsubscribe = self.ticker.subscribe(self._on_tick)
        self.ticker.start()
        self.scheduler.start()
        logger.info("live session started for visitor %s", self.state.visitor_id)

    async def stop(self) -> None:
        """Tear down the poll loop and the ticker. Late confirmations are ignored."""
        self._closed = True
        await self.scheduler.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.ticker.stop()
        self.ledger.clear()
        self._events.clear()
        self._started = False
        logger.info("live session stopped for visitor %s", self.state.visitor_id)

    @property
    def closed(self) -> bool:
        return self._closed

    async def warm_start(self) -> bool:
        """Render the cached snapshot before the first poll lands. Health is untouched."""
        if self.repo is None:
            return False
        try:
            loaded = await self.repo.load_snapshot(self.state.visitor_id)
        except RedisError as e:
            logger.warning("warm snapshot unavailable: %s", e)
            return False
        if loaded is None:
            return False
        snapshot, saved_at = loaded
        self.apply_snapshot(snapshot)
        logger.info("warm start from snapshot saved at %s", saved_at)
        return True

    # ----------------------------
    # Sync
    # ----------------------------
    async def _fetch(self) -> Snapshot:
        return await with_retry(
            self.client.fetch_snapshot,
            retries=self.settings.MAX_RETRIES,
            base_ms=self.settings.RETRY_BASE_MS,
            sleep=self._sleep,
        )

    async def _persist(self, snapshot: Snapshot) -> None:
        if self.repo is None or self._closed:
            return
        try:
            await self.repo.save_snapshot(self.state.visitor_id, snapshot, self._clock())
        except RedisError as e:
            logger.warning("could not cache snapshot: %s", e)

    def apply_snapshot(self, snapshot: Snapshot, now: Optional[int] = None) -> None:
        """
        Merge one authoritative snapshot into every component, then rank
        once. Runs without awaiting, so nothing observes a half merge.
        """
        if self._closed:
            return
        ts = self._clock() if now is None else now
        state = self.state
        ledger = self.ledger
        vote_pending = ledger.vote_pending_ids()

        state.merge_entries(
            snapshot.entries,
            keep_score=vote_pending,
            suppressed=ledger.suppressed_ids(),
            provisional=ledger.provisional_entries(),
        )
        state.merge_quota(snapshot.user_quota, keep_local=ledger.quota_pending())
        state.merge_votes(snapshot.user_votes, keep_local=vote_pending)
        state.session = snapshot.session_state
        state.karma = snapshot.karma_bonuses
        state.playlist_stats = snapshot.playlist_stats
        state.viewer_count = snapshot.viewer_count
        state.stream = snapshot.stream
        state.merge_activity(snapshot.recent_activity)
        state.synced = True

        events = self.modes.apply_snapshot(snapshot, ts)
        view = self.ranking.recompute(state.entries.values(), ts, track_movement=True)
        ids = view.ids()
        for entry_id in view.reached_top_three:
            entry = state.get_entry(entry_id)
            if entry is not None and entry.added_by == state.visitor_id:
                events.append(OutTopThreeReached(entry_id=entry_id, name=entry.name, rank=ids.index(entry_id) + 1))

        self.last_synced_at = ts
        self._emit(events)

    def request_resync(self) -> None:
        self.scheduler.request_resync()

    def _on_stale_change(self, stale: bool) -> None:
        self._emit([OutConnectionChanged(stale=stale)])

    def _on_tick(self, now: int) -> None:
        if self._closed:
            return
        events, resync = self.modes.tick(now)
        self._emit(events)
        if resync:
            self.request_resync()
        if self.ranking.view.held and not self.lock.is_active(now):
            self._rerank(now)

    def _rerank(self, now: Optional[int] = None) -> None:
        self.ranking.recompute(self.state.entries.values(), now)

    # ----------------------------
    # Actions
    # ----------------------------
    def mark_interaction(self, now: Optional[int] = None) -> None:
        self.lock.mark(now)

    async def toggle_vote(self, entry_id: str, direction: Direction) -> OutActionResult:
        if self._closed:
            return self._closed_result("vote")
        outcome = self.ledger.toggle_vote(entry_id, direction)
        return await self._confirm("vote", outcome, lambda: self.client.vote(entry_id, direction))

    async def add_entry(self, track: Dict[str, Any]) -> OutActionResult:
        if self._closed:
            return self._closed_result("add_entry")
        outcome = self.ledger.add_entry(track)
        return await self._confirm("add_entry", outcome, lambda: self.client.add_entry(track))

    async def delete_entry(self, entry_id: str) -> OutActionResult:
        if self._closed:
            return self._closed_result("delete_entry")
        outcome = self.ledger.delete_entry(entry_id)
        return await self._confirm("delete_entry", outcome, lambda: self.client.delete_entry(entry_id))

    async def window_delete(self, entry_id: str) -> OutActionResult:
        if self._closed:
            return self._closed_result("window_delete")
        outcome = self.modes.window_delete(entry_id)
        return await self._confirm("window_delete", outcome, lambda: self.client.window_delete(entry_id))

    async def cast_battle_vote(self, choice: BattleChoice) -> OutActionResult:
        if self._closed:
            return self._closed_result("battle_vote")
        outcome = self.modes.cast_battle_vote(choice)
        return await self._confirm("battle_vote", outcome, lambda: self.client.battle_vote(choice))

    def _closed_result(self, action: str) -> OutActionResult:
        return OutActionResult(action=action, ok=False, code="CLOSED", message="Session is not running")

    async def _confirm(
        self,
        action: str,
        outcome: Outcome,
        call: Callable[[], Awaitable[Any]],
    ) -> OutActionResult:
        if isinstance(outcome, Rejected):
            if outcome.resync:
                self.request_resync()
            return OutActionResult(action=action, ok=False, **outcome.as_dict())

        # Optimistic change is already in the cache; show it before awaiting
        self._rerank()
        token = outcome.token
        try:
            result = await call()
        except SyncError as e:
            if self._closed:
                return self._closed_result(action)
            resolution = self.ledger.fail(token, e)
            if resolution.resyncs:
                self.request_resync()
            self._rerank()
            return OutActionResult(
                action=action,
                ok=False,
                code=e.code,
                message=e.message,
                resync=resolution.resyncs,
                retry_after_ms=e.retry_after_ms if isinstance(e, RateLimitError) else 0,
            )
        except Exception as e:
            # Unmapped failure: still resolve the token so merges stop holding it
            if not self._closed:
                self.ledger.fail(token, NetworkError(f"Unexpected error: {e.__class__.__name__}"))
                self.request_resync()
                self._rerank()
            raise

        if self._closed:
            return self._closed_result(action)
        confirmed = result if isinstance(result, Entry) else None
        if self.ledger.confirm(token, confirmed):
            self.request_resync()
        self._rerank()

        entry = confirmed or (self.state.get_entry(outcome.entry.id) if outcome.entry else None)
        return OutActionResult(action=action, ok=True, entry=entry.model_dump() if entry else None)

    # ----------------------------
    # Presentation
    # ----------------------------
    def _emit(self, events: List[OutBase]) -> None:
        if self._closed:
            return
        self._events.extend(events)

    def drain_events(self) -> List[Dict[str, Any]]:
        out = dump_events(list(self._events))
        self._events.clear()
        return out

    def view(self, now: Optional[int] = None) -> Dict[str, Any]:
        ts = self._clock() if now is None else now
        state = self.state
        ranked = self.ranking.view
        modes = self.modes

        pending = self.ledger.pending_ids()
        entries = []
        for i, entry in enumerate(ranked.order):
            row = entry.model_dump()
            row.update(
                rank=i + 1,
                movement=ranked.movement.get(entry.id),
                has_upvoted=entry.id in state.upvoted,
                has_downvoted=entry.id in state.downvoted,
                pending=entry.id in pending,
                mine=entry.added_by == state.visitor_id,
            )
            entries.append(row)

        return {
            "visitor_id": state.visitor_id,
            "synced": state.synced,
            "stale": self.scheduler.stale,
            "last_synced_at": self.last_synced_at,
            "held": ranked.held,
            "entries": entries,
            "quota": state.quota.model_dump(),
            "session": state.session.model_dump(),
            "countdowns": modes.countdowns(ts),
            "purge": {**modes.purge.window.model_dump(), "ending": modes.purge.ending},
            "battle": {**modes.battle.battle.model_dump(), "dismiss_at": modes.battle.dismiss_at},
            "show_clock": modes.show_clock.clock.model_dump(),
            "karma": state.karma.model_dump(),
            "playlist_stats": state.playlist_stats.model_dump(),
            "viewer_count": state.viewer_count,
            "stream": state.stream.model_dump(),
            "activity": [a.model_dump() for a in state.activity],
        }
