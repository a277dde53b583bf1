# cratesync/domain/modes/coordinator.py
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from cratesync.domain.common.ops import Applied, Outcome, Rejected
from cratesync.domain.common.types import PENDING_PREFIX, BattleChoice
from cratesync.domain.common.validation import check_not_banned, is_elevated
from cratesync.domain.ledger import VoteLedger
from cratesync.domain.modes.battle import BattleMode
from cratesync.domain.modes.purge import PurgeMode
from cratesync.domain.modes.show_clock import ShowClockMode
from cratesync.store.models import Snapshot
from cratesync.store.state import LiveState
from cratesync.transport.protocols import OutBase, OutSessionEnded
from cratesync.util.timeutil import now_ms, remaining_ms

logger = logging.getLogger(__name__)


class TimedModeCoordinator:
    """
    The three timed sub-modes plus the session countdown. Snapshots set
    the authoritative end times; tick() advances the local countdowns and
    reports whether a forced resync is needed.
    """

    def __init__(
        self,
        state: LiveState,
        ledger: VoteLedger,
        *,
        dismiss_ms: int = 5000,
        warning_ms: int = 120000,
        urgent_ms: int = 30000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.state = state
        self.ledger = ledger
        self._clock = clock
        self.purge = PurgeMode()
        self.battle = BattleMode(dismiss_ms=dismiss_ms)
        self.show_clock = ShowClockMode(warning_ms=warning_ms, urgent_ms=urgent_ms)
        self._session_ended_for: Optional[int] = None

    def apply_snapshot(self, snapshot: Snapshot, now: Optional[int] = None) -> List[OutBase]:
        ts = self._clock() if now is None else now
        events: List[OutBase] = []
        events += self.purge.apply(snapshot.delete_window, delete_pending=self.ledger.has_pending_kind("window_delete"))
        events += self.battle.apply(snapshot.versus_battle, ts, vote_pending=self.ledger.has_pending_kind("battle_vote"))
        events += self.show_clock.apply(snapshot.show_clock)
        return events

    def tick(self, now: Optional[int] = None) -> Tuple[List[OutBase], bool]:
        ts = self._clock() if now is None else now
        events: List[OutBase] = []
        resync = False

        purge_events, purge_resync = self.purge.tick(ts)
        battle_events, battle_resync = self.battle.tick(ts)
        events += purge_events + battle_events
        events += self.show_clock.tick(ts)
        resync = purge_resync or battle_resync

        session = self.state.session
        end = session.timer_end_time
        if session.running and end and remaining_ms(end, ts) <= 0 and self._session_ended_for != end:
            self._session_ended_for = end
            self.state.mark_stopped()
            events.append(OutSessionEnded())
            resync = True

        return events, resync

    # ----------------------------
    # Actions
    # ----------------------------
    def window_delete(self, entry_id: str, now: Optional[int] = None) -> Outcome:
        ts = self._clock() if now is None else now
        bypass = is_elevated(self.state.quota, self.ledger.elevated)

        if not bypass:
            ok, code, message = check_not_banned(self.state.session)
            if not ok:
                return Rejected(code=code, message=message)
        ok, code, message = self.purge.check()
        if not ok:
            return Rejected(code=code, message=message)
        if self.state.get_entry(entry_id) is None:
            return Rejected(code="CONFLICT", message="Song was modified - refreshing...", resync=True)
        if entry_id.startswith(PENDING_PREFIX):
            return Rejected(code="PENDING", message="That song is still being added")

        outcome = self.ledger.apply_removal(entry_id, kind="window_delete", revert=self.purge.restore, now=ts)
        if isinstance(outcome, Applied):
            self.purge.consume()
        return outcome

    def cast_battle_vote(self, choice: BattleChoice, now: Optional[int] = None) -> Outcome:
        ts = self._clock() if now is None else now
        if not is_elevated(self.state.quota, self.ledger.elevated):
            ok, code, message = check_not_banned(self.state.session)
            if not ok:
                return Rejected(code=code, message=message)
        ok, code, message = self.battle.check()
        if not ok:
            return Rejected(code=code, message=message)

        occurrence = self.battle.battle.occurrence()
        previous = self.battle.battle.user_vote
        self.battle.set_vote(choice)
        token = self.ledger.track(
            "battle_vote",
            revert=lambda: self.battle.revert_to(occurrence, previous),
            now=ts,
        )
        return Applied(token=token)

    def countdowns(self, now: Optional[int] = None) -> Dict[str, Optional[int]]:
        ts = self._clock() if now is None else now
        session = self.state.session
        return {
            "session_ms": remaining_ms(session.timer_end_time, ts) if session.running else 0,
            "purge_ms": self.purge.remaining(ts),
            "battle_ms": self.battle.remaining(ts),
            "segment_ms": self.show_clock.remaining(ts),
        }
