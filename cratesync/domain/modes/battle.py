# cratesync/domain/modes/battle.py
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from cratesync.domain.common.fsm import battle_state, can_transition_battle
from cratesync.domain.common.types import BattleChoice
from cratesync.domain.common.validation import Gate, OPEN
from cratesync.store.models import VersusBattle
from cratesync.transport.protocols import (
    OutBase,
    OutBattleDismissed,
    OutBattlePhaseChanged,
    OutBattleResolved,
    OutBattleStarted,
)
from cratesync.util.timeutil import remaining_ms

logger = logging.getLogger(__name__)


class BattleMode:
    """
    Two-song runoff: Inactive -> Voting -> Lightning -> Resolved -> Inactive.

    One vote per occurrence. Entering the lightning round with the
    authority's vote cleared clears ours too. When a battle goes inactive
    the last result stays visible until dismiss_ms later, checked on tick.
    """

    def __init__(self, *, dismiss_ms: int = 5000) -> None:
        self.dismiss_ms = dismiss_ms
        self.battle = VersusBattle()
        self.dismiss_at: Optional[int] = None
        self._end_resync_for: Optional[int] = None

    def apply(self, new: VersusBattle, now: int, *, vote_pending: bool) -> List[OutBase]:
        events: List[OutBase] = []
        prev = self.battle
        current = battle_state(prev.active, prev.phase)
        target = battle_state(new.active, new.phase)
        if not can_transition_battle(current, target):
            logger.warning("unexpected battle transition %r -> %r", current, target)

        if new.active:
            self.dismiss_at = None
            if not prev.active:
                events.append(
                    OutBattleStarted(
                        song_a=new.song_a.id if new.song_a else None,
                        song_b=new.song_b.id if new.song_b else None,
                        end_time=new.end_time,
                    )
                )
            elif target != current:
                if target == "resolved":
                    events.append(OutBattleResolved(winner=new.winner))
                else:
                    events.append(OutBattlePhaseChanged(phase=new.phase))

            user_vote = new.user_vote
            entering_lightning = new.in_lightning and not prev.in_lightning
            same_run = prev.active and new.occurrence() == prev.occurrence()
            if vote_pending and same_run and not entering_lightning and user_vote is None:
                user_vote = prev.user_vote
            self.battle = new.model_copy(update={"user_vote": user_vote})
            return events

        if prev.active:
            # Resolved or cancelled: keep the result on screen for a moment
            if current != "resolved":
                events.append(OutBattleResolved(winner=new.winner or prev.winner))
            self.battle = prev.model_copy(
                update={
                    "active": False,
                    "phase": "resolved",
                    "winner": new.winner or prev.winner,
                    "votes_a": new.votes_a if new.votes_a is not None else prev.votes_a,
                    "votes_b": new.votes_b if new.votes_b is not None else prev.votes_b,
                }
            )
            self.dismiss_at = now + self.dismiss_ms
        elif self.dismiss_at is None:
            self.battle = new
        return events

    def remaining(self, now: int) -> int:
        if not self.battle.active:
            return 0
        return remaining_ms(self.battle.end_time, now)

    def tick(self, now: int) -> Tuple[List[OutBase], bool]:
        events: List[OutBase] = []
        resync = False

        if self.dismiss_at is not None and now >= self.dismiss_at:
            self.dismiss_at = None
            self.battle = VersusBattle()
            events.append(OutBattleDismissed())

        end_time = self.battle.end_time
        if self.battle.active and end_time and self.remaining(now) <= 0 and self._end_resync_for != end_time:
            # Countdown hit zero; the authority decides what comes next
            self._end_resync_for = end_time
            resync = True

        return events, resync

    def check(self) -> Gate:
        b = self.battle
        if not b.active:
            return False, "NO_BATTLE", "There is no battle running"
        if b.phase == "resolved":
            return False, "BATTLE_OVER", "This battle is already decided"
        if b.user_vote is not None:
            return False, "ALREADY_VOTED", "You already voted in this battle"
        return OPEN

    def set_vote(self, choice: Optional[BattleChoice]) -> None:
        self.battle = self.battle.model_copy(update={"user_vote": choice})

    def revert_to(self, occurrence: Optional[tuple], previous: Optional[BattleChoice]) -> None:
        """Undo an optimistic vote, unless the battle moved on meanwhile."""
        if self.battle.occurrence() == occurrence:
            self.set_vote(previous)
