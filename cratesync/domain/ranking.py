# cratesync/domain/ranking.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from cratesync.domain.common.types import Movement
from cratesync.store.models import Entry
from cratesync.util.timeutil import now_ms

TOP_N = 10
TOP_THREE = 3


def sort_key(entry: Entry) -> Tuple[int, int, int, str]:
    """
    Three bands: positive scores, then unvoted, then negative.
      - positive / negative: score desc, oldest first
      - unvoted: newest first, so fresh adds sit right under the voted block
    The id closes every tie, which makes the order total.
    """
    if entry.score > 0:
        return (0, -entry.score, entry.added_at, entry.id)
    if entry.score == 0:
        return (1, 0, -entry.added_at, entry.id)
    return (2, -entry.score, entry.added_at, entry.id)


def compute_order(entries: Iterable[Entry]) -> List[Entry]:
    return sorted(entries, key=sort_key)


def _top_ids(order: Sequence[Entry], n: int) -> List[str]:
    return [e.id for e in order[:n]]


def rank(
    entries: Iterable[Entry],
    previous_stable_order: Sequence[Entry],
    interaction_active: bool,
    *,
    top_n: int = TOP_N,
) -> List[Entry]:
    """
    Display order for one render.

    While the user is interacting and the fresh order would change the
    identity of the top N rows, keep the previous positions: rows get
    their new scores, vanished ids drop out, unseen ids go to the end.
    """
    fresh = compute_order(entries)
    if not interaction_active or not previous_stable_order:
        return fresh

    if _top_ids(fresh, top_n) == _top_ids(previous_stable_order, top_n):
        return fresh

    by_id = {e.id: e for e in fresh}
    held = [by_id[e.id] for e in previous_stable_order if e.id in by_id]
    known = {e.id for e in previous_stable_order}
    held.extend(e for e in fresh if e.id not in known)
    return held


class InteractionLock:
    """Open for window_ms after the last mark()."""

    def __init__(self, window_ms: int = 2000, *, clock: Callable[[], int] = now_ms) -> None:
        self.window_ms = window_ms
        self._clock = clock
        self._last: Optional[int] = None

    def mark(self, now: Optional[int] = None) -> None:
        self._last = self._clock() if now is None else now

    def is_active(self, now: Optional[int] = None) -> bool:
        if self._last is None:
            return False
        ts = self._clock() if now is None else now
        return ts - self._last < self.window_ms


@dataclass
class RankedView:
    order: List[Entry]
    movement: Dict[str, Movement] = field(default_factory=dict)
    held: bool = False
    reached_top_three: List[str] = field(default_factory=list)

    def ids(self) -> List[str]:
        return [e.id for e in self.order]


class RankingEngine:
    """Keeps the last displayed order and rank table between recomputes."""

    def __init__(self, lock: InteractionLock, *, top_n: int = TOP_N) -> None:
        self.lock = lock
        self.top_n = top_n
        self._stable: List[Entry] = []
        self._ranks: Dict[str, int] = {}
        self.view = RankedView(order=[])

    def recompute(self, entries: Iterable[Entry], now: Optional[int] = None, *, track_movement: bool = False) -> RankedView:
        """
        Recompute the display order. track_movement is set on poll merges
        only, so local optimistic nudges do not flash movement markers.
        """
        entries = list(entries)
        active = self.lock.is_active(now)
        order = rank(entries, self._stable, active, top_n=self.top_n)
        held = active and _top_ids(order, self.top_n) != _top_ids(compute_order(entries), self.top_n)

        movement: Dict[str, Movement] = {}
        reached: List[str] = []
        if track_movement:
            ranks = {e.id: i + 1 for i, e in enumerate(order)}
            for entry_id, new_rank in ranks.items():
                prev = self._ranks.get(entry_id)
                if prev is None:
                    if self._ranks:
                        movement[entry_id] = "new"
                elif new_rank < prev:
                    movement[entry_id] = "up"
                    if new_rank <= TOP_THREE < prev:
                        reached.append(entry_id)
                elif new_rank > prev:
                    movement[entry_id] = "down"
            self._ranks = ranks

        self._stable = order
        self.view = RankedView(order=order, movement=movement, held=held, reached_top_three=reached)
        return self.view
