import random

from cratesync.domain.ranking import InteractionLock, RankingEngine, compute_order, rank
from cratesync.store.models import Entry


def _e(entry_id, score=0, added_at=0):
    return Entry(id=entry_id, name=entry_id.upper(), score=score, added_at=added_at)


class FakeClock:
    def __init__(self, t=0):
        self.t = t

    def __call__(self):
        return self.t


def test_rank_is_deterministic_for_shuffled_input():
    entries = [_e(f"s{i}", score=(i % 5) - 2, added_at=i % 3) for i in range(40)]
    first = [e.id for e in compute_order(entries)]
    shuffled = list(entries)
    random.Random(7).shuffle(shuffled)
    assert [e.id for e in compute_order(shuffled)] == first
    assert [e.id for e in compute_order(entries)] == first


def test_bands_positive_then_unvoted_then_negative():
    entries = [_e("neg", -1, 1), _e("zero", 0, 2), _e("pos", 3, 3), _e("neg2", -5, 0), _e("pos2", 1, 0)]
    order = [e.id for e in compute_order(entries)]
    assert order == ["pos", "pos2", "zero", "neg", "neg2"]


def test_positive_ties_oldest_first_and_unvoted_newest_first():
    entries = [_e("a", 2, 200), _e("b", 2, 100), _e("old", 0, 10), _e("new", 0, 50)]
    order = [e.id for e in compute_order(entries)]
    assert order == ["b", "a", "new", "old"]


def test_id_breaks_full_ties():
    entries = [_e("z", 1, 5), _e("a", 1, 5)]
    assert [e.id for e in compute_order(entries)] == ["a", "z"]


def test_interaction_lock_holds_top_order_and_updates_scores():
    previous = [_e("A", 5), _e("B", 4), _e("C", 3)]
    fresh = [_e("A", 4), _e("B", 6), _e("C", 3)]

    held = rank(fresh, previous, interaction_active=True)
    assert [e.id for e in held] == ["A", "B", "C"]
    assert [e.score for e in held] == [4, 6, 3]

    adopted = rank(fresh, held, interaction_active=False)
    assert [e.id for e in adopted] == ["B", "A", "C"]


def test_interaction_lock_drops_vanished_and_appends_new():
    previous = [_e("A", 5), _e("B", 4), _e("C", 3)]
    fresh = [_e("B", 9), _e("C", 3), _e("D", 1)]
    held = rank(fresh, previous, interaction_active=True)
    assert [e.id for e in held] == ["B", "C", "D"]


def test_interaction_lock_adopts_when_top_identity_unchanged():
    previous = [_e(f"s{i}", 100 - i) for i in range(12)]
    # Only rows below the top 10 swap
    fresh = [_e(f"s{i}", 100 - i) for i in range(10)] + [_e("s10", 1), _e("s11", 50)]
    order = rank(fresh, previous, interaction_active=True)
    assert [e.id for e in order][10:] == ["s11", "s10"]


def test_lock_window_expires():
    clock = FakeClock(1000)
    lock = InteractionLock(2000, clock=clock)
    assert lock.is_active() is False
    lock.mark()
    clock.t = 2999
    assert lock.is_active() is True
    clock.t = 3000
    assert lock.is_active() is False


def test_engine_tracks_movement_and_top_three():
    clock = FakeClock(0)
    engine = RankingEngine(InteractionLock(2000, clock=clock))
    first = [_e("a", 5), _e("b", 4), _e("c", 3), _e("d", 2)]
    view = engine.recompute(first, track_movement=True)
    assert view.movement == {}

    second = [_e("a", 5), _e("b", 4), _e("c", 3), _e("d", 9), _e("e", 0)]
    view = engine.recompute(second, track_movement=True)
    assert view.ids()[0] == "d"
    assert view.movement["d"] == "up"
    assert view.movement["a"] == "down"
    assert view.movement["e"] == "new"
    assert view.reached_top_three == ["d"]


def test_engine_marks_held_while_locked():
    clock = FakeClock(0)
    lock = InteractionLock(2000, clock=clock)
    engine = RankingEngine(lock)
    engine.recompute([_e("A", 2), _e("B", 1)])

    lock.mark()
    view = engine.recompute([_e("A", 2), _e("B", 5)])
    assert view.ids() == ["A", "B"]
    assert view.held is True

    clock.t = 5000
    view = engine.recompute([_e("A", 2), _e("B", 5)])
    assert view.ids() == ["B", "A"]
    assert view.held is False
