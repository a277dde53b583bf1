from cratesync.domain.common.errors import ConflictError, RateLimitError
from cratesync.domain.common.ops import Applied, Rejected
from cratesync.domain.common.types import PENDING_PREFIX
from cratesync.domain.ledger import VoteLedger
from cratesync.domain.modes import BattleMode, PurgeMode, ShowClockMode, TimedModeCoordinator
from cratesync.domain.ratelimit import RateLimiter
from cratesync.store.models import (
    BattleSong,
    Entry,
    PurgeWindow,
    SessionState,
    ShowClock,
    ShowSegment,
    Snapshot,
    UserQuota,
    VersusBattle,
)
from cratesync.store.state import LiveState


class FakeClock:
    def __init__(self, t=100_000):
        self.t = t

    def __call__(self):
        return self.t


def _coordinator():
    clock = FakeClock()
    state = LiveState("me")
    state.session = SessionState(running=True, timer_end_time=clock.t + 60_000)
    state.quota = UserQuota(upvotes_remaining=5)
    for i in ("x", "y", "z"):
        state.insert_entry(Entry(id=i, name=i, added_by="other", added_at=1, score=1))
    ledger = VoteLedger(state, RateLimiter(3000, clock=clock), clock=clock)
    coord = TimedModeCoordinator(state, ledger, dismiss_ms=5000, warning_ms=120_000, urgent_ms=30_000, clock=clock)
    return coord, state, ledger, clock


def _battle(**kw):
    base = dict(
        active=True,
        phase="voting",
        song_a=BattleSong(id="a"),
        song_b=BattleSong(id="b"),
        end_time=200_000,
    )
    base.update(kw)
    return VersusBattle(**base)


# ---- Purge window ----

def test_purge_allows_exactly_one_delete():
    coord, state, _, clock = _coordinator()
    events = coord.apply_snapshot(Snapshot(delete_window=PurgeWindow(active=True, end_time=clock.t + 30_000, can_delete=True)))
    assert [e.type for e in events] == ["purge_opened"]

    first = coord.window_delete("x")
    assert isinstance(first, Applied)
    assert state.get_entry("x") is None
    assert coord.purge.window.can_delete is False

    second = coord.window_delete("y")
    assert isinstance(second, Rejected)
    assert second.code == "ALREADY_DELETED"
    assert state.get_entry("y") is not None


def test_purge_rejects_provisional_entry_without_consuming_the_delete():
    coord, state, ledger, clock = _coordinator()
    state.insert_entry(Entry(id=f"{PENDING_PREFIX}abc", name="new", added_by="me", added_at=1))
    coord.apply_snapshot(Snapshot(delete_window=PurgeWindow(active=True, end_time=clock.t + 30_000, can_delete=True)))

    outcome = coord.window_delete(f"{PENDING_PREFIX}abc")
    assert isinstance(outcome, Rejected)
    assert outcome.code == "PENDING"
    assert coord.purge.window.can_delete is True
    assert state.get_entry(f"{PENDING_PREFIX}abc") is not None
    assert ledger.pending_tokens() == []


def test_purge_rollback_restores_can_delete():
    coord, state, ledger, clock = _coordinator()
    coord.apply_snapshot(Snapshot(delete_window=PurgeWindow(active=True, end_time=clock.t + 30_000, can_delete=True)))
    outcome = coord.window_delete("x")
    ledger.fail(outcome.token, RateLimitError("slow"))
    assert coord.purge.window.can_delete is True
    assert state.get_entry("x") is not None


def test_purge_snapshot_during_pending_delete_keeps_it_spent():
    coord, _, _, clock = _coordinator()
    window = PurgeWindow(active=True, end_time=clock.t + 30_000, can_delete=True)
    coord.apply_snapshot(Snapshot(delete_window=window))
    coord.window_delete("x")
    coord.apply_snapshot(Snapshot(delete_window=window))
    assert coord.purge.window.can_delete is False


def test_purge_countdown_zero_marks_ending_and_resyncs_once():
    coord, _, _, clock = _coordinator()
    coord.apply_snapshot(Snapshot(delete_window=PurgeWindow(active=True, end_time=clock.t + 2000, can_delete=True)))
    clock.t += 2000
    events, resync = coord.tick()
    assert "purge_ending" in [e.type for e in events]
    assert resync is True
    assert coord.purge.window.active is True

    _, again = coord.tick()
    assert again is False
    assert coord.window_delete("x").code == "WINDOW_CLOSED"

    events = coord.apply_snapshot(Snapshot(delete_window=PurgeWindow(active=False)))
    assert [e.type for e in events] == ["purge_closed"]


def test_window_closed_when_inactive():
    assert PurgeMode().check()[1] == "WINDOW_CLOSED"


# ---- Battle ----

def test_battle_lightning_reset_clears_local_vote():
    mode = BattleMode()
    mode.apply(_battle(), 0, vote_pending=False)
    mode.set_vote("A")

    # Same round, our vote not yet reflected: keep it while pending
    mode.apply(_battle(), 1000, vote_pending=True)
    assert mode.battle.user_vote == "A"

    events = mode.apply(_battle(phase="lightning", is_lightning_round=True, user_vote=None), 2000, vote_pending=True)
    assert [e.type for e in events] == ["battle_phase_changed"]
    assert mode.battle.user_vote is None
    assert mode.check() == (True, "", "")


def test_battle_one_vote_per_occurrence():
    coord, _, ledger, _ = _coordinator()
    coord.apply_snapshot(Snapshot(versus_battle=_battle()))
    assert isinstance(coord.cast_battle_vote("A"), Applied)
    second = coord.cast_battle_vote("B")
    assert second.code == "ALREADY_VOTED"
    assert ledger.has_pending_kind("battle_vote")


def test_battle_vote_rollback_and_conflict():
    coord, _, ledger, _ = _coordinator()
    coord.apply_snapshot(Snapshot(versus_battle=_battle()))
    outcome = coord.cast_battle_vote("B")
    ledger.fail(outcome.token, RateLimitError("slow"))
    assert coord.battle.battle.user_vote is None

    outcome = coord.cast_battle_vote("A")
    ledger.fail(outcome.token, ConflictError("over"))
    assert coord.battle.battle.user_vote == "A"


def test_battle_no_vote_without_battle():
    coord, _, _, _ = _coordinator()
    assert coord.cast_battle_vote("A").code == "NO_BATTLE"


def test_battle_end_keeps_result_then_dismisses():
    mode = BattleMode(dismiss_ms=5000)
    events = mode.apply(_battle(), 0, vote_pending=False)
    assert [e.type for e in events] == ["battle_started"]

    events = mode.apply(VersusBattle(active=False, winner="B"), 10_000, vote_pending=False)
    assert [e.type for e in events] == ["battle_resolved"]
    assert mode.battle.phase == "resolved"
    assert mode.battle.winner == "B"
    assert mode.check()[1] == "NO_BATTLE"

    events, _ = mode.tick(14_999)
    assert events == []
    events, _ = mode.tick(15_000)
    assert [e.type for e in events] == ["battle_dismissed"]
    assert mode.battle == VersusBattle()


def test_battle_countdown_zero_requests_resync_once():
    mode = BattleMode()
    mode.apply(_battle(end_time=5000), 0, vote_pending=False)
    assert mode.tick(4000)[1] is False
    assert mode.tick(5000)[1] is True
    assert mode.tick(6000)[1] is False


# ---- Show clock ----

def _show(index, started_at=0, running=True):
    segments = [
        ShowSegment(id="intro", name="Intro", duration_ms=300_000, order=0),
        ShowSegment(id="main", name="Main", duration_ms=600_000, order=1),
    ]
    return ShowClock(segments=segments, active_segment_index=index, segment_started_at=started_at, is_running=running)


def test_show_clock_latches_fire_once_per_segment():
    mode = ShowClockMode(warning_ms=120_000, urgent_ms=30_000)
    assert mode.apply(_show(0)) == []

    fired = []
    # Tick far more often than once a second
    for t in range(0, 300_000, 250):
        fired += [e.type for e in mode.tick(t)]
    assert fired.count("segment_warning") == 1
    assert fired.count("segment_urgent") == 1

    # Re-applying the same index does not re-arm
    mode.apply(_show(0))
    assert mode.tick(290_000) == []


def test_show_clock_index_change_resets_latches_and_transitions():
    mode = ShowClockMode(warning_ms=120_000, urgent_ms=30_000)
    mode.apply(_show(0))
    mode.tick(290_000)

    events = mode.apply(_show(1, started_at=300_000))
    assert [e.type for e in events] == ["segment_transition"]
    assert events[0].segment_id == "main"

    fired = [e.type for e in mode.tick(300_000 + 600_000 - 10_000)]
    assert fired == ["segment_warning", "segment_urgent"]


def test_show_clock_paused_does_not_fire():
    mode = ShowClockMode()
    mode.apply(_show(0, running=False))
    assert mode.tick(299_000) == []


# ---- Session countdown ----

def test_session_countdown_ends_once():
    coord, state, _, clock = _coordinator()
    clock.t = state.session.timer_end_time
    events, resync = coord.tick()
    assert [e.type for e in events] == ["session_ended"]
    assert resync is True
    assert state.session.running is False
    assert coord.tick() == ([], False)


def test_countdowns():
    coord, _, _, clock = _coordinator()
    coord.apply_snapshot(Snapshot(delete_window=PurgeWindow(active=True, end_time=clock.t + 30_000, can_delete=True)))
    out = coord.countdowns()
    assert out["session_ms"] == 60_000
    assert out["purge_ms"] == 30_000
    assert out["battle_ms"] == 0
    assert out["segment_ms"] is None
