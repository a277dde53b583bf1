from cratesync.store.models import ActivityItem, Entry, UserQuota, UserVotes
from cratesync.store.state import ACTIVITY_VISIBLE, LiveState


def _state():
    state = LiveState("me", activity_seen_max=5)
    state.insert_entry(Entry(id="s1", score=5))
    state.insert_entry(Entry(id="s2", score=1))
    return state


def test_merge_entries_keeps_pending_score_suppression_and_provisional():
    state = _state()
    provisional = Entry(id="pending:abc", added_by="me")
    state.insert_entry(provisional)

    state.merge_entries(
        [Entry(id="s1", score=9), Entry(id="s2", score=2), Entry(id="s3", score=0)],
        keep_score={"s1"},
        suppressed={"s2"},
        provisional=[provisional],
    )
    assert state.get_entry("s1").score == 5
    assert state.get_entry("s2") is None
    assert state.get_entry("s3") is not None
    assert state.get_entry("pending:abc") is not None


def test_merge_entries_authority_wins_without_pending():
    state = _state()
    state.merge_entries([Entry(id="s1", score=9)], keep_score=set(), suppressed=set(), provisional=[])
    assert state.get_entry("s1").score == 9
    assert state.get_entry("s2") is None


def test_adjust_quota_is_all_or_nothing():
    state = _state()
    state.quota = UserQuota(upvotes_used=1, upvotes_remaining=0)
    assert state.adjust_quota({"upvotes_used": 1, "upvotes_remaining": -1}) is False
    assert state.quota.upvotes_used == 1
    assert state.adjust_quota({"upvotes_used": -1, "upvotes_remaining": 1}) is True
    assert state.quota.upvotes_remaining == 1


def test_merge_quota_keep_local_follows_god_mode():
    state = _state()
    state.quota = UserQuota(songs_remaining=1)
    state.merge_quota(UserQuota(songs_remaining=3, is_god_mode=True), keep_local=True)
    assert state.quota.songs_remaining == 1
    assert state.quota.is_god_mode is True
    state.merge_quota(UserQuota(songs_remaining=3), keep_local=False)
    assert state.quota.songs_remaining == 3


def test_merge_votes_keeps_pending_flags():
    state = _state()
    state.set_vote_flag("s1", "up", True)
    state.merge_votes(UserVotes(upvoted_song_ids=["s2"], downvoted_song_ids=["s1"]), keep_local={"s1"})
    assert state.upvoted == {"s1", "s2"}
    assert state.downvoted == set()


def test_merge_activity_dedupes_and_bounds():
    state = _state()
    items = [ActivityItem(id=f"a{i}", type="add") for i in range(8)]
    fresh = state.merge_activity(items[:3])
    assert [a.id for a in fresh] == ["a0", "a1", "a2"]

    fresh = state.merge_activity(items[:4])
    assert [a.id for a in fresh] == ["a3"]
    assert len(state.activity) == 4

    state.merge_activity(items)
    assert len(state.activity) == ACTIVITY_VISIBLE
    # Oldest seen ids were evicted past the cap
    assert len(state._seen_activity) == 5
