from cratesync.store.models import (
    Entry,
    NoStream,
    SessionState,
    Snapshot,
    TwitchStream,
    YoutubeStream,
    extract_youtube_id,
)


def test_snapshot_current_shape():
    snap = Snapshot.model_validate(
        {
            "entries": [{"id": "s1", "name": "One", "addedBy": "v", "addedAt": 3, "score": -1, "spotifyUri": "x"}],
            "userVotes": {"upvotedSongIds": ["s1"], "downvotedSongIds": []},
            "userQuota": {"upvotesRemaining": 4, "isGodMode": True},
            "sessionState": {"timerEndTime": 99, "running": True, "locked": False, "banned": False},
            "deleteWindow": {"active": True, "endTime": 50, "canDelete": True},
            "versusBattle": {"active": True, "phase": "voting", "songA": {"id": "a"}, "songB": {"id": "b"}},
            "showClock": {
                "segments": [{"id": "i", "name": "Intro", "durationMs": 1000}],
                "activeSegmentIndex": 0,
                "segmentStartedAt": 10,
                "isRunning": True,
            },
            "playlistStats": {"current": 10, "max": 10, "canAdd": False},
            "viewerCount": 7,
            "recentActivity": [{"id": "a1", "type": "add", "userName": "Kim", "songName": "One"}],
        }
    )
    assert snap.entries[0].score == -1
    assert snap.entries[0].model_extra["spotifyUri"] == "x"
    assert snap.user_votes.upvoted_song_ids == ["s1"]
    assert snap.user_quota.is_god_mode is True
    assert snap.session_state.timer_end_time == 99
    assert snap.delete_window.can_delete is True
    assert snap.versus_battle.occurrence() == ("a", "b", False)
    assert snap.show_clock.active_segment().name == "Intro"
    assert snap.playlist_stats.can_add is False
    assert snap.recent_activity[0].user_name == "Kim"
    assert isinstance(snap.stream, NoStream)


def test_snapshot_legacy_shape():
    snap = Snapshot.model_validate(
        {
            "songs": [{"id": "s1"}],
            "userStatus": {"songsRemaining": 2},
            "timer": {"endTime": 1234, "running": True, "isBanned": True},
            "isLocked": True,
            "versusBattle": None,
            "youtubeEmbed": "https://youtu.be/abc123",
        }
    )
    assert [e.id for e in snap.entries] == ["s1"]
    assert snap.user_quota.songs_remaining == 2
    assert snap.session_state == SessionState(timer_end_time=1234, running=True, locked=True, banned=True)
    assert snap.versus_battle.active is False
    assert snap.stream == YoutubeStream(video_id="abc123")


def test_stream_config_variants():
    snap = Snapshot.model_validate({"streamConfig": {"platform": "twitch", "twitchChannel": "chan"}})
    assert snap.stream == TwitchStream(channel="chan")

    snap = Snapshot.model_validate({"streamConfig": {"platform": "none"}, "youtubeEmbed": "https://youtu.be/zzz"})
    assert isinstance(snap.stream, NoStream)

    snap = Snapshot.model_validate({"stream": {"kind": "youtube", "videoId": "v1"}})
    assert snap.stream.video_id == "v1"


def test_extract_youtube_id():
    assert extract_youtube_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=1") == "dQw4w9WgXcQ"
    assert extract_youtube_id("https://www.youtube.com/live/LIVE1") == "LIVE1"
    assert extract_youtube_id("https://www.youtube.com/playlist?list=PL123") == "playlist:PL123"
    assert extract_youtube_id('<iframe src="https://www.youtube.com/embed/EMB1?autoplay=1"></iframe>') == "EMB1"
    assert extract_youtube_id("not a link") is None
    assert extract_youtube_id("") is None


def test_snapshot_wire_round_trip_keeps_session():
    snap = Snapshot(session_state=SessionState(running=True, timer_end_time=5), entries=[Entry(id="s1")])
    again = Snapshot.model_validate(snap.wire())
    assert again.session_state.running is True
    assert again.entries[0].id == "s1"
