# cratesync/store/models.py
from __future__ import annotations

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from cratesync.domain.common.types import ActivityType, BattleChoice, BattlePhase


class WireModel(BaseModel):
    """
    Base for everything that crosses the authority boundary.
    Python attributes are snake_case, the wire is camelCase.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class Entry(WireModel):
    # Audio features and other display fields ride along untouched
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    name: str = ""
    artist: str = ""
    album: str = ""
    album_art: str = ""
    added_by: str = ""
    added_by_name: str = ""
    added_at: int = 0
    score: int = 0


class UserQuota(WireModel):
    songs_added: int = 0
    songs_remaining: int = 0
    upvotes_used: int = 0
    upvotes_remaining: int = 0
    downvotes_used: int = 0
    downvotes_remaining: int = 0
    deletes_used: int = 0
    deletes_remaining: int = 0
    is_god_mode: bool = False


class UserVotes(WireModel):
    upvoted_song_ids: List[str] = Field(default_factory=list)
    downvoted_song_ids: List[str] = Field(default_factory=list)


class SessionState(WireModel):
    timer_end_time: Optional[int] = None
    running: bool = False
    locked: bool = False
    banned: bool = False


class PurgeWindow(WireModel):
    active: bool = False
    end_time: Optional[int] = None
    can_delete: bool = False
    reason: Optional[str] = None


class BattleSong(WireModel):
    id: str
    name: str = ""
    artist: str = ""
    album_art: str = ""


class VersusBattle(WireModel):
    active: bool = False
    phase: Optional[BattlePhase] = None
    song_a: Optional[BattleSong] = None
    song_b: Optional[BattleSong] = None
    end_time: Optional[int] = None
    is_lightning_round: bool = False
    winner: Optional[BattleChoice] = None
    user_vote: Optional[BattleChoice] = None
    votes_a: Optional[int] = None
    votes_b: Optional[int] = None

    @property
    def in_lightning(self) -> bool:
        return self.phase == "lightning" or self.is_lightning_round

    def occurrence(self) -> Optional[tuple]:
        """Identity of one battle run: the song pair plus which round it is in."""
        if self.song_a is None or self.song_b is None:
            return None
        return (self.song_a.id, self.song_b.id, self.in_lightning)


class ShowSegment(WireModel):
    id: str
    name: str
    duration_ms: int
    icon: str = ""
    order: int = 0


class ShowClock(WireModel):
    segments: List[ShowSegment] = Field(default_factory=list)
    active_segment_index: int = -1
    segment_started_at: Optional[int] = None
    is_running: bool = False

    def active_segment(self) -> Optional[ShowSegment]:
        if 0 <= self.active_segment_index < len(self.segments):
            return self.segments[self.active_segment_index]
        return None


class KarmaBonuses(WireModel):
    karma: int = 0
    bonus_votes: int = 0
    bonus_song_adds: int = 0


class PlaylistStats(WireModel):
    current: int = 0
    max: int = 100
    can_add: bool = True


class ActivityItem(WireModel):
    id: str
    type: ActivityType
    user_name: str = ""
    song_name: str = ""
    timestamp: int = 0


# ---- Stream source (tagged union) ----

class YoutubeStream(WireModel):
    kind: Literal["youtube"] = "youtube"
    video_id: str


class TwitchStream(WireModel):
    kind: Literal["twitch"] = "twitch"
    channel: str


class NoStream(WireModel):
    kind: Literal["none"] = "none"


StreamSource = Annotated[Union[YoutubeStream, TwitchStream, NoStream], Field(discriminator="kind")]

_YT_IFRAME_SRC = re.compile(r"""src=["']([^"']+)["']""")
_YT_EMBED_PLAYLIST = re.compile(r"""youtube\.com/embed/videoseries\?list=([^&"']+)""")
_YT_EMBED = re.compile(r"""youtube\.com/embed/([^?&"']+)""")
_YT_PLAYLIST = re.compile(r"youtube\.com/playlist\?list=([^&?/\s]+)")
_YT_VIDEO = [
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/)([^&?/\s]+)"),
    re.compile(r"youtube\.com/embed/([^?&/\s]+)"),
    re.compile(r"youtube\.com/v/([^?&/\s]+)"),
    re.compile(r"youtube\.com/live/([^?&/\s]+)"),
]


def extract_youtube_id(raw: str) -> Optional[str]:
    """
    Reduce a YouTube URL, embed code or playlist link to a video id,
    or "playlist:<id>" for playlists. None if nothing matches.
    """
    if not raw:
        return None

    m = _YT_IFRAME_SRC.search(raw)
    if m:
        src = m.group(1)
        playlist = _YT_EMBED_PLAYLIST.search(src)
        if playlist:
            return f"playlist:{playlist.group(1)}"
        embed = _YT_EMBED.search(src)
        if embed:
            return embed.group(1)

    m = _YT_PLAYLIST.search(raw)
    if m:
        return f"playlist:{m.group(1)}"

    for pattern in _YT_VIDEO:
        m = pattern.search(raw)
        if m:
            return m.group(1)
    return None


def _stream_from_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    cfg = payload.get("streamConfig")
    if isinstance(cfg, dict):
        platform = cfg.get("platform")
        if platform == "youtube" and cfg.get("youtubeUrl"):
            video_id = extract_youtube_id(str(cfg["youtubeUrl"]))
            if video_id:
                return {"kind": "youtube", "videoId": video_id}
        if platform == "twitch" and cfg.get("twitchChannel"):
            return {"kind": "twitch", "channel": str(cfg["twitchChannel"])}
        return {"kind": "none"}

    # Legacy shape: bare youtubeEmbed string
    legacy = payload.get("youtubeEmbed")
    if isinstance(legacy, str) and legacy:
        video_id = extract_youtube_id(legacy)
        if video_id:
            return {"kind": "youtube", "videoId": video_id}
    return {"kind": "none"}


class Snapshot(WireModel):
    """
    One merged poll response. Accepts both the current field names and the
    older ones (songs, userStatus, isLocked, timer, youtubeEmbed).
    """
    entries: List[Entry] = Field(default_factory=list)
    user_votes: UserVotes = Field(default_factory=UserVotes)
    user_quota: UserQuota = Field(default_factory=UserQuota)
    session_state: SessionState = Field(default_factory=SessionState)
    delete_window: PurgeWindow = Field(default_factory=PurgeWindow)
    versus_battle: VersusBattle = Field(default_factory=VersusBattle)
    show_clock: ShowClock = Field(default_factory=ShowClock)
    karma_bonuses: KarmaBonuses = Field(default_factory=KarmaBonuses)
    playlist_stats: PlaylistStats = Field(default_factory=PlaylistStats)
    viewer_count: int = 0
    recent_activity: List[ActivityItem] = Field(default_factory=list)
    stream: StreamSource = Field(default_factory=NoStream)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out = dict(data)

        if "entries" not in out and "songs" in out:
            out["entries"] = out.pop("songs")
        if "userQuota" not in out and "user_quota" not in out and "userStatus" in out:
            out["userQuota"] = out.pop("userStatus")

        session = out.pop("sessionState", None)
        if session is None:
            session = out.pop("session_state", None)
        if isinstance(session, SessionState):
            session = session.wire()
        if not isinstance(session, dict):
            session = {}
            timer = out.get("timer")
            if isinstance(timer, dict):
                session["timerEndTime"] = timer.get("endTime")
                session["running"] = bool(timer.get("running", False))
                session["banned"] = bool(timer.get("isBanned", False))
        else:
            session = dict(session)
        if "isLocked" in out and "locked" not in session:
            session["locked"] = bool(out["isLocked"])
        out["sessionState"] = session

        if out.get("stream") is None:
            out["stream"] = _stream_from_payload(out)

        for key in ("versusBattle", "deleteWindow", "showClock", "karmaBonuses", "playlistStats"):
            if out.get(key) is None:
                out.pop(key, None)
        if out.get("recentActivity") is None:
            out.pop("recentActivity", None)
        return out
