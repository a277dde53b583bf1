# cratesync/store/state.py
from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Set

from cratesync.domain.common.types import Direction, QuotaField
from cratesync.store.models import (
    ActivityItem,
    Entry,
    KarmaBonuses,
    NoStream,
    PlaylistStats,
    SessionState,
    StreamSource,
    UserQuota,
    UserVotes,
)

ACTIVITY_VISIBLE = 5


class LiveState:
    """
    Per-session cache of everything the authority owns.
    Only the named actions below mutate it, so the invariants
    (no negative quota counter, one flag per direction) live here.
    """

    def __init__(self, visitor_id: str, *, activity_seen_max: int = 500) -> None:
        self.visitor_id = visitor_id
        self.entries: Dict[str, Entry] = {}
        self.quota = UserQuota()
        self.upvoted: Set[str] = set()
        self.downvoted: Set[str] = set()
        self.session = SessionState()
        self.karma = KarmaBonuses()
        self.playlist_stats = PlaylistStats()
        self.viewer_count = 0
        self.stream: StreamSource = NoStream()
        self.activity: List[ActivityItem] = []
        self.synced = False
        self._seen_activity: "OrderedDict[str, None]" = OrderedDict()
        self._activity_seen_max = activity_seen_max

    # ----------------------------
    # Entries
    # ----------------------------
    def get_entry(self, entry_id: str) -> Optional[Entry]:
        return self.entries.get(entry_id)

    def insert_entry(self, entry: Entry) -> None:
        self.entries[entry.id] = entry

    def remove_entry(self, entry_id: str) -> Optional[Entry]:
        return self.entries.pop(entry_id, None)

    def adjust_score(self, entry_id: str, delta: int) -> bool:
        entry = self.entries.get(entry_id)
        if entry is None:
            return False
        self.entries[entry_id] = entry.model_copy(update={"score": entry.score + delta})
        return True

    # ----------------------------
    # Quota / votes
    # ----------------------------
    def adjust_quota(self, deltas: Dict[QuotaField, int]) -> bool:
        """
        Apply all deltas or none. Refuses any change that would take a
        counter below zero.
        """
        updated = {}
        for field, delta in deltas.items():
            value = getattr(self.quota, field) + delta
            if value < 0:
                return False
            updated[field] = value
        self.quota = self.quota.model_copy(update=updated)
        return True

    def has_vote(self, entry_id: str, direction: Direction) -> bool:
        flags = self.upvoted if direction == "up" else self.downvoted
        return entry_id in flags

    def set_vote_flag(self, entry_id: str, direction: Direction, on: bool) -> None:
        flags = self.upvoted if direction == "up" else self.downvoted
        if on:
            flags.add(entry_id)
        else:
            flags.discard(entry_id)

    # ----------------------------
    # Session
    # ----------------------------
    def mark_banned(self) -> None:
        self.session = self.session.model_copy(update={"banned": True})

    def mark_locked(self) -> None:
        self.session = self.session.model_copy(update={"locked": True})

    def mark_stopped(self) -> None:
        self.session = self.session.model_copy(update={"running": False})

    # ----------------------------
    # Snapshot merges
    # ----------------------------
    def merge_entries(
        self,
        server_entries: Iterable[Entry],
        *,
        keep_score: Set[str],
        suppressed: Set[str],
        provisional: Iterable[Entry],
    ) -> None:
        """
        Replace the cache with the authority's list, except:
          - ids in keep_score keep their locally adjusted score
          - ids in suppressed (optimistically deleted) stay out
          - provisional (optimistically added) entries stay in
        """
        merged: Dict[str, Entry] = {}
        for entry in server_entries:
            if entry.id in suppressed:
                continue
            local = self.entries.get(entry.id)
            if entry.id in keep_score and local is not None:
                entry = entry.model_copy(update={"score": local.score})
            merged[entry.id] = entry
        for entry in provisional:
            merged.setdefault(entry.id, entry)
        self.entries = merged

    def merge_quota(self, quota: UserQuota, *, keep_local: bool) -> None:
        if keep_local:
            # Capacity flags still follow the authority
            self.quota = self.quota.model_copy(update={"is_god_mode": quota.is_god_mode})
            return
        self.quota = quota

    def merge_votes(self, votes: UserVotes, *, keep_local: Set[str]) -> None:
        up = set(votes.upvoted_song_ids) - keep_local
        down = set(votes.downvoted_song_ids) - keep_local
        up |= self.upvoted & keep_local
        down |= self.downvoted & keep_local
        self.upvoted = up
        self.downvoted = down

    def merge_activity(self, items: Iterable[ActivityItem]) -> List[ActivityItem]:
        """Surface only activity ids not seen before, newest first."""
        fresh = [a for a in items if a.id not in self._seen_activity]
        for a in fresh:
            self._seen_activity[a.id] = None
        while len(self._seen_activity) > self._activity_seen_max:
            self._seen_activity.popitem(last=False)
        if fresh:
            self.activity = (fresh + self.activity)[:ACTIVITY_VISIBLE]
        return fresh
