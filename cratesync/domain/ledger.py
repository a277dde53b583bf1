# cratesync/domain/ledger.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from cratesync.domain.common.errors import (
    AuthorizationError,
    ConflictError,
    Resolution,
    SyncError,
    resolve,
)
from cratesync.domain.common.ops import Applied, Outcome, Rejected, RollbackToken, new_token_id
from cratesync.domain.common.types import PENDING_PREFIX, Direction, MutationKind, QuotaField
from cratesync.domain.common.validation import (
    check_add_quota,
    check_delete_quota,
    check_session,
    check_vote_quota,
    is_elevated,
    is_owner,
    vote_fields,
)
from cratesync.domain.ratelimit import RateLimiter
from cratesync.store.models import Entry
from cratesync.store.state import LiveState
from cratesync.util.timeutil import now_ms

logger = logging.getLogger(__name__)

_REMOVALS = ("delete", "window_delete")


class VoteLedger:
    """
    Optimistic mutation engine over the visitor's quota, vote flags and
    the cached entry list. Every applied change is recorded as a
    RollbackToken until the authority confirms or rejects it.

    Gates run cheapest first and never touch the network:
    session -> entry exists -> cooldown -> quota.
    """

    def __init__(
        self,
        state: LiveState,
        limiter: RateLimiter,
        *,
        elevated: bool = False,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.state = state
        self.limiter = limiter
        self.elevated = elevated
        self._clock = clock
        self._pending: Dict[str, RollbackToken] = {}

    @property
    def _bypass(self) -> bool:
        return is_elevated(self.state.quota, self.elevated)

    def _session_gate(self) -> Optional[Rejected]:
        if self._bypass:
            return None
        ok, code, message = check_session(self.state.session)
        if not ok:
            return Rejected(code=code, message=message)
        return None

    def _cooldown_gate(self, key: str, now: int) -> Optional[Rejected]:
        if self._bypass or self.limiter.allow(key, now):
            return None
        return Rejected(
            code="COOLDOWN",
            message="Slow down! Wait a moment before voting again.",
            retry_in_ms=self.limiter.retry_in_ms(key, now),
        )

    # ----------------------------
    # Votes
    # ----------------------------
    def toggle_vote(self, entry_id: str, direction: Direction, now: Optional[int] = None) -> Outcome:
        ts = self._clock() if now is None else now

        rejected = self._session_gate()
        if rejected:
            return rejected

        entry = self.state.get_entry(entry_id)
        if entry is None:
            return Rejected(code="CONFLICT", message="Song was modified - refreshing...", resync=True)
        if entry_id.startswith(PENDING_PREFIX):
            return Rejected(code="PENDING", message="That song is still being added")

        rejected = self._cooldown_gate(entry_id, ts)
        if rejected:
            return rejected

        setting = not self.state.has_vote(entry_id, direction)
        if setting and not self._bypass:
            ok, code, message = check_vote_quota(self.state.quota, direction)
            if not ok:
                return Rejected(code=code, message=message)

        used, remaining = vote_fields(direction)
        step = 1 if setting else -1
        quota_delta = {used: step, remaining: -step}
        if not self.state.adjust_quota(quota_delta):
            # Elevated votes and stale un-toggles still go through, without counters
            quota_delta = {}

        sign = 1 if direction == "up" else -1
        score_delta = sign * step
        self.state.adjust_score(entry_id, score_delta)
        self.state.set_vote_flag(entry_id, direction, setting)
        self.limiter.record(entry_id, ts)

        token = RollbackToken(
            id=new_token_id(),
            kind="vote",
            entry_id=entry_id,
            score_delta=score_delta,
            quota_delta=quota_delta,
            flag=(direction, setting),
            created_at=ts,
        )
        self._pending[token.id] = token
        return Applied(token=token, entry=self.state.get_entry(entry_id))

    # ----------------------------
    # Add / delete
    # ----------------------------
    def add_entry(self, track: Dict[str, Any], now: Optional[int] = None) -> Outcome:
        ts = self._clock() if now is None else now

        rejected = self._session_gate()
        if rejected:
            return rejected

        key = f"add:{track.get('id', '')}"
        rejected = self._cooldown_gate(key, ts)
        if rejected:
            return rejected

        if not self._bypass:
            ok, code, message = check_add_quota(self.state.quota)
            if not ok:
                return Rejected(code=code, message=message)
            if not self.state.playlist_stats.can_add:
                return Rejected(code="PLAYLIST_FULL", message="The playlist is full")

        payload = {k: v for k, v in track.items() if k not in ("id", "score", "addedBy", "addedAt", "added_by", "added_at")}
        provisional = Entry.model_validate(
            {
                **payload,
                "id": f"{PENDING_PREFIX}{uuid.uuid4().hex[:10]}",
                "addedBy": self.state.visitor_id,
                "addedAt": ts,
                "score": 0,
                "trackId": track.get("id", ""),
            }
        )

        quota_delta = {"songs_added": 1, "songs_remaining": -1}
        if not self.state.adjust_quota(quota_delta):
            quota_delta = {}
        self.state.insert_entry(provisional)
        self.limiter.record(key, ts)

        token = RollbackToken(
            id=new_token_id(),
            kind="add",
            entry_id=provisional.id,
            quota_delta=quota_delta,
            inserted=provisional,
            created_at=ts,
        )
        self._pending[token.id] = token
        return Applied(token=token, entry=provisional)

    def delete_entry(self, entry_id: str, now: Optional[int] = None) -> Outcome:
        ts = self._clock() if now is None else now

        rejected = self._session_gate()
        if rejected:
            return rejected

        entry = self.state.get_entry(entry_id)
        if entry is None:
            return Rejected(code="CONFLICT", message="Song was modified - refreshing...", resync=True)
        if entry_id.startswith(PENDING_PREFIX):
            return Rejected(code="PENDING", message="That song is still being added")

        if not self._bypass:
            if not is_owner(entry, self.state.visitor_id):
                return Rejected(code="NOT_OWNER", message="You can only delete your own songs")
            rejected = self._cooldown_gate(entry_id, ts)
            if rejected:
                return rejected
            ok, code, message = check_delete_quota(self.state.quota)
            if not ok:
                return Rejected(code=code, message=message)

        return self.apply_removal(
            entry_id,
            kind="delete",
            quota_delta={"deletes_used": 1, "deletes_remaining": -1},
            now=ts,
        )

    def apply_removal(
        self,
        entry_id: str,
        *,
        kind: MutationKind,
        quota_delta: Optional[Dict[QuotaField, int]] = None,
        revert: Optional[Callable[[], None]] = None,
        now: Optional[int] = None,
    ) -> Outcome:
        """Optimistically drop an entry the caller has already gated."""
        ts = self._clock() if now is None else now
        entry = self.state.get_entry(entry_id)
        if entry is None:
            return Rejected(code="CONFLICT", message="Song was modified - refreshing...", resync=True)

        delta = dict(quota_delta or {})
        if delta and not self.state.adjust_quota(delta):
            delta = {}
        self.state.remove_entry(entry_id)
        self.limiter.record(entry_id, ts)

        token = RollbackToken(
            id=new_token_id(),
            kind=kind,
            entry_id=entry_id,
            quota_delta=delta,
            removed=entry,
            revert=revert,
            created_at=ts,
        )
        self._pending[token.id] = token
        return Applied(token=token)

    def track(self, kind: MutationKind, *, revert: Callable[[], None], entry_id: str = "", now: Optional[int] = None) -> RollbackToken:
        """Register a mode-local optimistic change (no entry or quota delta)."""
        ts = self._clock() if now is None else now
        token = RollbackToken(id=new_token_id(), kind=kind, entry_id=entry_id, revert=revert, created_at=ts)
        self._pending[token.id] = token
        return token

    # ----------------------------
    # Confirmation
    # ----------------------------
    def confirm(self, token: RollbackToken, entry: Optional[Entry] = None) -> bool:
        """
        The authority accepted the mutation. Returns True when the local
        cache still needs a resync to pick up the real record.
        """
        self._pending.pop(token.id, None)
        if token.kind != "add":
            return False
        self.state.remove_entry(token.entry_id)
        if entry is None:
            return True
        self.state.insert_entry(entry)
        return False

    def fail(self, token: RollbackToken, error: SyncError) -> Resolution:
        resolution = resolve(error)
        self._pending.pop(token.id, None)

        if isinstance(error, AuthorizationError):
            self.state.mark_banned()
        if isinstance(error, ConflictError) and error.code == "LOCKED":
            self.state.mark_locked()

        if resolution.rolls_back:
            self.rollback(token)
        logger.info("mutation %s (%s) failed with %s -> %s", token.id, token.kind, error.code, resolution.value)
        return resolution

    def rollback(self, token: RollbackToken) -> None:
        if token.score_delta:
            self.state.adjust_score(token.entry_id, -token.score_delta)
        if token.flag is not None:
            direction, value = token.flag
            self.state.set_vote_flag(token.entry_id, direction, not value)
        if token.inserted is not None:
            self.state.remove_entry(token.inserted.id)
        if token.removed is not None and self.state.get_entry(token.removed.id) is None:
            self.state.insert_entry(token.removed)
        if token.quota_delta:
            inverse = {k: -v for k, v in token.quota_delta.items()}
            if not self.state.adjust_quota(inverse):
                logger.warning("rollback of %s would take quota negative; leaving counters for resync", token.id)
        if token.revert is not None:
            token.revert()

    # ----------------------------
    # Queries used by snapshot merges
    # ----------------------------
    def has_pending(self, entry_id: str) -> bool:
        return any(t.entry_id == entry_id for t in self._pending.values())

    def has_pending_kind(self, kind: MutationKind) -> bool:
        return any(t.kind == kind for t in self._pending.values())

    def pending_ids(self) -> Set[str]:
        return {t.entry_id for t in self._pending.values() if t.entry_id}

    def pending_tokens(self) -> List[RollbackToken]:
        return list(self._pending.values())

    def vote_pending_ids(self) -> Set[str]:
        return {t.entry_id for t in self._pending.values() if t.kind == "vote"}

    def suppressed_ids(self) -> Set[str]:
        return {t.entry_id for t in self._pending.values() if t.kind in _REMOVALS}

    def provisional_entries(self) -> List[Entry]:
        out: List[Entry] = []
        for t in self._pending.values():
            if t.kind == "add" and t.inserted is not None:
                out.append(self.state.get_entry(t.inserted.id) or t.inserted)
        return out

    def quota_pending(self) -> bool:
        return any(t.quota_delta for t in self._pending.values())

    def clear(self) -> None:
        self._pending.clear()
