# cratesync/domain/common/validation.py
from __future__ import annotations

from typing import Optional, Tuple

from cratesync.domain.common.types import Direction, QuotaField
from cratesync.store.models import Entry, SessionState, UserQuota

Gate = Tuple[bool, str, str]
OPEN: Gate = (True, "", "")


def is_elevated(quota: UserQuota, elevated: bool = False) -> bool:
    """Admin context or god mode from the authority. Bypasses every local gate."""
    return elevated or quota.is_god_mode


def check_session(session: SessionState) -> Gate:
    """Returns (ok, err_code, err_message)."""
    if session.banned:
        return False, "BANNED", "You are banned from voting"
    if session.locked:
        return False, "LOCKED", "The playlist is locked"
    if not session.running:
        return False, "NOT_RUNNING", "The session has not started or has ended"
    return OPEN


def check_not_banned(session: SessionState) -> Gate:
    if session.banned:
        return False, "BANNED", "Your account has been suspended"
    return OPEN


def vote_fields(direction: Direction) -> Tuple[QuotaField, QuotaField]:
    """(used_field, remaining_field) on UserQuota for a direction."""
    if direction == "up":
        return "upvotes_used", "upvotes_remaining"
    return "downvotes_used", "downvotes_remaining"


def check_vote_quota(quota: UserQuota, direction: Direction) -> Gate:
    _, remaining = vote_fields(direction)
    if getattr(quota, remaining) <= 0:
        label = "upvotes" if direction == "up" else "downvotes"
        return False, "QUOTA_EXHAUSTED", f"No {label} remaining!"
    return OPEN


def check_add_quota(quota: UserQuota) -> Gate:
    if quota.songs_remaining <= 0:
        return False, "QUOTA_EXHAUSTED", "You have no song adds remaining"
    return OPEN


def check_delete_quota(quota: UserQuota) -> Gate:
    if quota.deletes_remaining <= 0:
        return False, "QUOTA_EXHAUSTED", "You have no deletes remaining"
    return OPEN


def is_owner(entry: Optional[Entry], visitor_id: str) -> bool:
    return entry is not None and entry.added_by == visitor_id
