# cratesync/domain/common/types.py
from __future__ import annotations

from typing import Literal

Direction = Literal["up", "down"]
BattleChoice = Literal["A", "B"]
BattlePhase = Literal["voting", "lightning", "resolved"]
ActivityType = Literal["add", "upvote", "downvote"]
Movement = Literal["up", "down", "new"]

MutationKind = Literal["vote", "add", "delete", "window_delete", "battle_vote"]

# Quota counter names on UserQuota
QuotaField = Literal[
    "songs_added",
    "songs_remaining",
    "upvotes_used",
    "upvotes_remaining",
    "downvotes_used",
    "downvotes_remaining",
    "deletes_used",
    "deletes_remaining",
]

PENDING_PREFIX = "pending:"
