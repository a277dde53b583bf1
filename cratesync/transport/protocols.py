# cratesync/transport/protocols.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from cratesync.domain.common.types import BattleChoice, BattlePhase, Direction


# =========================
# Incoming (Presentation -> Core)
# =========================

class InBase(BaseModel):
    type: str


class InVote(InBase):
    type: Literal["vote"] = "vote"
    entry_id: str = Field(min_length=1)
    direction: Direction


class InAddEntry(InBase):
    """track carries the search result as the authority expects it (id, name, artist, ...)."""
    type: Literal["add_entry"] = "add_entry"
    track: Dict[str, Any]


class InDeleteEntry(InBase):
    type: Literal["delete_entry"] = "delete_entry"
    entry_id: str = Field(min_length=1)


class InWindowDelete(InBase):
    type: Literal["window_delete"] = "window_delete"
    entry_id: str = Field(min_length=1)


class InBattleVote(InBase):
    type: Literal["battle_vote"] = "battle_vote"
    choice: BattleChoice


class InInteraction(InBase):
    type: Literal["interaction"] = "interaction"


class InRefresh(InBase):
    type: Literal["refresh"] = "refresh"


IncomingMessage = Union[
    InVote,
    InAddEntry,
    InDeleteEntry,
    InWindowDelete,
    InBattleVote,
    InInteraction,
    InRefresh,
]


# =========================
# Outgoing (Core -> Presentation)
# =========================

class OutBase(BaseModel):
    type: str


class OutError(OutBase):
    type: Literal["error"] = "error"
    code: str
    message: str


class OutActionResult(OutBase):
    type: Literal["action_result"] = "action_result"
    action: str
    ok: bool
    code: str = ""
    message: str = ""
    resync: bool = False
    retry_in_ms: int = 0
    retry_after_ms: int = 0
    entry: Optional[Dict[str, Any]] = None


class OutConnectionChanged(OutBase):
    type: Literal["connection_changed"] = "connection_changed"
    stale: bool


# ---- Purge window ----

class OutPurgeOpened(OutBase):
    type: Literal["purge_opened"] = "purge_opened"
    end_time: Optional[int] = None


class OutPurgeEnding(OutBase):
    type: Literal["purge_ending"] = "purge_ending"


class OutPurgeClosed(OutBase):
    type: Literal["purge_closed"] = "purge_closed"


# ---- Versus battle ----

class OutBattleStarted(OutBase):
    type: Literal["battle_started"] = "battle_started"
    song_a: Optional[str] = None
    song_b: Optional[str] = None
    end_time: Optional[int] = None


class OutBattlePhaseChanged(OutBase):
    type: Literal["battle_phase_changed"] = "battle_phase_changed"
    phase: Optional[BattlePhase] = None


class OutBattleResolved(OutBase):
    type: Literal["battle_resolved"] = "battle_resolved"
    winner: Optional[BattleChoice] = None


class OutBattleDismissed(OutBase):
    type: Literal["battle_dismissed"] = "battle_dismissed"


# ---- Show clock ----

class OutSegmentTransition(OutBase):
    type: Literal["segment_transition"] = "segment_transition"
    index: int
    segment_id: str
    name: str
    icon: str = ""


class OutSegmentWarning(OutBase):
    type: Literal["segment_warning"] = "segment_warning"
    segment_id: str
    remaining_ms: int


class OutSegmentUrgent(OutBase):
    type: Literal["segment_urgent"] = "segment_urgent"
    segment_id: str
    remaining_ms: int


# ---- Session / ranking ----

class OutSessionEnded(OutBase):
    type: Literal["session_ended"] = "session_ended"


class OutTopThreeReached(OutBase):
    type: Literal["top_three_reached"] = "top_three_reached"
    entry_id: str
    name: str = ""
    rank: int


# =========================
# Parser helpers
# =========================

_INCOMING_BY_TYPE = {
    "vote": InVote,
    "add_entry": InAddEntry,
    "delete_entry": InDeleteEntry,
    "window_delete": InWindowDelete,
    "battle_vote": InBattleVote,
    "interaction": InInteraction,
    "refresh": InRefresh,
}


def parse_incoming(payload: Dict[str, Any]) -> IncomingMessage:
    """
    Convert raw dict -> validated action model.
    Raises ValueError for a missing/unknown type, ValidationError if invalid.
    """
    t = payload.get("type")
    if not isinstance(t, str):
        raise ValueError("Missing/invalid type")

    cls = _INCOMING_BY_TYPE.get(t)
    if cls is None:
        raise ValueError(f"Unknown message type: {t}")

    return cls.model_validate(payload)


def dump_events(events: List[OutBase]) -> List[Dict[str, Any]]:
    return [e.model_dump() for e in events]
