# cratesync/domain/common/fsm.py
from __future__ import annotations

from typing import Literal, Optional

# "" is Inactive
BattleState = Literal["", "voting", "lightning", "resolved"]
PurgeState = Literal["inactive", "active"]


def battle_state(active: bool, phase: Optional[str]) -> BattleState:
    if not active:
        return ""
    if phase in ("voting", "lightning", "resolved"):
        return phase  # type: ignore[return-value]
    return "voting"


def can_transition_battle(current: BattleState, target: BattleState) -> bool:
    """
    Validate battle transitions. Polls can skip a state, so a jump that
    lands further along the same run is still legal.
    """
    transitions: dict[BattleState, list[BattleState]] = {
        "": ["", "voting", "lightning", "resolved"],
        "voting": ["voting", "lightning", "resolved", ""],
        "lightning": ["lightning", "resolved", ""],
        "resolved": ["resolved", "", "voting"],
    }
    return target in transitions.get(current, [])


def can_transition_purge(current: PurgeState, target: PurgeState) -> bool:
    transitions: dict[PurgeState, list[PurgeState]] = {
        "inactive": ["inactive", "active"],
        "active": ["active", "inactive"],
    }
    return target in transitions.get(current, [])
