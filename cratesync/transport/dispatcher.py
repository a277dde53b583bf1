# cratesync/transport/dispatcher.py
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import ValidationError

from cratesync.live import LiveSession
from cratesync.transport.protocols import (
    InAddEntry,
    InBattleVote,
    InDeleteEntry,
    InInteraction,
    InRefresh,
    InVote,
    InWindowDelete,
    OutActionResult,
    OutError,
    parse_incoming,
)

DispatchResult = List[Dict[str, Any]]


async def dispatch_action(*, session: LiveSession, raw: Dict[str, Any]) -> DispatchResult:
    """
    Presentation calls this with one raw action.
    - Parses + validates raw JSON
    - Routes to the matching LiveSession action
    - Returns the events for the caller as JSON dicts

    No gating or state here; the session decides.
    """
    try:
        msg = parse_incoming(raw)
    except (ValidationError, ValueError) as e:
        return [OutError(code="BAD_MESSAGE", message=str(e)).model_dump()]

    if isinstance(msg, InVote):
        result = await session.toggle_vote(msg.entry_id, msg.direction)
        return [result.model_dump()]

    if isinstance(msg, InAddEntry):
        result = await session.add_entry(msg.track)
        return [result.model_dump()]

    if isinstance(msg, InDeleteEntry):
        result = await session.delete_entry(msg.entry_id)
        return [result.model_dump()]

    if isinstance(msg, InWindowDelete):
        result = await session.window_delete(msg.entry_id)
        return [result.model_dump()]

    if isinstance(msg, InBattleVote):
        result = await session.cast_battle_vote(msg.choice)
        return [result.model_dump()]

    if isinstance(msg, InInteraction):
        session.mark_interaction()
        return [OutActionResult(action="interaction", ok=True).model_dump()]

    if isinstance(msg, InRefresh):
        session.request_resync()
        return [OutActionResult(action="refresh", ok=True, resync=True).model_dump()]

    return [OutError(code="UNHANDLED", message=f"Unhandled message type: {msg.type}").model_dump()]
