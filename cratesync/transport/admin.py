from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

router = APIRouter(prefix="/admin", tags=["admin"])


async def require_admin(request: Request, x_admin_key: Optional[str] = Header(default=None)) -> None:
    expected = request.app.state.settings.ADMIN_KEY
    if not expected:
        raise HTTPException(status_code=404, detail="Admin disabled")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=403, detail="Bad admin key")


@router.get("/state", dependencies=[Depends(require_admin)])
async def get_state(request: Request):
    """
    Internal state of the live session (debug/admin): health, pending
    mutations, mode latches.
    """
    session = request.app.state.session
    ledger = session.ledger
    modes = session.modes
    return {
        "visitor_id": session.state.visitor_id,
        "closed": session.closed,
        "health": session.scheduler.health(),
        "ticker_running": session.ticker.running,
        "entries": len(session.state.entries),
        "pending": [
            {"id": t.id, "kind": t.kind, "entry_id": t.entry_id, "created_at": t.created_at}
            for t in ledger.pending_tokens()
        ],
        "interaction_active": session.lock.is_active(),
        "purge_ending": modes.purge.ending,
        "battle_dismiss_at": modes.battle.dismiss_at,
        "last_synced_at": session.last_synced_at,
    }


@router.post("/resync", dependencies=[Depends(require_admin)])
async def force_resync(request: Request):
    """Force an immediate poll (debug/admin)."""
    session = request.app.state.session
    ok = await session.scheduler.poll_once()
    return {"ok": ok, "health": session.scheduler.health()}
