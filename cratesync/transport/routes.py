# cratesync/transport/routes.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Request

from cratesync.live import LiveSession
from cratesync.transport.dispatcher import dispatch_action

router = APIRouter(tags=["live"])


def _session(request: Request) -> LiveSession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Session not ready")
    return session


@router.get("/view")
async def get_view(request: Request):
    """Ranked entries, quota and vote state, modes with countdowns, health."""
    return _session(request).view()


@router.get("/events")
async def get_events(request: Request):
    return {"events": _session(request).drain_events()}


@router.post("/actions")
async def post_action(request: Request, raw: Dict[str, Any] = Body(...)):
    session = _session(request)
    events = await dispatch_action(session=session, raw=raw)
    return {"events": events}
