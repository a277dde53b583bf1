# cratesync/main.py
from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from cratesync.live import LiveSession
from cratesync.settings import Settings, get_settings
from cratesync.store.redis_repo import RedisRepo
from cratesync.transport.admin import router as admin_router
from cratesync.transport.authority import AuthorityClient
from cratesync.transport.routes import router as live_router

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title=settings.APP_NAME)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _startup() -> None:
        r = Redis.from_url(settings.REDIS_URL, decode_responses=False)
        app.state.redis = r
        await r.ping()
        repo = RedisRepo(r, snapshot_ttl_sec=settings.SNAPSHOT_TTL_SEC)
        app.state.repo = repo

        visitor_id = await repo.get_or_create_visitor_id(settings.DEVICE_KEY)
        logger.info("visitor %s syncing with %s", visitor_id, settings.AUTHORITY_URL)
        http = httpx.AsyncClient(base_url=settings.AUTHORITY_URL)
        app.state.http = http
        client = AuthorityClient(
            http,
            visitor_id=visitor_id,
            admin_key=settings.ADMIN_KEY,
            timeout_sec=settings.REQUEST_TIMEOUT_SEC,
            mutation_timeout_sec=settings.MUTATION_TIMEOUT_SEC,
        )
        session = LiveSession(client, settings=settings, repo=repo)
        app.state.session = session
        await session.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        session: LiveSession = app.state.session
        await session.stop()
        http: httpx.AsyncClient = app.state.http
        await http.aclose()
        r: Redis = app.state.redis
        await r.close()

    @app.get("/health")
    async def health():
        session = getattr(app.state, "session", None)
        if session is None:
            return {"ok": False}
        return {"ok": not session.closed, **session.scheduler.health()}

    app.include_router(live_router)
    app.include_router(admin_router)
    return app


app = create_app()
