# cratesync/store/redis_repo.py
from __future__ import annotations

import json
import logging
import uuid
from typing import Optional, Tuple

from pydantic import ValidationError
from redis.asyncio import Redis

from cratesync.store.models import Snapshot
from cratesync.store.redis_keys import RK

logger = logging.getLogger(__name__)


class RedisRepo:
    def __init__(self, r: Redis, snapshot_ttl_sec: int = 3600, *, keys: Optional[RK] = None):
        self.r = r
        self.snapshot_ttl_sec = snapshot_ttl_sec
        self.rk = keys or RK()

    def _dec(self, x):
        """Decode redis bytes -> str; pass through str/int/None safely."""
        if x is None:
            return None
        if isinstance(x, bytes):
            return x.decode("utf-8")
        return x

    # ----------------------------
    # Identity
    # ----------------------------
    async def get_or_create_visitor_id(self, device_key: str) -> str:
        """
        Stable anonymous id per device key. The first writer wins, so two
        processes starting together agree on one id.
        """
        key = self.rk.visitor(device_key)
        candidate = uuid.uuid4().hex
        created = await self.r.set(key, candidate, nx=True)
        if created:
            logger.info("created visitor id for device %s", device_key)
            return candidate
        existing = self._dec(await self.r.get(key))
        if existing:
            return existing
        # Key vanished between SET NX and GET
        await self.r.set(key, candidate)
        return candidate

    # ----------------------------
    # Warm snapshot
    # ----------------------------
    async def save_snapshot(self, visitor_id: str, snapshot: Snapshot, ts: int) -> None:
        pipe = self.r.pipeline()
        pipe.set(self.rk.snapshot(visitor_id), json.dumps(snapshot.wire()), ex=self.snapshot_ttl_sec)
        pipe.set(self.rk.snapshot_at(visitor_id), str(ts), ex=self.snapshot_ttl_sec)
        await pipe.execute()

    async def load_snapshot(self, visitor_id: str) -> Optional[Tuple[Snapshot, int]]:
        raw = self._dec(await self.r.get(self.rk.snapshot(visitor_id)))
        if not raw:
            return None
        saved_at = self._dec(await self.r.get(self.rk.snapshot_at(visitor_id)))
        try:
            snapshot = Snapshot.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning("discarding unreadable warm snapshot for %s", visitor_id)
            await self.clear_snapshot(visitor_id)
            return None
        return snapshot, int(saved_at) if saved_at else 0

    async def clear_snapshot(self, visitor_id: str) -> None:
        await self.r.delete(*self.rk.all_visitor_keys(visitor_id))
