# cratesync/store/redis_keys.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RK:
    """
    Redis key builder. Identity is scoped per device key, cached state
    per visitor.
    """
    prefix: str = "cratesync"

    # ---- Identity ----
    def visitor(self, device_key: str) -> str:
        return f"{self.prefix}:device:{device_key}:visitor"  # STRING visitor id

    # ---- Warm cache ----
    def snapshot(self, visitor_id: str) -> str:
        return f"{self.prefix}:visitor:{visitor_id}:snapshot"  # STRING snapshot JSON

    def snapshot_at(self, visitor_id: str) -> str:
        return f"{self.prefix}:visitor:{visitor_id}:snapshot_at"  # STRING epoch ms

    def all_visitor_keys(self, visitor_id: str) -> list[str]:
        return [self.snapshot(visitor_id), self.snapshot_at(visitor_id)]
