# cratesync/settings.py
from __future__ import annotations

from pydantic import BaseModel
import os


class Settings(BaseModel):
    APP_NAME: str = "cratesync"

    # Authority (snapshot + mutation endpoints)
    AUTHORITY_URL: str = "http://localhost:3000"
    DEVICE_KEY: str = "default"
    ADMIN_KEY: str = ""

    # Redis (visitor identity + warm snapshot)
    REDIS_URL: str = "redis://localhost:6379/0"
    SNAPSHOT_TTL_SEC: int = 3600

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # Dev
    LOG_LEVEL: str = "INFO"

    # Polling
    POLL_INTERVAL_MS: int = 15000
    POLL_JITTER_MS: int = 5000
    REQUEST_TIMEOUT_SEC: float = 8.0
    MUTATION_TIMEOUT_SEC: float = 10.0
    MAX_RETRIES: int = 2
    RETRY_BASE_MS: int = 500
    STALE_AFTER_FAILURES: int = 3

    # Local UX gates
    VOTE_COOLDOWN_MS: int = 3000
    INTERACTION_LOCK_MS: int = 2000
    INTERACTION_TOP_N: int = 10

    # Timed modes
    TICK_MS: int = 1000
    BATTLE_DISMISS_MS: int = 5000
    SEGMENT_WARNING_MS: int = 120000
    SEGMENT_URGENT_MS: int = 30000

    # Buffers
    ACTIVITY_SEEN_MAX: int = 500
    EVENT_BUFFER_MAX: int = 100


def get_settings() -> Settings:
    return Settings(
        APP_NAME=os.getenv("APP_NAME", "cratesync"),
        AUTHORITY_URL=os.getenv("AUTHORITY_URL", "http://localhost:3000"),
        DEVICE_KEY=os.getenv("DEVICE_KEY", "default"),
        ADMIN_KEY=os.getenv("ADMIN_KEY", ""),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        SNAPSHOT_TTL_SEC=int(os.getenv("SNAPSHOT_TTL_SEC", "3600")),
        HOST=os.getenv("HOST", "127.0.0.1"),
        PORT=int(os.getenv("PORT", "8000")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),

        POLL_INTERVAL_MS=int(os.getenv("POLL_INTERVAL_MS", "15000")),
        POLL_JITTER_MS=int(os.getenv("POLL_JITTER_MS", "5000")),
        REQUEST_TIMEOUT_SEC=float(os.getenv("REQUEST_TIMEOUT_SEC", "8")),
        MUTATION_TIMEOUT_SEC=float(os.getenv("MUTATION_TIMEOUT_SEC", "10")),
        MAX_RETRIES=int(os.getenv("MAX_RETRIES", "2")),
        RETRY_BASE_MS=int(os.getenv("RETRY_BASE_MS", "500")),
        STALE_AFTER_FAILURES=int(os.getenv("STALE_AFTER_FAILURES", "3")),

        VOTE_COOLDOWN_MS=int(os.getenv("VOTE_COOLDOWN_MS", "3000")),
        INTERACTION_LOCK_MS=int(os.getenv("INTERACTION_LOCK_MS", "2000")),
        INTERACTION_TOP_N=int(os.getenv("INTERACTION_TOP_N", "10")),

        TICK_MS=int(os.getenv("TICK_MS", "1000")),
        BATTLE_DISMISS_MS=int(os.getenv("BATTLE_DISMISS_MS", "5000")),
        SEGMENT_WARNING_MS=int(os.getenv("SEGMENT_WARNING_MS", "120000")),
        SEGMENT_URGENT_MS=int(os.getenv("SEGMENT_URGENT_MS", "30000")),

        ACTIVITY_SEEN_MAX=int(os.getenv("ACTIVITY_SEEN_MAX", "500")),
        EVENT_BUFFER_MAX=int(os.getenv("EVENT_BUFFER_MAX", "100")),
    )
