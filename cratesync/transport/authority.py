# cratesync/transport/authority.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
from pydantic import ValidationError

from cratesync.domain.common.errors import (
    AuthorityError,
    AuthorizationError,
    ConflictError,
    ConnectionTimeout,
    NetworkError,
    QuotaExhaustedError,
    RateLimitError,
    SyncError,
)
from cratesync.domain.common.types import BattleChoice, Direction
from cratesync.store.models import Entry, Snapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

SNAPSHOT_PATH = "/api/songs"
ADD_PATH = "/api/songs"
VOTE_PATH = "/api/songs/{entry_id}/vote"
DELETE_PATH = "/api/songs/{entry_id}"
WINDOW_DELETE_PATH = "/api/songs/window-delete"
BATTLE_VOTE_PATH = "/api/versus-battle/vote"


def _retry_after_ms(data: Dict[str, Any], headers: httpx.Headers) -> int:
    if isinstance(data.get("retryAfterMs"), (int, float)):
        return int(data["retryAfterMs"])
    if isinstance(data.get("retryAfter"), (int, float)):
        return int(data["retryAfter"] * 1000)
    raw = headers.get("retry-after")
    if raw:
        try:
            return int(float(raw) * 1000)
        except ValueError:
            return 0
    return 0


def error_from_response(status: int, data: Dict[str, Any], headers: Optional[httpx.Headers] = None) -> SyncError:
    """
    Map an authority failure to the error taxonomy. The typed code wins;
    without one, the status and then keywords in the message decide.
    """
    headers = headers if headers is not None else httpx.Headers()
    code = str(data.get("code") or "").lower()
    message = str(data.get("error") or data.get("message") or f"HTTP {status}")
    text = message.lower()

    if code == "not_found" or (not code and (status == 404 or "not found" in text)):
        return ConflictError(message, code="NOT_FOUND")
    if code == "locked" or (not code and (status == 409 or "locked" in text)):
        return ConflictError(message, code="LOCKED")
    if code == "banned" or (not code and (status == 403 or "banned" in text or "suspended" in text)):
        return AuthorizationError(message, code="BANNED")
    if code == "rate_limited" or (not code and status == 429):
        return RateLimitError(message, retry_after_ms=_retry_after_ms(data, headers))
    if code == "quota_exhausted":
        return QuotaExhaustedError(message)
    return AuthorityError(message)


async def with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    retries: int = 2,
    base_ms: int = 500,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Retry transient failures with exponential backoff (base, 2*base, ...).
    Only NetworkError is retried; cancellation and typed authority errors
    go straight through.
    """
    attempt = 0
    while True:
        try:
            return await call()
        except NetworkError as e:
            if attempt >= retries:
                raise
            delay_ms = base_ms * (2 ** attempt)
            logger.debug("retrying after %s (attempt %d, %d ms)", e.code, attempt + 1, delay_ms)
            await sleep(delay_ms / 1000)
            attempt += 1


class AuthorityClient:
    """
    HTTP client for the authority. Every call carries the visitor id;
    timeouts surface as ConnectionTimeout, every other httpx failure as
    NetworkError, HTTP failures as the typed errors above.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        visitor_id: str,
        admin_key: str = "",
        timeout_sec: float = 8.0,
        mutation_timeout_sec: float = 10.0,
    ) -> None:
        self.http = http
        self.visitor_id = visitor_id
        self.admin_key = admin_key
        self.timeout_sec = timeout_sec
        self.mutation_timeout_sec = mutation_timeout_sec

    def _headers(self) -> Dict[str, str]:
        headers = {"x-visitor-id": self.visitor_id}
        if self.admin_key:
            headers["x-admin-key"] = self.admin_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        try:
            resp = await self.http.request(
                method,
                path,
                json=json,
                headers=self._headers(),
                timeout=timeout if timeout is not None else self.mutation_timeout_sec,
            )
        except httpx.TimeoutException as e:
            raise ConnectionTimeout("Request timed out - please check your connection") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e.__class__.__name__}") from e
        except httpx.HTTPError as e:
            # Decoding, redirect loops, bad URLs
            raise NetworkError(f"Network error: {e.__class__.__name__}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}

        if resp.is_success:
            return data
        raise error_from_response(resp.status_code, data, resp.headers)

    # ----------------------------
    # Snapshot
    # ----------------------------
    async def fetch_snapshot(self) -> Snapshot:
        data = await self._request("GET", SNAPSHOT_PATH, timeout=self.timeout_sec)
        try:
            return Snapshot.model_validate(data)
        except ValidationError as e:
            raise AuthorityError(f"Malformed snapshot: {e.error_count()} errors") from e

    # ----------------------------
    # Mutations
    # ----------------------------
    async def add_entry(self, track: Dict[str, Any]) -> Optional[Entry]:
        data = await self._request("POST", ADD_PATH, json=track)
        song = data.get("song") or data.get("entry")
        if isinstance(song, dict):
            try:
                return Entry.model_validate(song)
            except ValidationError:
                logger.warning("add confirmed with an unreadable entry; waiting for resync")
        return None

    async def vote(self, entry_id: str, direction: Direction) -> None:
        await self._request(
            "POST",
            VOTE_PATH.format(entry_id=entry_id),
            json={"vote": 1 if direction == "up" else -1},
        )

    async def delete_entry(self, entry_id: str) -> None:
        await self._request("DELETE", DELETE_PATH.format(entry_id=entry_id))

    async def window_delete(self, entry_id: str) -> None:
        await self._request("POST", WINDOW_DELETE_PATH, json={"songId": entry_id})

    async def battle_vote(self, choice: BattleChoice) -> None:
        await self._request("POST", BATTLE_VOTE_PATH, json={"choice": choice})
