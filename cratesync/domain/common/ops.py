# cratesync/domain/common/ops.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Union

from cratesync.domain.common.types import Direction, MutationKind, QuotaField
from cratesync.store.models import Entry


def new_token_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class RollbackToken:
    """
    The exact optimistic delta that was applied, so it can be undone
    without looking at anything else.
    """
    id: str
    kind: MutationKind
    entry_id: str = ""
    score_delta: int = 0
    quota_delta: Dict[QuotaField, int] = field(default_factory=dict)
    flag: Optional[Tuple[Direction, bool]] = None   # (direction, value it was set to)
    removed: Optional[Entry] = None
    inserted: Optional[Entry] = None
    revert: Optional[Callable[[], None]] = None      # mode-local undo (purge flag, battle vote)
    created_at: int = 0


@dataclass
class Applied:
    token: RollbackToken
    entry: Optional[Entry] = None

    ok: bool = True


@dataclass
class Rejected:
    code: str
    message: str
    resync: bool = False
    retry_in_ms: int = 0

    ok: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "resync": self.resync,
            "retry_in_ms": self.retry_in_ms,
        }


Outcome = Union[Applied, Rejected]
