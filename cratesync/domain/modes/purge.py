# cratesync/domain/modes/purge.py
from __future__ import annotations

import logging
from typing import List, Tuple

from cratesync.domain.common.fsm import can_transition_purge
from cratesync.domain.common.validation import Gate, OPEN
from cratesync.store.models import PurgeWindow
from cratesync.transport.protocols import OutBase, OutPurgeClosed, OutPurgeEnding, OutPurgeOpened
from cratesync.util.timeutil import remaining_ms

logger = logging.getLogger(__name__)


class PurgeMode:
    """
    Deletion window: Inactive -> Active(endTime, canDelete) -> Inactive.
    The local countdown never closes the window on its own; at zero it
    flags the window as ending and asks for a resync.
    """

    def __init__(self) -> None:
        self.window = PurgeWindow()
        self.ending = False

    def apply(self, window: PurgeWindow, *, delete_pending: bool) -> List[OutBase]:
        events: List[OutBase] = []
        prev = self.window
        current = "active" if prev.active else "inactive"
        target = "active" if window.active else "inactive"
        if not can_transition_purge(current, target):
            logger.warning("unexpected purge transition %s -> %s", current, target)

        if delete_pending and window.active:
            # Our delete is still in flight; keep it spent
            window = window.model_copy(update={"can_delete": prev.can_delete and window.can_delete})

        if window.active and not prev.active:
            events.append(OutPurgeOpened(end_time=window.end_time))
        if prev.active and not window.active:
            events.append(OutPurgeClosed())
        if not window.active or window.end_time != prev.end_time:
            self.ending = False

        self.window = window
        return events

    def remaining(self, now: int) -> int:
        if not self.window.active:
            return 0
        return remaining_ms(self.window.end_time, now)

    def tick(self, now: int) -> Tuple[List[OutBase], bool]:
        if not self.window.active or not self.window.end_time or self.ending:
            return [], False
        if self.remaining(now) > 0:
            return [], False
        self.ending = True
        return [OutPurgeEnding()], True

    def check(self) -> Gate:
        if not self.window.active or self.ending:
            return False, "WINDOW_CLOSED", "The purge window is not open"
        if not self.window.can_delete:
            return False, "ALREADY_DELETED", self.window.reason or "You already used your purge delete"
        return OPEN

    def consume(self) -> None:
        self.window = self.window.model_copy(update={"can_delete": False})

    def restore(self) -> None:
        if self.window.active:
            self.window = self.window.model_copy(update={"can_delete": True})
