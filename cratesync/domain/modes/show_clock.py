# cratesync/domain/modes/show_clock.py
from __future__ import annotations

from typing import List, Optional

from cratesync.store.models import ShowClock
from cratesync.transport.protocols import (
    OutBase,
    OutSegmentTransition,
    OutSegmentUrgent,
    OutSegmentWarning,
)


class ShowClockMode:
    """
    Scripted segment ticker. The warning and urgent effects are latched
    per segment: each fires once, and only an index change re-arms them.
    """

    def __init__(self, *, warning_ms: int = 120000, urgent_ms: int = 30000) -> None:
        self.warning_ms = warning_ms
        self.urgent_ms = urgent_ms
        self.clock = ShowClock()
        self._synced = False
        self._warned = False
        self._urged = False

    def apply(self, clock: ShowClock) -> List[OutBase]:
        events: List[OutBase] = []
        changed = clock.active_segment_index != self.clock.active_segment_index
        if changed or not self._synced:
            self._warned = False
            self._urged = False

        segment = clock.active_segment()
        if changed and self._synced and segment is not None:
            events.append(
                OutSegmentTransition(
                    index=clock.active_segment_index,
                    segment_id=segment.id,
                    name=segment.name,
                    icon=segment.icon,
                )
            )

        self.clock = clock
        self._synced = True
        return events

    def remaining(self, now: int) -> Optional[int]:
        segment = self.clock.active_segment()
        if segment is None or self.clock.segment_started_at is None:
            return None
        return segment.duration_ms - (now - self.clock.segment_started_at)

    def tick(self, now: int) -> List[OutBase]:
        if not self.clock.is_running:
            return []
        segment = self.clock.active_segment()
        left = self.remaining(now)
        if segment is None or left is None:
            return []

        events: List[OutBase] = []
        if left <= self.warning_ms and not self._warned:
            self._warned = True
            events.append(OutSegmentWarning(segment_id=segment.id, remaining_ms=max(0, left)))
        if left <= self.urgent_ms and not self._urged:
            self._urged = True
            events.append(OutSegmentUrgent(segment_id=segment.id, remaining_ms=max(0, left)))
        return events
