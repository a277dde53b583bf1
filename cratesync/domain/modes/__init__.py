from __future__ import annotations

from .battle import BattleMode
from .coordinator import TimedModeCoordinator
from .purge import PurgeMode
from .show_clock import ShowClockMode

__all__ = [
    "BattleMode",
    "PurgeMode",
    "ShowClockMode",
    "TimedModeCoordinator",
]
