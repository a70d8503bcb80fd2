"""Blackout windows during which all heating is forbidden."""

import logging
from datetime import datetime, tzinfo
from typing import Optional, Sequence

from .timeslot import TimeSlot

logger = logging.getLogger(__name__)


class NoHeatingWindowGuard:
    """Highest priority check: is heating forbidden right now?"""

    def __init__(self, windows: Sequence[TimeSlot], local_tz: Optional[tzinfo] = None):
        self.windows = tuple(windows)
        self.local_tz = local_tz

    def active_window(self, now: datetime) -> Optional[TimeSlot]:
        """The first blackout window containing `now`, if any."""
        return next((w for w in self.windows if w.contains(now, self.local_tz)), None)

    def is_forbidden(self, now: datetime) -> bool:
        window = self.active_window(now)
        if window is not None:
            logger.debug(f"Heating forbidden by no-heating window {window}")
        return window is not None
