"""Immersion heater schedule."""

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Optional, Sequence

from .models import TemperatureSnapshot
from .settings import ImmersionPart

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImmersionResult:
    """Whether the immersion heater should run, and why."""

    on: bool
    part: Optional[ImmersionPart] = None
    target: Optional[float] = None
    current: Optional[float] = None


def target_temperature(part: ImmersionPart, now_time) -> float:
    """Target for a part at a time of day inside its window (linear ramp)."""
    duration = part.slot.duration_seconds
    if duration == 0 or part.start_temp == part.end_temp:
        return part.start_temp
    fraction = part.slot.seconds_into(now_time) / duration
    return part.start_temp + (part.end_temp - part.start_temp) * fraction


class ImmersionScheduler:
    """Follows a time-keyed sequence of target temperatures for the backup heater.

    Parts are assumed not to overlap; if they do, the first matching part in
    declaration order is used.
    """

    def __init__(self, parts: Sequence[ImmersionPart], local_tz: Optional[tzinfo] = None):
        self.parts = tuple(parts)
        self.local_tz = local_tz

    def find_part(self, now: datetime) -> Optional[ImmersionPart]:
        return next((p for p in self.parts if p.slot.contains(now, self.local_tz)), None)

    def evaluate(self, now: datetime, temps: TemperatureSnapshot) -> ImmersionResult:
        part = self.find_part(now)
        if part is None:
            return ImmersionResult(on=False)

        target = target_temperature(part, part.slot.local_time(now, self.local_tz))
        current = temps.get(part.sensor)
        if current is None:
            logger.error(f"Missing sensor: {part.sensor} when checking if immersion heater should be on")
            return ImmersionResult(on=False, part=part, target=target)

        logger.debug(f"Hope for temp {part.sensor}: {target:.2f}, currently {current:.2f} at this time")
        return ImmersionResult(on=current < target, part=part, target=target, current=current)
