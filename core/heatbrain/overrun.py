"""
Overrun Scheduling

Forces heating of a tank sensor during configured cheap-electricity windows.
Each slot triggers when its sensor drops below the slot minimum and, once
triggered, stays on until the sensor reaches the slot maximum or the window
ends. Active slots are combined with a logical OR.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Optional, Sequence

from .models import Sensor, TemperatureSnapshot
from .settings import OverrunSlot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverrunResult:
    """Outcome of evaluating every overrun slot for one tick."""

    active: bool
    latched: frozenset[OverrunSlot]  # Slots currently heating
    in_window: tuple[OverrunSlot, ...]  # Slots whose window contains now
    best_slot: Optional[OverrunSlot] = None

    @property
    def triggered_count(self) -> int:
        return len(self.latched)


class OverrunScheduler:
    """Evaluates overrun slots against sensor readings, per sensor."""

    def __init__(self, slots: Sequence[OverrunSlot], local_tz: Optional[tzinfo] = None):
        self.slots = tuple(slots)
        self.local_tz = local_tz

    def _is_disabled(self, slot: OverrunSlot, temps: TemperatureSnapshot) -> bool:
        if slot.disable_below is None:
            return False

        tken = temps.get(Sensor.TKEN)
        if tken is not None and tken < slot.disable_below.tken:
            logger.info(f"{slot}: overrun disabled due to TKEN of {tken:.1f}")
            return True
        if tken is None:
            logger.error("Potentially missing sensor: TKEN")

        tkbt = temps.get(Sensor.TKBT)
        if tkbt is not None and tkbt < slot.disable_below.tkbt:
            logger.info(f"{slot}: overrun disabled due to TKBT of {tkbt:.1f}")
            return True
        if tkbt is None:
            logger.error("Potentially missing sensor: TKBT")

        return False

    def evaluate(
        self,
        now: datetime,
        temps: TemperatureSnapshot,
        latched: frozenset[OverrunSlot] = frozenset()
    ) -> OverrunResult:
        """Evaluate all slots.

        Latches are keyed by the slot itself, so a latch survives a
        configuration reload only if an identical slot is still configured.

        Args:
            now: Tick time
            temps: Sensor readings for this tick
            latched: Slots that were heating on the previous tick

        Returns:
            Combined result with the new latch set
        """
        now_latched = set()
        in_window = []

        for slot in self.slots:
            if not slot.slot.contains(now, self.local_tz):
                continue
            if self._is_disabled(slot, temps):
                continue
            in_window.append(slot)

            temp = temps.get(slot.sensor)
            if temp is None:
                logger.error(f"Potentially missing sensor: {slot.sensor}")
                continue

            if slot in latched:
                heating = temp < slot.max
            else:
                heating = temp < slot.min

            logger.debug(
                f"Checking overrun for {slot.sensor}. Current temp {temp:.2f}. "
                f"{slot}: {'heating' if heating else 'not heating'}"
            )
            if heating:
                now_latched.add(slot)

        result = OverrunResult(
            active=bool(now_latched),
            latched=frozenset(now_latched),
            in_window=tuple(in_window),
            best_slot=self.best_slot(in_window, temps),
        )

        for slot in self.slots:
            if slot in result.latched and slot not in latched:
                logger.info(f"Overrun started: {slot}")
            elif slot in latched and slot not in result.latched:
                logger.info(f"Overrun finished: {slot}")
        for slot in latched:
            if slot not in self.slots:
                logger.info(f"Overrun dropped, slot no longer configured: {slot}")

        return result

    @staticmethod
    def best_slot(slots: Sequence[OverrunSlot], temps: TemperatureSnapshot) -> Optional[OverrunSlot]:
        """Pick the slot that governs the tank right now.

        A TKTP slot whose sensor is under its minimum trumps the others;
        otherwise the slot with the highest min, then the highest max wins.
        Slots whose sensor has no reading are ignored.
        """
        candidates = [s for s in slots if temps.get(s.sensor) is not None]
        if not candidates:
            return None

        def rank(slot: OverrunSlot):
            urgent_top = slot.sensor == Sensor.TKTP and temps.get(slot.sensor) < slot.min
            return (urgent_top, slot.min, slot.max)

        return max(candidates, key=rank)
