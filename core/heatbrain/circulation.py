"""
Heat Pump Circulation Scheduling

Decides whether the heat pump circulates, in which submode, and where the
circulation pump is in its on/off duty cycle. Everything here is a pure
function of the tick inputs and the previous engine state.

The central metric is the heat percentage: where the forecast heat exchanger
intake temperature sits inside the working range (0 at the min, 1 at the max).
The forecast anticipates the drop that follows when the exchanger starts
drawing cooler water from its output side, so decisions are made ahead of the
readings rather than after them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import numpy as np

from .hysteresis import HysteresisBand, all_hold
from .models import (
    CirculationMode,
    EngineState,
    PumpPhase,
    Sensor,
    TemperatureSnapshot,
    WorkingRange,
)
from .settings import HpCirculationConfig, OverrunSlot

logger = logging.getLogger(__name__)

# Return temperature at which the heat pump cuts itself off
HARD_HPRT_LIMIT = 52.1
# Start blending HPRT into the forecast this far below the limit
HPRT_BLEND_WIDTH = 3.5
MAX_EXPECTED_DROP = 25.0


@dataclass(frozen=True)
class CirculationDecision:
    """Circulation submode plus duty-cycle phase for one tick."""

    mode: CirculationMode
    phase: PumpPhase
    phase_since: Optional[datetime] = None
    circulating_since: Optional[datetime] = None
    mode_since: Optional[datetime] = None
    heat_pct: Optional[float] = None
    tank_pct: Optional[float] = None
    reason: str = ""

    @property
    def pump_on(self) -> bool:
        return self.phase == PumpPhase.PUMP_ON


def merge_hprt_into_forecast(forecast: float, hprt: float) -> float:
    """Gradually switch from the forecast to HPRT as HPRT nears the hard limit.

    HPRT is what ultimately cuts off the heat pump, so the top of the working
    range is aligned with it.
    """
    if hprt > HARD_HPRT_LIMIT:
        return hprt
    low = HARD_HPRT_LIMIT - HPRT_BLEND_WIDTH
    pct_hprt = float(np.clip((hprt - low) / HPRT_BLEND_WIDTH, 0.0, 1.0))
    return forecast * (1.0 - pct_hprt) + hprt * pct_hprt


def range_position(value: float, working_range: WorkingRange) -> float:
    """Position of `value` within the working range (0 = min, 1 = max)."""
    if working_range.width <= 0:
        # Collapsed (clamped) range: either at/above it or below it
        return 1.0 if value >= working_range.min else 0.0
    return (value - working_range.min) / working_range.width


def _expected_drop(hxia: float, hxor: float, config: HpCirculationConfig) -> float:
    adjusted_difference = (hxia - hxor) - config.forecast_diff_offset
    return float(np.clip(adjusted_difference * config.forecast_diff_proportion, 0.0, MAX_EXPECTED_DROP))


def forecast_heat_pct(
    temps: TemperatureSnapshot,
    config: HpCirculationConfig,
    working_range: WorkingRange
) -> Optional[float]:
    """Forecast heat exchanger position in the working range.

    Returns None if any required sensor is missing.
    """
    hxif = temps.get(Sensor.HXIF)
    hxir = temps.get(Sensor.HXIR)
    hxor = temps.get(Sensor.HXOR)
    hprt = temps.get(Sensor.HPRT)
    if None in (hxif, hxir, hxor, hprt):
        return None

    hxia = (hxif + hxir) / 2.0
    raw_forecast = hxia - _expected_drop(hxia, hxor, config)
    forecast = merge_hprt_into_forecast(raw_forecast, hprt)
    pct = range_position(forecast, working_range)

    logger.debug(
        f"HXIA: {hxia:.2f}, HXOR: {hxor:.2f} => HXIA forecast: "
        f"{raw_forecast:.2f}/{forecast:.2f} ({pct:.0%})"
    )
    return pct


def forecast_tank_pct(
    temps: TemperatureSnapshot,
    config: HpCirculationConfig,
    working_range: WorkingRange
) -> Optional[float]:
    """Forecast position in the working range if the tank were drained into the exchanger."""
    tkbt = temps.get(Sensor.TKBT)
    hxor = temps.get(Sensor.HXOR)
    if tkbt is None or hxor is None:
        return None

    hxia = tkbt - config.forecast_tkbt_hxia_drop
    forecast = float(np.clip(hxia - _expected_drop(hxia, hxor, config), 0.0, 100.0))
    pct = range_position(forecast, working_range)

    logger.debug(f"TKBT: {tkbt:.2f}, HXOR: {hxor:.2f} => HXIA forecast: {forecast:.2f} ({pct:.0%})")
    return pct


class CirculationScheduler:
    """
    Chooses the heat pump circulation submode.

    Rules, checked in order:
    1. No heat demand, or HXOR below `pre_circulate_temp_required` (or
       missing): no circulation.
    2. Boost, a composite hysteresis latch. It engages only when every
       start gate holds: heat percentage at or below the boost start,
       TKFL - HPFL at or above its start, the active overrun slot's margin
       above its minimum at or above its start, the tank forecast at or above
       `forecast_start_above_percent`, and the heat pump circulating for at
       least `hp_enable_time`. Once engaged it stays until ANY stop gate is
       crossed: heat percentage reaching the boost stop, TKFL - HPFL at or
       below its stop (ignored for the first `sample_tank_time`), or the
       slot margin at or below its stop.
    3. Mixed, a plain rising hysteresis band on the heat percentage.
    4. Otherwise no circulation.
    """

    def __init__(self, config: HpCirculationConfig, hp_enable_time: timedelta = timedelta(seconds=70)):
        self.config = config
        self.hp_enable_time = hp_enable_time

    def decide(
        self,
        now: datetime,
        temps: TemperatureSnapshot,
        working_range: WorkingRange,
        previous_mode: CirculationMode,
        previous: EngineState,
        heat_demand: bool,
        overrun_slot: Optional[OverrunSlot] = None
    ) -> CirculationDecision:
        """Decide the circulation submode and pump phase for this tick.

        Args:
            now: Tick time
            temps: Sensor readings for this tick
            working_range: Target band from the working temperature model
            previous_mode: Submode chosen on the previous tick
            previous: Engine state from the previous tick (phase timings)
            heat_demand: Whether the hub is asking for heat
            overrun_slot: Governing overrun slot in its window, if any
        """
        if not heat_demand:
            return self._idle("no heat demand")

        source = temps.get(Sensor.HXOR)
        if source is None:
            return self._idle("HXOR unavailable")
        if source < self.config.pre_circulate_temp_required:
            return self._idle(
                f"HXOR {source:.1f} below required {self.config.pre_circulate_temp_required:.1f}"
            )

        heat_pct = forecast_heat_pct(temps, self.config, working_range)
        if heat_pct is None:
            return self._idle("heat forecast sensors unavailable")
        tank_pct = forecast_tank_pct(temps, self.config, working_range)

        if self._boost(now, temps, heat_pct, tank_pct, previous_mode, previous, overrun_slot):
            mode = CirculationMode.BOOST
        elif self.config.mixed_mode.heat_band.update(previous_mode == CirculationMode.MIXED, heat_pct):
            mode = CirculationMode.MIXED
        else:
            return self._idle(f"heat {heat_pct:.0%} outside circulation bands", heat_pct, tank_pct)

        circulating = previous_mode != CirculationMode.NONE
        phase, phase_since = self._next_phase(now, circulating, previous)

        return CirculationDecision(
            mode=mode,
            phase=phase,
            phase_since=phase_since,
            circulating_since=previous.circulating_since if circulating else now,
            mode_since=previous.mode_since if mode == previous_mode else now,
            heat_pct=heat_pct,
            tank_pct=tank_pct,
            reason=f"{mode.value} at heat {heat_pct:.0%}",
        )

    def _idle(
        self,
        reason: str,
        heat_pct: Optional[float] = None,
        tank_pct: Optional[float] = None
    ) -> CirculationDecision:
        logger.debug(f"Not circulating: {reason}")
        return CirculationDecision(
            mode=CirculationMode.NONE,
            phase=PumpPhase.IDLE,
            heat_pct=heat_pct,
            tank_pct=tank_pct,
            reason=reason,
        )

    def _boost(
        self,
        now: datetime,
        temps: TemperatureSnapshot,
        heat_pct: float,
        tank_pct: Optional[float],
        previous_mode: CirculationMode,
        previous: EngineState,
        overrun_slot: Optional[OverrunSlot]
    ) -> bool:
        if overrun_slot is None:
            return False

        boost = self.config.boost_mode
        tkfl = temps.get(Sensor.TKFL)
        hpfl = temps.get(Sensor.HPFL)
        flow_diff = tkfl - hpfl if tkfl is not None and hpfl is not None else None
        slot_temp = temps.get(overrun_slot.sensor)
        slot_margin = slot_temp - overrun_slot.min if slot_temp is not None else None

        if previous_mode == CirculationMode.BOOST:
            gates: list[tuple[HysteresisBand, Optional[float]]] = [
                (boost.heat_band, heat_pct),
                (boost.slot_margin_band, slot_margin),
            ]
            sampling = previous.mode_since is not None and now - previous.mode_since < self.config.sample_tank_time
            if not sampling:
                gates.append((boost.flow_diff_band, flow_diff))
            return all_hold(gates, engaged=True)

        if previous.circulating_since is None or previous_mode == CirculationMode.NONE:
            return False
        if now - previous.circulating_since < self.hp_enable_time:
            return False
        if tank_pct is None or tank_pct < self.config.forecast_start_above_percent:
            return False

        engage = all_hold(
            [
                (boost.heat_band, heat_pct),
                (boost.flow_diff_band, flow_diff),
                (boost.slot_margin_band, slot_margin),
            ],
            engaged=False,
        )
        if engage:
            logger.info(
                f"Boost gates passed: heat {heat_pct:.0%}, TKFL-HPFL {flow_diff:.1f}, "
                f"slot margin {slot_margin:.1f} ({overrun_slot})"
            )
        return engage

    def _next_phase(
        self,
        now: datetime,
        circulating: bool,
        previous: EngineState
    ) -> tuple[PumpPhase, datetime]:
        """Advance the pump duty cycle by at most one phase."""
        if not circulating or previous.phase == PumpPhase.IDLE or previous.phase_since is None:
            return PumpPhase.INITIAL_SLEEP, now

        elapsed = now - previous.phase_since
        if previous.phase == PumpPhase.INITIAL_SLEEP:
            if elapsed >= self.config.initial_hp_sleep:
                return PumpPhase.PUMP_ON, now
        elif previous.phase == PumpPhase.PUMP_ON:
            if elapsed >= self.config.hp_pump_on_time:
                return PumpPhase.PUMP_OFF, now
        elif previous.phase == PumpPhase.PUMP_OFF:
            if elapsed >= self.config.hp_pump_off_time:
                return PumpPhase.PUMP_ON, now
        return previous.phase, previous.phase_since
