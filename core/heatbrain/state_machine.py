"""
HeatBrain State Machine

Runs the sub-models once per tick in strict priority order:

1. No-heating window guard. A blackout forces NO_HEATING_BLACKOUT with the
   overrun and immersion flags off.
2. Overrun and immersion schedules, evaluated independently.
3. Heat demand. Without it, and with neither flag active, the state is OFF.
4. Circulation scheduling, selecting OFF, CIRCULATE_MIXED or CIRCULATE_BOOST.

The machine holds no state of its own: everything that must survive between
ticks lives in the EngineState returned with each command.
"""

import logging
from typing import Callable, Optional

from .circulation import CirculationDecision, CirculationScheduler
from .exceptions import InvalidStateError
from .immersion import ImmersionResult, ImmersionScheduler
from .models import (
    CirculationMode,
    EngineState,
    HeatingCommand,
    HeatingState,
    PumpPhase,
    TickInputs,
    TickResult,
)
from .no_heating import NoHeatingWindowGuard
from .overrun import OverrunResult, OverrunScheduler
from .settings import BrainConfig
from .working_temp import WorkingTemperatureModel, resolve_working_range

logger = logging.getLogger(__name__)

_STATE_FOR_MODE = {
    CirculationMode.NONE: HeatingState.OFF,
    CirculationMode.MIXED: HeatingState.CIRCULATE_MIXED,
    CirculationMode.BOOST: HeatingState.CIRCULATE_BOOST,
}


def previous_circulation_mode(state: HeatingState) -> CirculationMode:
    """Circulation submode implied by a previous primary state.

    Raises:
        InvalidStateError: If a flag state, or anything that is not a
            HeatingState, is found in the primary slot
    """
    if state == HeatingState.OFF:
        return CirculationMode.NONE
    elif state == HeatingState.CIRCULATE_MIXED:
        return CirculationMode.MIXED
    elif state == HeatingState.CIRCULATE_BOOST:
        return CirculationMode.BOOST
    elif state == HeatingState.NO_HEATING_BLACKOUT:
        return CirculationMode.NONE
    elif state == HeatingState.OVERRUN:
        raise InvalidStateError("OVERRUN is a flag and cannot be the primary state")
    elif state == HeatingState.IMMERSION_OVERRUN:
        raise InvalidStateError("IMMERSION_OVERRUN is a flag and cannot be the primary state")
    else:
        raise InvalidStateError(f"Unknown heating state: {state!r}")


class HeatingStateMachine:
    """Decides the heating outputs for one tick from the previous engine state."""

    def __init__(self, config: BrainConfig, on_warning: Optional[Callable[[str], None]] = None):
        """Initialize state machine.

        Args:
            config: Immutable configuration shared by every sub-model
            on_warning: Receives configuration warnings raised during a tick
        """
        self.config = config
        local_tz = config.local_tz

        self.working_temp = WorkingTemperatureModel(config.working_temp_model, on_warning=on_warning)
        self.guard = NoHeatingWindowGuard(config.no_heating, local_tz)
        self.overrun = OverrunScheduler(config.overrun_slots, local_tz)
        self.immersion = ImmersionScheduler(config.immersion_parts, local_tz)
        self.circulation = CirculationScheduler(config.hp_circulation, config.hp_enable_time)

    def tick(self, previous: EngineState, inputs: TickInputs) -> TickResult:
        """Run one decision step.

        Args:
            previous: Engine state returned by the previous tick
            inputs: Complete input snapshot for this tick

        Returns:
            TickResult with the new engine state and the command to apply

        Raises:
            InvalidStateError: If `previous` holds an impossible primary state
        """
        now = inputs.now
        previous_mode = previous_circulation_mode(previous.primary)

        working_range, fresh = resolve_working_range(
            self.working_temp,
            inputs.outside_temp,
            self.config.default_working_range,
            previous.working_range,
            previous.working_range_at,
            now,
        )
        range_at = now if fresh else previous.working_range_at

        window = self.guard.active_window(now)
        if window is not None:
            if previous.primary != HeatingState.NO_HEATING_BLACKOUT:
                logger.info(f"🚫 No-heating window {window} started, all heating off")
            state = EngineState(
                primary=HeatingState.NO_HEATING_BLACKOUT,
                working_range=working_range,
                working_range_at=range_at,
                at=now,
            )
            return TickResult(state, self._command(state, CirculationMode.NONE, None, f"no-heating window {window}"))

        overrun = self.overrun.evaluate(now, inputs.temperatures, previous.latched_overrun_slots)
        immersion = self.immersion.evaluate(now, inputs.temperatures)
        heat_demand = bool(inputs.heat_demand)

        if not heat_demand and not overrun.active and not immersion.on:
            decision = CirculationDecision(mode=CirculationMode.NONE, phase=PumpPhase.IDLE, reason="no heat demand")
        else:
            decision = self.circulation.decide(
                now,
                inputs.temperatures,
                working_range,
                previous_mode,
                previous,
                heat_demand,
                overrun.best_slot,
            )

        state = EngineState(
            primary=_STATE_FOR_MODE[decision.mode],
            overrun=overrun.active,
            immersion=immersion.on,
            phase=decision.phase,
            phase_since=decision.phase_since,
            circulating_since=decision.circulating_since,
            mode_since=decision.mode_since,
            latched_overrun_slots=overrun.latched,
            working_range=working_range,
            working_range_at=range_at,
            at=now,
        )

        self._log_changes(previous, state, decision, overrun, immersion)
        return TickResult(state, self._command(state, decision.mode, decision, decision.reason))

    def _command(
        self,
        state: EngineState,
        mode: CirculationMode,
        decision: Optional[CirculationDecision],
        reason: str
    ) -> HeatingCommand:
        return HeatingCommand(
            at=state.at,
            state=state.primary,
            circulation=mode,
            circulation_pump_on=decision.pump_on if decision else False,
            overrun=state.overrun,
            immersion=state.immersion,
            active_states=state.active_states,
            working_range=state.working_range,
            heat_pct=decision.heat_pct if decision else None,
            reason=reason,
        )

    def _log_changes(
        self,
        previous: EngineState,
        state: EngineState,
        decision: CirculationDecision,
        overrun: OverrunResult,
        immersion: ImmersionResult
    ) -> None:
        if previous.primary != state.primary:
            logger.info(f"State {previous.primary.value} -> {state.primary.value} ({decision.reason})")
        if previous.phase != state.phase:
            logger.debug(f"Pump phase {previous.phase.value} -> {state.phase.value}")
        if previous.immersion != immersion.on:
            if immersion.on:
                logger.info(
                    f"Immersion heater on: {immersion.part.sensor} at {immersion.current:.1f}, "
                    f"target {immersion.target:.1f}"
                )
            else:
                logger.info("Immersion heater off")
        if previous.overrun != overrun.active:
            logger.info(f"Overrun {'on' if overrun.active else 'off'} ({overrun.triggered_count} slot(s) heating)")
