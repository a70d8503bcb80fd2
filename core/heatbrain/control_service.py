"""
HeatBrain Control Service

Background service that runs the decision engine at a fixed interval:
gathers a complete input snapshot from the hub, runs one tick, records the
decision and drives the relays. Ticks and configuration reloads are
serialised with a lock so the engine never sees a config change mid-tick.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional, Protocol

from .exceptions import ConfigurationError, HubConnectionError, SensorError
from .history import DecisionHistory, history_tracker
from .hub_client import HubClient
from .models import CirculationMode, EngineState, HeatingCommand, Sensor, TemperatureSnapshot, TickInputs
from .settings import BrainConfig, load_config
from .state_machine import HeatingStateMachine

logger = logging.getLogger(__name__)


class RelayDriver(Protocol):
    """Applies a command to the physical outputs."""

    def apply(self, command: HeatingCommand) -> None:
        ...


def channel_states(command: HeatingCommand) -> dict[str, bool]:
    """Desired state of every relay channel for a command."""
    return {
        "heat_pump": command.heat_pump_on,
        "circulation_pump": command.circulation_pump_on,
        "overrun": command.overrun,
        "immersion": command.immersion,
        "heat_pump_mode": command.circulation == CirculationMode.BOOST,
    }


class HubRelayDriver:
    """Drives relays through hub switch entities, writing only on change."""

    def __init__(
        self,
        hub: HubClient,
        relays: Mapping[str, str],
        history: Optional[DecisionHistory] = None
    ):
        self.hub = hub
        self.relays = dict(relays)
        self.history = history
        self._last: dict[str, bool] = {}

    def apply(self, command: HeatingCommand) -> None:
        """Switch every configured channel whose desired state changed.

        Raises:
            HubConnectionError: If a switch call fails (retried next tick)
        """
        for channel, on in channel_states(command).items():
            entity_id = self.relays.get(channel)
            if entity_id is None or self._last.get(channel) == on:
                continue
            self.hub.set_switch(entity_id, on)
            self._last[channel] = on
            if self.history is not None:
                self.history.add_relay_event(channel, entity_id, on)

    def update_relays(self, relays: Mapping[str, str]) -> None:
        """Switch to a new channel-to-entity mapping.

        An entity that is no longer driven by its channel is switched off,
        and the channel is written afresh on the next `apply`.

        Raises:
            HubConnectionError: If switching an old entity off fails
        """
        old = self.relays
        self.relays = dict(relays)
        moved = [
            (channel, entity_id, self._last.pop(channel, None))
            for channel, entity_id in old.items()
            if self.relays.get(channel) != entity_id
        ]

        failed = []
        for channel, entity_id, last in moved:
            if last is False:
                continue
            logger.info(f"Relay {channel} moved off {entity_id}, switching it off")
            try:
                self.hub.set_switch(entity_id, False)
            except HubConnectionError as e:
                failed.append(f"{entity_id}: {e}")
                continue
            if self.history is not None:
                self.history.add_relay_event(channel, entity_id, False)

        if failed:
            raise HubConnectionError(f"Failed to switch off {', '.join(failed)}")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ControlService:
    """
    Background service for the heating control loop.

    Hub failures never reach the engine as partial data: if the snapshot
    cannot be assembled the tick is skipped and the previous command stays
    in force. A heat-demand signal that cannot be read is replaced by the
    last good value for up to `hub.demand_hold_minutes`.
    """

    def __init__(
        self,
        hub: HubClient,
        config: BrainConfig,
        relay_driver: Optional[RelayDriver] = None,
        history: DecisionHistory = history_tracker,
        config_path: Optional[str] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.hub = hub
        self.config = config
        self.config_path = config_path
        self.history = history
        self.relay_driver = relay_driver or HubRelayDriver(hub, config.relays, history)
        self._clock = clock

        self.machine = HeatingStateMachine(config, on_warning=self._record_warning)
        self.state = EngineState()
        self.last_command: Optional[HeatingCommand] = None
        self.last_error: Optional[str] = None
        self.skipped_ticks = 0
        self.warnings: deque[str] = deque(maxlen=50)

        self._demand: Optional[bool] = None
        self._demand_at: Optional[datetime] = None

        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the control loop."""
        if self._running:
            logger.warning("Control service already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"🔥 Control service started ({len(self.config.sensors)} sensors, "
                    f"tick every {self.config.tick_interval_seconds:.0f}s)")

    async def stop(self):
        """Stop the control loop."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("🔥 Control service stopped")

    async def _run_loop(self):
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Error in control loop: {e}", exc_info=True)

            await asyncio.sleep(self.config.tick_interval_seconds)

    async def tick(self) -> Optional[HeatingCommand]:
        """Run one control cycle.

        Returns:
            The command in force after this cycle (the previous one if the
            snapshot could not be assembled)
        """
        async with self._lock:
            now = self._clock()
            try:
                inputs = await asyncio.to_thread(self.gather_inputs, now)
            except HubConnectionError as e:
                self.skipped_ticks += 1
                self.last_error = str(e)
                logger.warning(f"Skipping tick, keeping previous command: {e}")
                return self.last_command

            result = self.machine.tick(self.state, inputs)
            if not result.command.same_outputs(self.last_command):
                logger.info(f"Outputs changed: {channel_states(result.command)} ({result.command.reason})")
            self.state = result.state
            self.last_command = result.command

            self.history.add_tick(
                result.command,
                {str(sensor): reading.value for sensor, reading in inputs.temperatures.readings.items()},
                inputs.heat_demand,
            )

            try:
                await asyncio.to_thread(self.relay_driver.apply, result.command)
            except HubConnectionError as e:
                self.last_error = str(e)
                logger.error(f"Failed to apply command: {e}")
            else:
                self.last_error = None

            return result.command

    def gather_inputs(self, now: datetime) -> TickInputs:
        """Read every configured sensor plus demand and outside temperature.

        A sensor the hub reports as missing is left out of the snapshot.

        Raises:
            HubConnectionError: If the hub cannot be reached
        """
        values: dict[Sensor, Optional[float]] = {}
        for sensor, entity_id in self.config.sensors.items():
            try:
                values[sensor] = self.hub.get_temperature(entity_id)
            except SensorError as e:
                logger.warning(f"Failed to read {sensor} ({entity_id}): {e}")

        outside_temp = None
        if self.config.hub.outside_temp_entity:
            try:
                outside_temp = self.hub.get_temperature(self.config.hub.outside_temp_entity)
            except SensorError as e:
                logger.warning(f"Failed to read outside temperature: {e}")

        return TickInputs(
            now=now,
            temperatures=TemperatureSnapshot.from_values(now, values),
            heat_demand=self._read_heat_demand(now),
            outside_temp=outside_temp,
        )

    def _read_heat_demand(self, now: datetime) -> Optional[bool]:
        try:
            demand = self.hub.is_heating_demanded(self.config.hub.heat_demand_entity)
        except (SensorError, HubConnectionError) as e:
            hold = timedelta(minutes=self.config.hub.demand_hold_minutes)
            if self._demand_at is not None and now - self._demand_at <= hold:
                logger.warning(f"Failed to read heat demand, keeping last value {self._demand}: {e}")
                return self._demand
            logger.warning(f"Failed to read heat demand, treating as absent: {e}")
            return None

        self._demand = demand
        self._demand_at = now
        return demand

    async def reload(self, config: Optional[BrainConfig] = None) -> BrainConfig:
        """Swap in a new configuration between ticks.

        Args:
            config: New configuration, or None to re-read `config_path`

        Raises:
            ConfigurationError: If the configuration cannot be loaded
        """
        async with self._lock:
            if config is None:
                if not self.config_path:
                    raise ConfigurationError("No configuration file to reload from")
                config = load_config(self.config_path)

            self.config = config
            self.machine = HeatingStateMachine(config, on_warning=self._record_warning)
            if isinstance(self.relay_driver, HubRelayDriver):
                try:
                    await asyncio.to_thread(self.relay_driver.update_relays, config.relays)
                except HubConnectionError as e:
                    self.last_error = str(e)
                    logger.error(f"Failed to switch off remapped relay: {e}")

            logger.info(f"Configuration reloaded: {len(config.overrun_slots)} overrun slots, "
                        f"{len(config.immersion_parts)} immersion parts, "
                        f"{len(config.no_heating)} no-heating windows")
            return config

    def _record_warning(self, message: str) -> None:
        self.warnings.append(message)

    def status(self) -> dict:
        """Current engine status for the API."""
        return {
            "running": self._running,
            "state": self.state.primary.value,
            "active_states": sorted(s.value for s in self.state.active_states),
            "pump_phase": self.state.phase.value,
            "last_tick": self.state.at.isoformat() if self.state.at else None,
            "command": self.last_command.to_dict() if self.last_command else None,
            "last_error": self.last_error,
            "skipped_ticks": self.skipped_ticks,
            "warnings": list(self.warnings),
        }
