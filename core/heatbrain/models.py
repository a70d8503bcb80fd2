"""
HeatBrain Data Models

Sensors, per-tick snapshots, engine state and the command record handed to
the relay driver.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Optional

from .exceptions import UnknownSensorError

if TYPE_CHECKING:
    from .settings import OverrunSlot


class Sensor(str, Enum):
    """Named temperature sensors of the installation."""

    TKTP = "TKTP"  # Tank top
    TKEN = "TKEN"  # Tank enclosure
    TKEX = "TKEX"  # Tank exchanger
    TKBT = "TKBT"  # Tank bottom
    TKFL = "TKFL"  # Tank flow
    TKRT = "TKRT"  # Tank return
    HPFL = "HPFL"  # Heat pump flow
    HPRT = "HPRT"  # Heat pump return
    HXIF = "HXIF"  # Heat exchanger intake (flow side)
    HXIR = "HXIR"  # Heat exchanger intake (return side)
    HXOF = "HXOF"  # Heat exchanger output (flow side)
    HXOR = "HXOR"  # Heat exchanger output (return side)

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> "Sensor":
        """Look up a sensor by name (case-insensitive).

        Raises:
            UnknownSensorError: If the name is not a known sensor
        """
        try:
            return cls(str(name).strip().upper())
        except ValueError:
            raise UnknownSensorError(f"Unknown sensor: {name!r}") from None


@dataclass(frozen=True)
class TemperatureReading:
    """A single sensor reading."""

    sensor: Sensor
    value: float
    captured_at: datetime


@dataclass(frozen=True)
class TemperatureSnapshot:
    """All sensor readings gathered for one tick."""

    captured_at: datetime
    readings: Mapping[Sensor, TemperatureReading] = field(default_factory=dict)

    @classmethod
    def from_values(
        cls,
        captured_at: datetime,
        values: Mapping[Sensor, Optional[float]]
    ) -> "TemperatureSnapshot":
        """Build a snapshot where every reading shares the capture time."""
        readings = {
            sensor: TemperatureReading(sensor, value, captured_at)
            for sensor, value in values.items()
            if value is not None
        }
        return cls(captured_at=captured_at, readings=readings)

    def get(self, sensor: Sensor) -> Optional[float]:
        """Get a reading, or None if it is missing or not a finite number.

        Raises:
            UnknownSensorError: If `sensor` is not a Sensor
        """
        if not isinstance(sensor, Sensor):
            raise UnknownSensorError(f"Unknown sensor requested: {sensor!r}")

        reading = self.readings.get(sensor)
        if reading is None:
            return None
        try:
            value = float(reading.value)
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) else None


class HeatingState(str, Enum):
    """Engine states. The first four are primary, the last two are flags."""

    OFF = "off"
    CIRCULATE_MIXED = "circulate_mixed"
    CIRCULATE_BOOST = "circulate_boost"
    NO_HEATING_BLACKOUT = "no_heating_blackout"
    OVERRUN = "overrun"
    IMMERSION_OVERRUN = "immersion_overrun"


PRIMARY_STATES = frozenset({
    HeatingState.OFF,
    HeatingState.CIRCULATE_MIXED,
    HeatingState.CIRCULATE_BOOST,
    HeatingState.NO_HEATING_BLACKOUT,
})


class CirculationMode(str, Enum):
    """Heat pump circulation submode."""

    NONE = "none"
    MIXED = "mixed"
    BOOST = "boost"


class PumpPhase(str, Enum):
    """Duty-cycle phase of the circulation pump."""

    IDLE = "idle"
    INITIAL_SLEEP = "initial_sleep"
    PUMP_ON = "pump_on"
    PUMP_OFF = "pump_off"


@dataclass(frozen=True)
class WorkingRange:
    """Target tank temperature band for the current outside temperature."""

    min: float
    max: float
    clamped: bool = False

    @property
    def width(self) -> float:
        return self.max - self.min

    def __str__(self) -> str:
        return f"{self.min:.2f}-{self.max:.2f}"


@dataclass(frozen=True)
class EngineState:
    """State carried from one tick to the next."""

    primary: HeatingState = HeatingState.OFF
    overrun: bool = False
    immersion: bool = False
    phase: PumpPhase = PumpPhase.IDLE
    phase_since: Optional[datetime] = None
    circulating_since: Optional[datetime] = None
    mode_since: Optional[datetime] = None
    latched_overrun_slots: frozenset["OverrunSlot"] = frozenset()  # Slots heating since an earlier tick
    working_range: Optional[WorkingRange] = None
    working_range_at: Optional[datetime] = None
    at: Optional[datetime] = None

    @property
    def active_states(self) -> frozenset[HeatingState]:
        """Primary state plus any active flag states."""
        states = {self.primary}
        if self.overrun:
            states.add(HeatingState.OVERRUN)
        if self.immersion:
            states.add(HeatingState.IMMERSION_OVERRUN)
        return frozenset(states)


@dataclass(frozen=True)
class TickInputs:
    """Complete input snapshot for one tick."""

    now: datetime
    temperatures: TemperatureSnapshot
    heat_demand: Optional[bool] = None
    outside_temp: Optional[float] = None


@dataclass(frozen=True)
class HeatingCommand:
    """Intent per physical output channel, produced once per tick."""

    at: datetime
    state: HeatingState
    circulation: CirculationMode
    circulation_pump_on: bool
    overrun: bool
    immersion: bool
    active_states: frozenset[HeatingState]
    working_range: Optional[WorkingRange] = None
    heat_pct: Optional[float] = None
    reason: str = ""

    @property
    def heat_pump_on(self) -> bool:
        """Whether the heat pump itself should be enabled."""
        return self.circulation != CirculationMode.NONE or self.overrun

    def same_outputs(self, other: Optional["HeatingCommand"]) -> bool:
        """Whether `other` drives every relay channel the same way."""
        if other is None:
            return False
        return (
            self.circulation == other.circulation
            and self.circulation_pump_on == other.circulation_pump_on
            and self.overrun == other.overrun
            and self.immersion == other.immersion
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.at.isoformat(),
            "state": self.state.value,
            "active_states": sorted(s.value for s in self.active_states),
            "circulation": self.circulation.value,
            "circulation_pump_on": self.circulation_pump_on,
            "heat_pump_on": self.heat_pump_on,
            "overrun": self.overrun,
            "immersion": self.immersion,
            "working_range": (
                {"min": self.working_range.min, "max": self.working_range.max}
                if self.working_range else None
            ),
            "heat_pct": self.heat_pct,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class TickResult:
    """New engine state plus the command to apply."""

    state: EngineState
    command: HeatingCommand
