"""Common fixtures for HeatBrain tests."""

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from core.heatbrain.exceptions import HubConnectionError, SensorError
from core.heatbrain.models import Sensor, TemperatureSnapshot, TickInputs
from core.heatbrain.settings import BrainConfig

# Installation that is warm and asking for heat: forecast sits at the top of
# the default 42-45 working range.
WARM_TEMPS = {
    "TKTP": 45.0,
    "TKEN": 40.0,
    "TKEX": 44.0,
    "TKBT": 50.0,
    "TKFL": 46.0,
    "TKRT": 40.0,
    "HPFL": 45.0,
    "HPRT": 40.0,
    "HXIF": 45.0,
    "HXIR": 45.0,
    "HXOF": 44.0,
    "HXOR": 40.0,
}


def _snapshot(now: datetime, **values: float | None) -> TemperatureSnapshot:
    return TemperatureSnapshot.from_values(
        now, {Sensor.from_name(name): value for name, value in values.items()}
    )


@pytest.fixture
def base_time() -> datetime:
    """Midday wall-clock time, outside every configured window."""
    return datetime(2024, 1, 15, 12, 0, 0)


@pytest.fixture
def make_snapshot():
    """Build a TemperatureSnapshot from sensor-name keyword arguments."""
    return _snapshot


@pytest.fixture
def make_inputs():
    """Build TickInputs; temperatures default to a warm installation."""

    def _make(
        now: datetime,
        heat_demand: bool | None = None,
        outside_temp: float | None = None,
        **overrides: float | None,
    ) -> TickInputs:
        values = {**WARM_TEMPS, **overrides}
        return TickInputs(
            now=now,
            temperatures=_snapshot(now, **values),
            heat_demand=heat_demand,
            outside_temp=outside_temp,
        )

    return _make


@pytest.fixture
def config_data() -> dict[str, Any]:
    """Configuration mapping as it would come out of YAML."""
    return {
        "hp_enable_time": 70,
        "default_working_range": {"min": 42.0, "max": 45.0},
        "overrun_during": {
            "slots": [
                {
                    "slot": {"type": "Local", "start": "00:30:00", "end": "04:30:00"},
                    "temps": {"sensor": "TKTP", "min": 36.0, "max": 43.6},
                },
            ]
        },
        "immersion_heater_model": {
            "parts": [
                {"start": "02:00:00", "end": "05:00:00", "temp": 40.0, "sensor": "TKTP"},
            ]
        },
        "no_heating": [
            {"type": "Local", "start": "16:00:00", "end": "19:00:00"},
        ],
    }


@pytest.fixture
def brain_config(config_data: dict[str, Any]) -> BrainConfig:
    return BrainConfig.from_dict(config_data)


class FakeHub:
    """In-memory stand-in for HubClient."""

    def __init__(self):
        self.temperatures: dict[str, float] = {}
        self.demand: bool = True
        self.demand_error: Exception | None = None
        self.temperature_error: Exception | None = None
        self.switch_calls: list[tuple[str, bool]] = []

    def get_temperature(self, entity_id: str) -> float:
        if self.temperature_error is not None:
            raise self.temperature_error
        if entity_id not in self.temperatures:
            raise SensorError(f"Entity not found: {entity_id}")
        return self.temperatures[entity_id]

    def is_heating_demanded(self, entity_id: str) -> bool:
        if self.demand_error is not None:
            raise self.demand_error
        return self.demand

    def set_switch(self, entity_id: str, on: bool) -> None:
        self.switch_calls.append((entity_id, on))


@pytest.fixture
def fake_hub() -> FakeHub:
    hub = FakeHub()
    hub.temperatures = {f"sensor.{name.lower()}": value for name, value in WARM_TEMPS.items()}
    return hub


@pytest.fixture
def hub_config() -> BrainConfig:
    """Configuration wired to the fake hub, with no time windows."""
    return BrainConfig.from_dict({
        "sensors": {name: f"sensor.{name.lower()}" for name in WARM_TEMPS},
        "relays": {
            "heat_pump": "switch.heat_pump",
            "circulation_pump": "switch.circulation_pump",
            "overrun": "switch.overrun",
            "immersion": "switch.immersion_heater",
            "heat_pump_mode": "switch.heat_pump_mode",
        },
        "hub": {"heat_demand_entity": "binary_sensor.heating_demand"},
        "tick_interval_seconds": 0.01,
    })


class FakeClock:
    """Controllable clock for the control service."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.now(timezone.utc))


@pytest.fixture
def connection_error() -> HubConnectionError:
    return HubConnectionError("Hub API request failed: connection refused")
