"""
HeatBrain Configuration Settings

Immutable configuration for the decision engine, loaded once from YAML and
passed explicitly into every tick. Additional YAML files found in
`include_config_directories` may contribute overrun slots, immersion heater
parts and no-heating windows.
"""

import logging
import math
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta, tzinfo
from types import MappingProxyType
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .exceptions import ConfigurationError, UnknownSensorError
from .hysteresis import FALLING, RISING, HysteresisBand
from .models import Sensor, WorkingRange
from .timeslot import LOCAL, TimeSlot

logger = logging.getLogger(__name__)


def _camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    s1 = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub("([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


def _normalise(data: Optional[dict]) -> dict:
    """Convert keys to snake_case, leaving sensor-name style keys alone."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping, got {type(data).__name__}: {data!r}")
    bad_keys = [k for k in data if not isinstance(k, str)]
    if bad_keys:
        raise ConfigurationError(f"Setting names must be strings, got {bad_keys!r}")
    return {(_camel_to_snake(k) if not k.isupper() else k): v for k, v in data.items()}


def _number(data: dict, key: str, default: Optional[float] = None) -> float:
    value = data.get(key, default)
    if value is None:
        raise ConfigurationError(f"Missing required setting: {key}")
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Setting {key} must be a number, got {value!r}") from None
    if not math.isfinite(value):
        raise ConfigurationError(f"Setting {key} must be finite, got {value!r}")
    return value


def _seconds(data: dict, key: str, default: float) -> timedelta:
    seconds = _number(data, key, default)
    if seconds < 0:
        raise ConfigurationError(f"Setting {key} must not be negative, got {seconds}")
    return timedelta(seconds=seconds)


def _sensor(name) -> Sensor:
    try:
        return Sensor.from_name(name)
    except UnknownSensorError as e:
        raise ConfigurationError(str(e)) from None


@dataclass(frozen=True)
class CurveParams:
    """Logistic curve parameters for one bound of the working range."""

    sharpness: float
    turning_point: float
    multiplier: float
    offset: float

    @classmethod
    def from_dict(cls, data: dict) -> "CurveParams":
        converted = _normalise(data)
        return cls(
            sharpness=_number(converted, "sharpness"),
            turning_point=_number(converted, "turning_point"),
            multiplier=_number(converted, "multiplier"),
            offset=_number(converted, "offset"),
        )


@dataclass(frozen=True)
class WorkingTempModelConfig:
    """Curves producing the min and max of the working range."""

    # Colder outside means a hotter tank: both curves fall as outside temp rises
    min: CurveParams = CurveParams(sharpness=-0.25, turning_point=5.0, multiplier=12.0, offset=30.0)
    max: CurveParams = CurveParams(sharpness=-0.25, turning_point=5.0, multiplier=12.0, offset=34.0)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkingTempModelConfig":
        converted = _normalise(data)
        default = cls()
        return cls(
            min=CurveParams.from_dict(converted["min"]) if "min" in converted else default.min,
            max=CurveParams.from_dict(converted["max"]) if "max" in converted else default.max,
        )


@dataclass(frozen=True)
class MixedModeConfig:
    """Heat percentage thresholds for mixed heating (heating plus hot water)."""

    start_heat_pct: float = 0.70
    stop_heat_pct: float = 0.30

    def __post_init__(self):
        self.heat_band  # validates ordering

    @property
    def heat_band(self) -> HysteresisBand:
        return HysteresisBand(self.start_heat_pct, self.stop_heat_pct, RISING)

    @classmethod
    def from_dict(cls, data: dict) -> "MixedModeConfig":
        converted = _normalise(data)
        default = cls()
        return cls(
            start_heat_pct=_number(converted, "start_heat_pct", default.start_heat_pct),
            stop_heat_pct=_number(converted, "stop_heat_pct", default.stop_heat_pct),
        )


@dataclass(frozen=True)
class BoostModeConfig:
    """
    Thresholds for boosting heating from the hot water tank.

    Boost is wanted when the heat exchanger forecast is low in the working
    range (heat pump struggling), the tank flow is hotter than the heat pump
    flow, and the tank has margin above the current overrun slot's minimum.
    """

    start_heat_pct: float = 0.10
    stop_heat_pct: float = 0.30
    start_tkfl_hpfl_diff: float = 3.0
    stop_tkfl_hpfl_diff: float = 1.0
    start_slot_min_diff: float = 5.0
    stop_slot_min_diff: float = 2.0

    def __post_init__(self):
        self.heat_band
        self.flow_diff_band
        self.slot_margin_band

    @property
    def heat_band(self) -> HysteresisBand:
        return HysteresisBand(self.start_heat_pct, self.stop_heat_pct, FALLING)

    @property
    def flow_diff_band(self) -> HysteresisBand:
        return HysteresisBand(self.start_tkfl_hpfl_diff, self.stop_tkfl_hpfl_diff, RISING)

    @property
    def slot_margin_band(self) -> HysteresisBand:
        return HysteresisBand(self.start_slot_min_diff, self.stop_slot_min_diff, RISING)

    @classmethod
    def from_dict(cls, data: dict) -> "BoostModeConfig":
        converted = _normalise(data)
        default = cls()
        return cls(**{
            key: _number(converted, key, getattr(default, key))
            for key in (
                "start_heat_pct", "stop_heat_pct",
                "start_tkfl_hpfl_diff", "stop_tkfl_hpfl_diff",
                "start_slot_min_diff", "stop_slot_min_diff",
            )
        })


@dataclass(frozen=True)
class HpCirculationConfig:
    """Heat pump circulation timings, forecast parameters and hysteresis."""

    hp_pump_on_time: timedelta = timedelta(seconds=70)
    hp_pump_off_time: timedelta = timedelta(seconds=30)
    initial_hp_sleep: timedelta = timedelta(minutes=5)
    pre_circulate_temp_required: float = 35.0
    forecast_diff_offset: float = 5.0
    forecast_diff_proportion: float = 0.33
    forecast_start_above_percent: float = 0.10
    forecast_tkbt_hxia_drop: float = 3.0
    mixed_mode: MixedModeConfig = MixedModeConfig()
    boost_mode: BoostModeConfig = BoostModeConfig()
    sample_tank_time: timedelta = timedelta(seconds=30)

    @classmethod
    def from_dict(cls, data: dict) -> "HpCirculationConfig":
        converted = _normalise(data)
        default = cls()
        return cls(
            hp_pump_on_time=_seconds(converted, "hp_pump_on_time", default.hp_pump_on_time.total_seconds()),
            hp_pump_off_time=_seconds(converted, "hp_pump_off_time", default.hp_pump_off_time.total_seconds()),
            initial_hp_sleep=_seconds(converted, "initial_hp_sleep", default.initial_hp_sleep.total_seconds()),
            pre_circulate_temp_required=_number(
                converted, "pre_circulate_temp_required", default.pre_circulate_temp_required
            ),
            forecast_diff_offset=_number(converted, "forecast_diff_offset", default.forecast_diff_offset),
            forecast_diff_proportion=_number(
                converted, "forecast_diff_proportion", default.forecast_diff_proportion
            ),
            forecast_start_above_percent=_number(
                converted, "forecast_start_above_percent", default.forecast_start_above_percent
            ),
            forecast_tkbt_hxia_drop=_number(
                converted, "forecast_tkbt_hxia_drop", default.forecast_tkbt_hxia_drop
            ),
            mixed_mode=MixedModeConfig.from_dict(converted.get("mixed_mode", {})),
            boost_mode=BoostModeConfig.from_dict(converted.get("boost_mode", {})),
            sample_tank_time=_seconds(converted, "sample_tank_time", default.sample_tank_time.total_seconds()),
        )


@dataclass(frozen=True)
class DisableBelow:
    """Suppress an overrun slot while the tank is this cold."""

    tken: float
    tkbt: float


@dataclass(frozen=True)
class OverrunSlot:
    """Forced heating of one sensor to a band during a daily time window."""

    slot: TimeSlot
    sensor: Sensor
    min: float
    max: float
    disable_below: Optional[DisableBelow] = None

    def __post_init__(self):
        if self.max <= self.min:
            raise ConfigurationError(
                f"Overrun slot max temp ({self.max}) must be greater than min temp ({self.min}): {self.slot}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "OverrunSlot":
        converted = _normalise(data)
        if "slot" not in converted or "temps" not in converted:
            raise ConfigurationError(f"Overrun slot needs 'slot' and 'temps': {data}")
        temps = _normalise(converted["temps"])
        disable_below = None
        if converted.get("disable_below") is not None:
            below = _normalise(converted["disable_below"])
            disable_below = DisableBelow(tken=_number(below, "tken"), tkbt=_number(below, "tkbt"))
        if "sensor" not in temps:
            raise ConfigurationError(f"Overrun slot temps missing 'sensor': {data}")
        return cls(
            slot=TimeSlot.from_dict(converted["slot"]),
            sensor=_sensor(temps["sensor"]),
            min=_number(temps, "min"),
            max=_number(temps, "max"),
            disable_below=disable_below,
        )

    def __str__(self) -> str:
        return f"Overrun for {self.sensor}: {self.min:.1f}-{self.max:.1f} during {self.slot}"


@dataclass(frozen=True)
class ImmersionPart:
    """Target temperature for the immersion heater during a daily time window.

    The target ramps linearly from `start_temp` to `end_temp` across the window.
    """

    slot: TimeSlot
    sensor: Sensor
    start_temp: float
    end_temp: float

    @classmethod
    def from_dict(cls, data: dict) -> "ImmersionPart":
        """Create from `{start, end, temp, sensor}`.

        `start`/`end` may also be `{time, temp}` mappings to describe a ramp.
        """
        converted = _normalise(data)
        if "sensor" not in converted or "start" not in converted or "end" not in converted:
            raise ConfigurationError(f"Immersion heater part needs start, end and sensor: {data}")

        start, end = converted["start"], converted["end"]
        if isinstance(start, dict) or isinstance(end, dict):
            if not (isinstance(start, dict) and isinstance(end, dict)):
                raise ConfigurationError(f"Immersion heater part mixes ramp and plain times: {data}")
            start, end = _normalise(start), _normalise(end)
            slot_data = {"type": LOCAL, "start": start.get("time"), "end": end.get("time")}
            start_temp, end_temp = _number(start, "temp"), _number(end, "temp")
        else:
            slot_data = {"type": converted.get("type", LOCAL), "start": start, "end": end}
            start_temp = end_temp = _number(converted, "temp")

        return cls(
            slot=TimeSlot.from_dict(slot_data),
            sensor=_sensor(converted["sensor"]),
            start_temp=start_temp,
            end_temp=end_temp,
        )


@dataclass(frozen=True)
class HubSettings:
    """Hub entities providing the heat-demand signal and outside temperature."""

    heat_demand_entity: str = "binary_sensor.heating_demand"
    outside_temp_entity: Optional[str] = None
    demand_hold_minutes: float = 60.0

    @classmethod
    def from_dict(cls, data: dict) -> "HubSettings":
        converted = _normalise(data)
        default = cls()
        return cls(
            heat_demand_entity=converted.get("heat_demand_entity", default.heat_demand_entity),
            outside_temp_entity=converted.get("outside_temp_entity", default.outside_temp_entity),
            demand_hold_minutes=_number(converted, "demand_hold_minutes", default.demand_hold_minutes),
        )


RELAY_CHANNELS = ("heat_pump", "circulation_pump", "overrun", "immersion", "heat_pump_mode")


@dataclass(frozen=True)
class BrainConfig:
    """Complete engine configuration."""

    hp_enable_time: timedelta = timedelta(seconds=70)
    default_working_range: WorkingRange = WorkingRange(42.0, 45.0)
    working_temp_model: WorkingTempModelConfig = WorkingTempModelConfig()
    hp_circulation: HpCirculationConfig = HpCirculationConfig()
    overrun_slots: tuple[OverrunSlot, ...] = ()
    immersion_parts: tuple[ImmersionPart, ...] = ()
    no_heating: tuple[TimeSlot, ...] = ()
    local_timezone: Optional[str] = None
    sensors: Mapping[Sensor, str] = field(default_factory=lambda: MappingProxyType({}))  # Sensor -> hub entity
    relays: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))  # channel -> hub switch entity
    hub: HubSettings = HubSettings()
    tick_interval_seconds: float = 30.0
    include_config_directories: tuple[str, ...] = ()

    @property
    def local_tz(self) -> Optional[tzinfo]:
        """Installation time zone (None = system local time)."""
        if not self.local_timezone:
            return None
        return ZoneInfo(self.local_timezone)

    @classmethod
    def from_dict(cls, data: dict) -> "BrainConfig":
        """Create from a parsed configuration mapping.

        Raises:
            ConfigurationError: If any setting is invalid
        """
        converted = _normalise(data)
        default = cls()

        known = {
            "hp_enable_time", "default_working_range", "working_temp_model", "hp_circulation",
            "overrun_during", "immersion_heater_model", "no_heating", "local_timezone",
            "sensors", "relays", "hub", "tick_interval_seconds", "include_config_directories",
        }
        unknown = set(converted) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        working_range = default.default_working_range
        if "default_working_range" in converted:
            range_data = _normalise(converted["default_working_range"])
            working_range = WorkingRange(_number(range_data, "min"), _number(range_data, "max"))
            if working_range.max <= working_range.min:
                raise ConfigurationError(
                    f"default_working_range max ({working_range.max}) must be greater than min ({working_range.min})"
                )

        local_timezone = converted.get("local_timezone")
        if local_timezone:
            try:
                ZoneInfo(local_timezone)
            except (ZoneInfoNotFoundError, ValueError):
                raise ConfigurationError(f"Unknown time zone: {local_timezone!r}") from None

        relays = dict(converted.get("relays") or {})
        bad_channels = set(relays) - set(RELAY_CHANNELS)
        if bad_channels:
            raise ConfigurationError(f"Unknown relay channels: {sorted(bad_channels)}")

        tick_interval = _number(converted, "tick_interval_seconds", default.tick_interval_seconds)
        if tick_interval <= 0:
            raise ConfigurationError("tick_interval_seconds must be positive")

        config = cls(
            hp_enable_time=_seconds(converted, "hp_enable_time", default.hp_enable_time.total_seconds()),
            default_working_range=working_range,
            working_temp_model=WorkingTempModelConfig.from_dict(converted.get("working_temp_model", {})),
            hp_circulation=HpCirculationConfig.from_dict(converted.get("hp_circulation", {})),
            local_timezone=local_timezone,
            sensors=MappingProxyType({_sensor(k): v for k, v in (converted.get("sensors") or {}).items()}),
            relays=MappingProxyType(relays),
            hub=HubSettings.from_dict(converted.get("hub", {})),
            tick_interval_seconds=tick_interval,
            include_config_directories=tuple(converted.get("include_config_directories") or ()),
        )
        return config.combine(converted)

    def combine(self, data: dict) -> "BrainConfig":
        """Return a copy with the additive sections of `data` appended."""
        converted = _normalise(data)
        overrun = _normalise(converted.get("overrun_during"))
        immersion = _normalise(converted.get("immersion_heater_model"))

        return BrainConfig(
            hp_enable_time=self.hp_enable_time,
            default_working_range=self.default_working_range,
            working_temp_model=self.working_temp_model,
            hp_circulation=self.hp_circulation,
            overrun_slots=self.overrun_slots + tuple(
                OverrunSlot.from_dict(s) for s in overrun.get("slots") or ()
            ),
            immersion_parts=self.immersion_parts + tuple(
                ImmersionPart.from_dict(p) for p in immersion.get("parts") or ()
            ),
            no_heating=self.no_heating + tuple(
                TimeSlot.from_dict(s) for s in converted.get("no_heating") or ()
            ),
            local_timezone=self.local_timezone,
            sensors=self.sensors,
            relays=self.relays,
            hub=self.hub,
            tick_interval_seconds=self.tick_interval_seconds,
            include_config_directories=self.include_config_directories,
        )


ADDITIVE_KEYS = {"overrun_during", "immersion_heater_model", "no_heating", "include_config_directories"}


def _read_yaml(path: str) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e
    return data or {}


def load_config(path: str) -> BrainConfig:
    """Load the main configuration file plus any included additive files.

    Included directories are resolved relative to the main file and searched
    (non-recursively) for `*.yaml` / `*.yml` files. Included files may only
    contain additive sections and may include further directories; each
    directory is read once.

    Raises:
        ConfigurationError: If any file cannot be read or is invalid
    """
    base_dir = os.path.dirname(os.path.abspath(path))
    config = BrainConfig.from_dict(_read_yaml(path))
    logger.debug(f"Base config loaded from {path}")

    to_parse = [os.path.join(base_dir, d) for d in config.include_config_directories]
    parsed: set[str] = set()
    extra_files = 0

    while to_parse:
        directory = os.path.normpath(to_parse.pop(0))
        if directory in parsed:
            continue
        parsed.add(directory)

        if not os.path.isdir(directory):
            raise ConfigurationError(f"Included config directory does not exist: {directory}")

        for name in sorted(os.listdir(directory)):
            if not name.endswith((".yaml", ".yml")):
                continue
            file_path = os.path.join(directory, name)
            additive = _normalise(_read_yaml(file_path))
            unexpected = set(additive) - ADDITIVE_KEYS
            if unexpected:
                raise ConfigurationError(
                    f"Included config file {file_path} contains non-additive keys: {sorted(unexpected)}"
                )
            config = config.combine(additive)
            extra_files += 1
            logger.debug(f"Read additional config file {file_path}")
            for nested in additive.get("include_config_directories") or ():
                to_parse.append(os.path.join(directory, nested))

    logger.info(f"Found {extra_files} extra config files")
    return config
