"""Test configuration loading."""

from datetime import time, timedelta

import pytest

from core.heatbrain.exceptions import ConfigurationError
from core.heatbrain.models import Sensor, WorkingRange
from core.heatbrain.settings import (
    BoostModeConfig,
    BrainConfig,
    ImmersionPart,
    MixedModeConfig,
    OverrunSlot,
    load_config,
)
from core.heatbrain.timeslot import UTC

MAIN_CONFIG = """
hp_enable_time: 90
default_working_range:
  min: 40.0
  max: 44.0
overrun_during:
  slots:
    - slot: {type: Local, start: "00:30:00", end: "04:30:00"}
      temps: {sensor: TKTP, min: 36.0, max: 43.6}
no_heating:
  - {type: Local, start: 23:00:00, end: "01:00:00"}
include_config_directories:
  - extra
"""

EXTRA_CONFIG = """
overrun_during:
  slots:
    - slot: {type: Utc, start: "13:00:00", end: "15:00:00"}
      temps: {sensor: TKBT, min: 30.0, max: 40.0}
immersion_heater_model:
  parts:
    - {start: "02:00:00", end: "05:00:00", temp: 40.0, sensor: TKTP}
"""


class TestBrainConfig:
    """Test cases for building the configuration."""

    def test_defaults(self) -> None:
        config = BrainConfig()
        assert config.hp_enable_time == timedelta(seconds=70)
        assert config.default_working_range == WorkingRange(42.0, 45.0)
        assert config.hp_circulation.initial_hp_sleep == timedelta(minutes=5)
        assert config.hp_circulation.mixed_mode.start_heat_pct == 0.70

    def test_from_dict(self, brain_config) -> None:
        assert len(brain_config.overrun_slots) == 1
        slot = brain_config.overrun_slots[0]
        assert slot.sensor == Sensor.TKTP
        assert slot.slot.start == time(0, 30)
        assert (slot.min, slot.max) == (36.0, 43.6)
        assert len(brain_config.immersion_parts) == 1
        assert len(brain_config.no_heating) == 1

    def test_camel_case_keys(self) -> None:
        config = BrainConfig.from_dict({
            "hpEnableTime": 90,
            "hpCirculation": {"hpPumpOnTime": 60, "mixedMode": {"startHeatPct": 0.8, "stopHeatPct": 0.2}},
        })
        assert config.hp_enable_time == timedelta(seconds=90)
        assert config.hp_circulation.hp_pump_on_time == timedelta(seconds=60)
        assert config.hp_circulation.mixed_mode.start_heat_pct == 0.8

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            BrainConfig.from_dict({"hp_enable_tme": 90})

    def test_unknown_sensor_rejected(self, config_data) -> None:
        config_data["overrun_during"]["slots"][0]["temps"]["sensor"] = "TKXX"
        with pytest.raises(ConfigurationError):
            BrainConfig.from_dict(config_data)

    def test_unknown_sensor_mapping_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            BrainConfig.from_dict({"sensors": {"OUTSIDE": "sensor.outside"}})

    def test_bad_working_range_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            BrainConfig.from_dict({"default_working_range": {"min": 45.0, "max": 42.0}})

    def test_bad_timezone_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            BrainConfig.from_dict({"local_timezone": "Mars/Olympus_Mons"})

    def test_unknown_relay_channel_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            BrainConfig.from_dict({"relays": {"sauna": "switch.sauna"}})

    def test_non_numeric_setting_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            BrainConfig.from_dict({"hp_circulation": {"forecast_diff_offset": "lots"}})

    @pytest.mark.parametrize("data", [
        {1: 90},
        {"hp_circulation": {60: "hp_pump_on_time"}},
        {"overrun_during": {"slots": [{"slot": {"start": "00:30:00", "end": "04:30:00"}, "temps": {None: 1}}]}},
    ])
    def test_non_string_keys_rejected(self, data) -> None:
        with pytest.raises(ConfigurationError, match="must be strings"):
            BrainConfig.from_dict(data)

    def test_entity_mappings_read_only(self) -> None:
        config = BrainConfig.from_dict({"sensors": {"TKTP": "sensor.tktp"}, "relays": {"heat_pump": "switch.hp"}})
        with pytest.raises(TypeError):
            config.sensors[Sensor.TKBT] = "sensor.tkbt"
        with pytest.raises(TypeError):
            config.relays["immersion"] = "switch.immersion"
        with pytest.raises(TypeError):
            BrainConfig().relays["heat_pump"] = "switch.hp"
        assert dict(config.relays) == {"heat_pump": "switch.hp"}


class TestSectionValidation:
    """Test cases for validation of individual sections."""

    def test_mixed_band_order(self) -> None:
        with pytest.raises(ConfigurationError):
            MixedModeConfig(start_heat_pct=0.2, stop_heat_pct=0.5)

    def test_boost_band_order(self) -> None:
        with pytest.raises(ConfigurationError):
            BoostModeConfig(start_heat_pct=0.4, stop_heat_pct=0.3)
        with pytest.raises(ConfigurationError):
            BoostModeConfig(start_tkfl_hpfl_diff=1.0, stop_tkfl_hpfl_diff=3.0)

    def test_overrun_min_not_below_max(self) -> None:
        with pytest.raises(ConfigurationError):
            OverrunSlot.from_dict({
                "slot": {"start": "00:30:00", "end": "04:30:00"},
                "temps": {"sensor": "TKTP", "min": 45.0, "max": 40.0},
            })

    def test_overrun_disable_below(self) -> None:
        slot = OverrunSlot.from_dict({
            "slot": {"start": "00:30:00", "end": "04:30:00"},
            "temps": {"sensor": "TKBT", "min": 30.0, "max": 40.0},
            "disable_below": {"tken": 25.0, "tkbt": 20.0},
        })
        assert slot.disable_below.tken == 25.0

    def test_immersion_ramp_part(self) -> None:
        part = ImmersionPart.from_dict({
            "start": {"time": "05:00:00", "temp": 40.0},
            "end": {"time": "06:30:00", "temp": 45.0},
            "sensor": "TKTP",
        })
        assert (part.start_temp, part.end_temp) == (40.0, 45.0)
        assert part.slot.end == time(6, 30)

    def test_immersion_part_needs_sensor(self) -> None:
        with pytest.raises(ConfigurationError):
            ImmersionPart.from_dict({"start": "02:00:00", "end": "05:00:00", "temp": 40.0})


class TestLoadConfig:
    """Test cases for reading YAML files."""

    def test_main_file_with_includes(self, tmp_path) -> None:
        (tmp_path / "config.yaml").write_text(MAIN_CONFIG)
        (tmp_path / "extra").mkdir()
        (tmp_path / "extra" / "cheap.yaml").write_text(EXTRA_CONFIG)
        (tmp_path / "extra" / "notes.txt").write_text("not config")

        config = load_config(str(tmp_path / "config.yaml"))

        assert config.hp_enable_time == timedelta(seconds=90)
        assert config.default_working_range == WorkingRange(40.0, 44.0)
        assert len(config.overrun_slots) == 2
        assert config.overrun_slots[1].slot.zone == UTC
        assert len(config.immersion_parts) == 1
        assert config.no_heating[0].start == time(23, 0)

    def test_nested_includes_read_once(self, tmp_path) -> None:
        (tmp_path / "config.yaml").write_text("include_config_directories: [a]\n")
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "one.yaml").write_text(
            "include_config_directories: [.]\n"
            "no_heating:\n  - {start: '16:00:00', end: '19:00:00'}\n"
        )
        config = load_config(str(tmp_path / "config.yaml"))
        assert len(config.no_heating) == 1

    def test_non_additive_include_rejected(self, tmp_path) -> None:
        (tmp_path / "config.yaml").write_text("include_config_directories: [extra]\n")
        (tmp_path / "extra").mkdir()
        (tmp_path / "extra" / "bad.yaml").write_text("hp_enable_time: 10\n")
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "config.yaml"))

    def test_missing_include_directory(self, tmp_path) -> None:
        (tmp_path / "config.yaml").write_text("include_config_directories: [nowhere]\n")
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "config.yaml"))

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path) -> None:
        (tmp_path / "config.yaml").write_text("no_heating: [\n")
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "config.yaml"))

    def test_repository_example_config(self) -> None:
        """Test the shipped example configuration loads."""
        import os

        path = os.path.join(os.path.dirname(__file__), "..", "..", "config.yaml")
        config = load_config(path)
        assert len(config.sensors) == 12
        assert len(config.overrun_slots) == 3
