"""Test hysteresis bands."""

import pytest

from core.heatbrain.exceptions import ConfigurationError
from core.heatbrain.hysteresis import FALLING, RISING, HysteresisBand, all_hold


class TestRisingBand:
    """Test cases for a band that engages on high values."""

    def setup_method(self) -> None:
        self.band = HysteresisBand(0.7, 0.3, RISING)

    def test_engages_at_start(self) -> None:
        assert not self.band.update(False, 0.69)
        assert self.band.update(False, 0.7)

    def test_stays_engaged_above_stop(self) -> None:
        """Test values between the thresholds keep the latch."""
        assert self.band.update(True, 0.5)
        assert self.band.update(True, 0.31)
        assert not self.band.update(False, 0.5)

    def test_disengages_at_stop(self) -> None:
        assert not self.band.update(True, 0.3)
        assert not self.band.update(True, 0.1)

    def test_sequence(self) -> None:
        """Test a full engage/hold/release sequence."""
        engaged = False
        trace = []
        for value in [0.2, 0.5, 0.75, 0.6, 0.35, 0.3, 0.5]:
            engaged = self.band.update(engaged, value)
            trace.append(engaged)
        assert trace == [False, False, True, True, True, False, False]

    def test_missing_value(self) -> None:
        """Test a missing value never engages and always releases."""
        assert not self.band.update(False, None)
        assert not self.band.update(True, None)


class TestFallingBand:
    """Test cases for a band that engages on low values."""

    def setup_method(self) -> None:
        self.band = HysteresisBand(0.1, 0.3, FALLING)

    def test_engages_at_start(self) -> None:
        assert not self.band.update(False, 0.2)
        assert self.band.update(False, 0.1)

    def test_releases_at_stop(self) -> None:
        assert self.band.update(True, 0.29)
        assert not self.band.update(True, 0.3)


class TestValidation:
    """Test cases for band validation."""

    def test_rising_start_below_stop_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            HysteresisBand(0.3, 0.7, RISING)

    def test_falling_start_above_stop_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            HysteresisBand(0.5, 0.3, FALLING)

    def test_unknown_direction_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            HysteresisBand(0.5, 0.3, "sideways")

    def test_equal_thresholds_allowed(self) -> None:
        band = HysteresisBand(0.5, 0.5)
        assert band.update(False, 0.5)
        assert not band.update(True, 0.5)


class TestAllHold:
    """Test cases for composite latches."""

    def setup_method(self) -> None:
        self.heat = HysteresisBand(0.1, 0.3, FALLING)
        self.diff = HysteresisBand(3.0, 1.0, RISING)

    def test_engage_requires_every_start(self) -> None:
        assert all_hold([(self.heat, 0.05), (self.diff, 4.0)], engaged=False)
        assert not all_hold([(self.heat, 0.05), (self.diff, 2.0)], engaged=False)
        assert not all_hold([(self.heat, 0.2), (self.diff, 4.0)], engaged=False)

    def test_release_on_any_stop(self) -> None:
        assert all_hold([(self.heat, 0.2), (self.diff, 2.0)], engaged=True)
        assert not all_hold([(self.heat, 0.2), (self.diff, 1.0)], engaged=True)
        assert not all_hold([(self.heat, 0.3), (self.diff, 2.0)], engaged=True)

    def test_missing_value_releases(self) -> None:
        assert not all_hold([(self.heat, 0.2), (self.diff, None)], engaged=True)
