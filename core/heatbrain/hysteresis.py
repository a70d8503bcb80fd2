"""Hysteresis bands for start/stop threshold pairs."""

from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigurationError

RISING = "rising"
FALLING = "falling"


@dataclass(frozen=True)
class HysteresisBand:
    """
    A start/stop threshold pair around a latched boolean.

    A rising band engages once the value reaches `start` and stays engaged
    until the value drops to `stop` or below:

        engaged = value >= start            (while not engaged)
        engaged = value > stop              (while engaged)

    A falling band mirrors this: it engages once the value drops to `start`
    and releases once the value reaches `stop`.

    Values between the two thresholds keep whatever the latch already holds,
    which stops a noisy input from chattering a relay around one boundary.
    A missing value never engages and always releases.

    Example with start=0.7, stop=0.3 (rising):
    - Not engaged at 0.5 stays off, reaching 0.7 turns on
    - Engaged at 0.5 stays on, dropping to 0.3 turns off
    """

    start: float
    stop: float
    direction: str = RISING

    def __post_init__(self):
        if self.direction not in (RISING, FALLING):
            raise ConfigurationError(f"Unknown hysteresis direction: {self.direction!r}")
        if self.direction == RISING and self.start < self.stop:
            raise ConfigurationError(
                f"Rising hysteresis start ({self.start}) must not be below stop ({self.stop})"
            )
        if self.direction == FALLING and self.start > self.stop:
            raise ConfigurationError(
                f"Falling hysteresis start ({self.start}) must not be above stop ({self.stop})"
            )

    def should_start(self, value: Optional[float]) -> bool:
        if value is None:
            return False
        if self.direction == RISING:
            return value >= self.start
        return value <= self.start

    def should_stop(self, value: Optional[float]) -> bool:
        if value is None:
            return True
        if self.direction == RISING:
            return value <= self.stop
        return value >= self.stop

    def update(self, engaged: bool, value: Optional[float]) -> bool:
        """Next latch value given the current latch and a new reading."""
        if engaged:
            return not self.should_stop(value)
        return self.should_start(value)


def all_hold(bands: list[tuple[HysteresisBand, Optional[float]]], engaged: bool) -> bool:
    """Composite latch: engage when every band starts, release when any band stops."""
    if engaged:
        return not any(band.should_stop(value) for band, value in bands)
    return all(band.should_start(value) for band, value in bands)
