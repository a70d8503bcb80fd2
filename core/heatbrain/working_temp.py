"""
Working Temperature Model

Maps the outside (or forecast) temperature to the tank working range using
two independent logistic curves, one for each bound:

    T = offset + multiplier / (1 + e^(-sharpness * (outside - turning_point)))

With a positive multiplier and sharpness the curve rises monotonically from
`offset` towards `offset + multiplier`, passing the midpoint at
`turning_point`. A negative sharpness gives the usual heating-curve shape
where a colder day asks for a hotter tank.
"""

import logging
import math
import warnings
from datetime import datetime, timedelta
from numbers import Real
from typing import Callable, Optional

import numpy as np

from .exceptions import ConfigurationWarning, InvalidInputError
from .models import WorkingRange
from .settings import CurveParams, WorkingTempModelConfig

logger = logging.getLogger(__name__)

# How long a previously computed range is reused when the forecast is missing
FALLBACK_RANGE_MAX_AGE = timedelta(minutes=30)


def _warn(message: str) -> None:
    warnings.warn(message, ConfigurationWarning, stacklevel=3)


class WorkingTemperatureModel:
    """Converts an outside temperature into a tank working range."""

    def __init__(
        self,
        config: WorkingTempModelConfig,
        on_warning: Optional[Callable[[str], None]] = None
    ):
        """Initialize working temperature model.

        Args:
            config: Curve parameters for the min and max bound
            on_warning: Receives configuration warnings (defaults to `warnings.warn`)
        """
        self.config = config
        self.on_warning = on_warning or _warn

    @staticmethod
    def compute(params: CurveParams, outside_temp: float) -> float:
        """Evaluate one logistic curve.

        Raises:
            InvalidInputError: If `outside_temp` is not a finite number
        """
        if isinstance(outside_temp, bool) or not isinstance(outside_temp, Real):
            raise InvalidInputError(f"Outside temperature must be a number, got {outside_temp!r}")
        if not math.isfinite(outside_temp):
            raise InvalidInputError(f"Outside temperature must be finite, got {outside_temp!r}")

        exponent = -params.sharpness * (float(outside_temp) - params.turning_point)
        # Saturate rather than overflow for extreme inputs
        denominator = 1.0 + np.exp(np.clip(exponent, -700.0, 700.0))
        return float(params.offset + params.multiplier / denominator)

    def working_range(self, outside_temp: float) -> WorkingRange:
        """Compute the working range for an outside temperature.

        A min above the max is a misconfiguration: the max is clamped to the
        min and a warning is reported, but the range is still returned.
        """
        low = self.compute(self.config.min, outside_temp)
        high = self.compute(self.config.max, outside_temp)

        if low > high:
            message = (
                f"Working temperature curves cross at outside temp {outside_temp:.1f}°C: "
                f"min {low:.2f} > max {high:.2f}, clamping max to min"
            )
            logger.warning(message)
            self.on_warning(message)
            return WorkingRange(low, low, clamped=True)

        return WorkingRange(low, high)


def resolve_working_range(
    model: WorkingTemperatureModel,
    outside_temp: Optional[float],
    default: WorkingRange,
    previous: Optional[WorkingRange],
    previous_at: Optional[datetime],
    now: datetime
) -> tuple[WorkingRange, bool]:
    """Working range for this tick, falling back when the forecast is unusable.

    Returns:
        (range, fresh) where `fresh` is True if the range was computed now
    """
    if outside_temp is not None:
        try:
            return model.working_range(outside_temp), True
        except InvalidInputError as e:
            logger.warning(f"Ignoring outside temperature: {e}")

    if previous is not None and previous_at is not None and now - previous_at <= FALLBACK_RANGE_MAX_AGE:
        logger.debug(f"No outside temperature, reusing working range {previous}")
        return previous, False

    logger.warning(f"No outside temperature, using default working range {default}")
    return default, False
