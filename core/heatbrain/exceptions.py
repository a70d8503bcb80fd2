"""
HeatBrain Custom Exceptions

Simple exception hierarchy for error handling.
"""


class HeatBrainError(Exception):
    """Base exception for HeatBrain."""

    pass


class ConfigurationError(HeatBrainError):
    """Configuration is invalid."""

    pass


class ConfigurationWarning(UserWarning):
    """Configuration is questionable but the control loop can continue."""

    pass


class InputError(HeatBrainError):
    """Input for the current tick is missing or invalid."""

    pass


class InvalidInputError(InputError, ValueError):
    """A numeric input is not a finite number."""

    pass


class SensorError(HeatBrainError):
    """Sensor data is unavailable or invalid."""

    pass


class UnknownSensorError(SensorError, KeyError):
    """A sensor name that is not part of the installation was requested."""

    pass


class InvalidStateError(HeatBrainError):
    """Engine state carried between ticks is not a valid primary state."""

    pass


class HubConnectionError(HeatBrainError):
    """Cannot connect to the heating hub."""

    pass
