"""HeatBrain heat pump and immersion heater decision engine."""

# Define public API
__all__ = [
    "BrainConfig",
    "load_config",
    "HeatingState",
    "EngineState",
    "TickInputs",
    "HeatingCommand",
    "HeatingStateMachine",
    "HubClient",
]

# Import settings
from .settings import BrainConfig, load_config

# Import models
from .models import EngineState, HeatingCommand, HeatingState, TickInputs

# Import engine
from .state_machine import HeatingStateMachine

# Import hub client
from .hub_client import HubClient
