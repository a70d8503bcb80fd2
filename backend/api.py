"""
HeatBrain API Endpoints
"""

import os
import sys

from dotenv import load_dotenv
from fastapi import APIRouter, HTTPException, Query
from loguru import logger
from pydantic import BaseModel

# Add core to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.heatbrain.exceptions import ConfigurationError, InvalidInputError
from core.heatbrain.history import history_tracker
from core.heatbrain.hub_client import HubClient
from core.heatbrain.settings import BrainConfig, load_config
from core.heatbrain.working_temp import WorkingTemperatureModel

load_dotenv()

router = APIRouter()

VERSION = "0.1.0"

# Initialize hub client
HUB_URL = os.environ.get("HUB_URL", "http://supervisor/core")
HUB_TOKEN = os.environ.get("HUB_TOKEN", "")
CONFIG_PATH = os.environ.get(
    "HEATBRAIN_CONFIG",
    os.path.join(os.path.dirname(__file__), "..", "config.yaml"),
)

hub_client = HubClient(HUB_URL, HUB_TOKEN) if HUB_TOKEN else None

# Control service (set by app.py during startup)
control_service = None


def load_brain_config() -> BrainConfig:
    """Load engine configuration, falling back to defaults if there is no file.

    Raises:
        ConfigurationError: If the file exists but is invalid
    """
    if os.path.exists(CONFIG_PATH):
        config = load_config(CONFIG_PATH)
        logger.info(f"Loaded configuration from {CONFIG_PATH}")
        return config

    logger.warning(f"No configuration at {CONFIG_PATH}, using defaults")
    return BrainConfig()


CONFIG = load_brain_config()


def current_config() -> BrainConfig:
    """Configuration in force (the service's after a reload)."""
    if control_service is not None:
        return control_service.config
    return CONFIG


class WorkingRangeResponse(BaseModel):
    """Working range for an outside temperature."""
    outside_temp: float
    min: float
    max: float
    clamped: bool


class ReloadResponse(BaseModel):
    """Summary of a reloaded configuration."""
    status: str
    overrun_slots: int
    immersion_parts: int
    no_heating_windows: int


@router.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": "HeatBrain",
        "version": VERSION,
        "hub_connected": hub_client is not None,
        "engine_running": bool(control_service and control_service.running),
    }


@router.get("/api/state")
async def get_state():
    """Get the current engine state and the last command."""
    if control_service is None:
        raise HTTPException(status_code=503, detail="Control service not running")
    return control_service.status()


@router.get("/api/history")
async def get_history(hours: float = Query(24, gt=0)):
    """Get decision history.

    Args:
        hours: How many hours of history to retrieve (default: 24)
    """
    ticks = history_tracker.get_history(hours=hours)
    return {
        "hours": hours,
        "count": len(ticks),
        "ticks": ticks,
        "relay_events": history_tracker.get_relay_events(hours=hours),
    }


@router.get("/api/working-range", response_model=WorkingRangeResponse)
async def get_working_range(outside_temp: float):
    """Compute the tank working range for an outside temperature."""
    model = WorkingTemperatureModel(current_config().working_temp_model, on_warning=logger.warning)
    try:
        working_range = model.working_range(outside_temp)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return WorkingRangeResponse(
        outside_temp=outside_temp,
        min=working_range.min,
        max=working_range.max,
        clamped=working_range.clamped,
    )


@router.post("/api/config/reload", response_model=ReloadResponse)
async def reload_config():
    """Re-read the configuration file and swap it in between ticks."""
    if control_service is None:
        raise HTTPException(status_code=503, detail="Control service not running")

    try:
        config = await control_service.reload()
    except ConfigurationError as e:
        logger.error(f"Configuration reload failed: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    return ReloadResponse(
        status="reloaded",
        overrun_slots=len(config.overrun_slots),
        immersion_parts=len(config.immersion_parts),
        no_heating_windows=len(config.no_heating),
    )
