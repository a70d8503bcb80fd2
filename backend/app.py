"""
HeatBrain Backend Application

FastAPI application hosting the heating control loop.
"""

import os
import sys
from contextlib import asynccontextmanager

import log_config  # noqa: F401
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

# Add core to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Import API router
import api
from api import CONFIG, CONFIG_PATH, VERSION, hub_client
from api import router as api_router

from core.heatbrain.control_service import ControlService


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan manager for startup/shutdown."""
    # Startup
    logger.info("HeatBrain starting")

    routes = [
        f"{getattr(route, 'path', '?')} - {getattr(route, 'methods', ['MOUNT'])}"
        for route in app.routes
    ]
    logger.info(f"Registered routes: {routes}")

    service = None
    if hub_client and CONFIG.sensors:
        service = ControlService(hub_client, CONFIG, config_path=CONFIG_PATH)
        await service.start()
        api.control_service = service
    else:
        logger.warning("⚠️ Control loop disabled (no hub token or no sensors configured)")

    yield

    # Shutdown
    logger.info("HeatBrain shutting down")
    if service:
        await service.stop()
        api.control_service = None


# Create FastAPI application
app = FastAPI(
    title="HeatBrain API",
    description="Heat pump and immersion heater decision engine",
    version=VERSION,
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions gracefully."""
    import traceback

    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    logger.error(f"Unhandled exception: {exc}")
    logger.error(f"Request path: {request.url.path}")
    logger.error(f"Stack trace:\n{tb_str}")

    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
            "message": "Internal server error",
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


# For development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
