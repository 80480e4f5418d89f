"""
FastAPI application for assetflow operations.

Serves the admin reliability surface. Authentication is the host's job: a
middleware in front of this app attaches an Actor to ``request.state.actor``.

Usage:
    uvicorn app.main:app --reload --port 8081
"""

from fastapi import FastAPI

from app.operations.routes import router as operations_router
from assetflow_core.config import settings
from assetflow_core.infrastructure.telemetry import TelemetryService, setup_telemetry
from assetflow_core.logging import setup_logging

# Initialize logging
setup_logging()

# Initialize Telemetry (Tracing/Metrics)
setup_telemetry()

app = FastAPI(
    title="AssetFlow Operations",
    description="Incident triage, recovery and reliability metrics for the asset pipeline",
    version="1.0.0",
)

# Instrument FastAPI app
TelemetryService().instrument_app(app)

app.include_router(operations_router)


@app.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
        dict: Status and service information.
    """
    return {"status": "ok", "service": settings.SERVICE_NAME, "version": "1.0.0"}
