"""Vigil Operations API - Main Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from vigil_core.api.routes import ops as ops_routes
from vigil_core.config import get_settings
from vigil_core.observability.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    app.state.settings = settings
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="vigil-core",
    )
    yield
    # Shutdown


app = FastAPI(
    title="Vigil Operations API",
    description="Job ledger inspection for the content moderation pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(ops_routes.router)


@app.get("/healthz")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True, "service": "vigil-core"}


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "name": "Vigil Operations API",
        "version": "0.1.0",
        "status": "running",
    }
