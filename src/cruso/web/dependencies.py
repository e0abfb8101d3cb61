"""FastAPI dependency injection helpers.

Extracts shared dependencies from app.state for use in route handlers.
All dependencies are initialized during the FastAPI lifespan.

Usage:
    from cruso.web.dependencies import get_engine

    @router.post("/availability/check")
    async def check(engine: AvailabilityEngine = Depends(get_engine)):
        report = await engine.check_availability(window)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from cruso.calendar.engine import AvailabilityEngine
    from cruso.config_schema import AppConfig
    from cruso.db.store import DatabaseStore
    from cruso.exchange.dispatcher import EngagementDispatcher


def _require(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail=f"Service not ready: {name} is unavailable. Check the configuration.",
        )
    return value


def get_config(request: Request) -> AppConfig:
    """Get the current AppConfig from app state."""
    return _require(request, "config")


def get_store(request: Request) -> DatabaseStore:
    """Get the shared DatabaseStore from app state."""
    return _require(request, "store")


def get_engine(request: Request) -> AvailabilityEngine:
    """Get the AvailabilityEngine from app state."""
    return _require(request, "engine")


def get_dispatcher(request: Request) -> EngagementDispatcher:
    """Get the EngagementDispatcher from app state."""
    return _require(request, "dispatcher")
