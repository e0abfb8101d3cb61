"""Web routes for the Cruso scheduling API.

Contains two routers:
- health_router: liveness/readiness probe
- api_router: inbound email webhook and availability endpoints

Domain errors raised by the handlers are mapped to HTTP status codes by the
exception handlers registered in cruso.web.app.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from cruso.calendar.engine import AvailabilityEngine
from cruso.calendar.intervals import TimeRange
from cruso.core.logging import get_logger
from cruso.db.store import DatabaseStore
from cruso.exchange.dispatcher import EngagementDispatcher
from cruso.exchange.models import Direction, InboundMessage
from cruso.web.dependencies import get_dispatcher, get_engine, get_store

logger = get_logger(__name__)

health_router = APIRouter()
api_router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Pydantic models for API input validation
# ---------------------------------------------------------------------------


class RangeModel(BaseModel):
    """A half-open ``[start, end)`` range; both ends need a UTC offset."""

    start: datetime
    end: datetime

    def to_range(self) -> TimeRange:
        return TimeRange(self.start, self.end)


class InboundMessageRequest(BaseModel):
    """Request body for the inbound email webhook."""

    message_id: str
    exchange_id: str | None = None
    previous_message_id: str | None = None
    sender: str
    recipients: list[str] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    received_at: datetime
    direction: str = Direction.INBOUND.value


class AvailabilityCheckRequest(RangeModel):
    """Request body for a free/busy check."""

    min_duration_minutes: float | None = None
    timezone: str | None = None
    include_events: bool = False


class SuggestSlotsRequest(RangeModel):
    """Request body for meeting slot suggestions."""

    duration_minutes: float | None = None
    timezone: str | None = None
    exclude: list[RangeModel] = Field(default_factory=list)


class CreateAvailabilityRequest(RangeModel):
    """Request body for freeing up a range."""

    search_horizon_hours: float | None = Field(default=None, ge=0)
    create_block: bool = True
    block_summary: str | None = None
    calendar_id: str | None = None
    recurring_scope: str = "instance"


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@health_router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Health check endpoint for Docker and monitoring."""
    state = request.app.state
    ready = all(
        getattr(state, name, None) is not None for name in ("config", "store", "engine")
    )
    return {
        "status": "healthy" if ready else "degraded",
        "config_loaded": getattr(state, "config", None) is not None,
        "version": "0.1.0",
    }


# ---------------------------------------------------------------------------
# Inbound email
# ---------------------------------------------------------------------------


async def _resolve_exchange_id(body: InboundMessageRequest, store: DatabaseStore) -> str:
    """Exchange id of the message: explicit, inherited from the replied-to message, or its own."""
    if body.exchange_id:
        return body.exchange_id
    if body.previous_message_id:
        previous = await store.get_message(body.previous_message_id)
        if previous is not None:
            return previous.message.exchange_id
        return body.previous_message_id
    return body.message_id


@api_router.post("/exchange/inbound")
async def receive_inbound_message(
    body: InboundMessageRequest,
    store: DatabaseStore = Depends(get_store),
    dispatcher: EngagementDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    """Classify an inbound email and run onboarding, engagement or offboarding."""
    message = InboundMessage(
        message_id=body.message_id,
        exchange_id=await _resolve_exchange_id(body, store),
        sender=body.sender,
        recipients=body.recipients,
        subject=body.subject,
        body=body.body,
        received_at=body.received_at,
        previous_message_id=body.previous_message_id,
        direction=body.direction,
    )
    outcome = await dispatcher.dispatch(message)
    return {
        "message_id": message.message_id,
        "exchange_id": message.exchange_id,
        **outcome.to_dict(),
    }


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


@api_router.post("/availability/check")
async def check_availability(
    body: AvailabilityCheckRequest,
    engine: AvailabilityEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Busy runs and free slots inside the requested range."""
    window = engine.window(body.start, body.end, body.min_duration_minutes, body.timezone)
    report = await engine.check_availability(window, include_events=body.include_events)
    return report.to_dict()


@api_router.post("/availability/slots")
async def suggest_slots(
    body: SuggestSlotsRequest,
    engine: AvailabilityEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Grid-aligned meeting suggestions of the requested length."""
    window = engine.window(body.start, body.end, body.duration_minutes, body.timezone)
    exclude = [item.to_range() for item in body.exclude]
    slots = await engine.suggest_slots(window, body.duration_minutes, exclude=exclude)
    return {
        "timezone": window.timezone,
        "slots": [slot.to_dict() for slot in slots],
    }


@api_router.post("/availability/create")
async def create_availability(
    body: CreateAvailabilityRequest,
    engine: AvailabilityEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Move the events that conflict with the range and block it."""
    horizon = (
        timedelta(hours=body.search_horizon_hours)
        if body.search_horizon_hours is not None
        else None
    )
    result = await engine.create_availability(
        body.to_range(),
        horizon,
        create_block=body.create_block,
        block_summary=body.block_summary,
        calendar_id=body.calendar_id,
        recurring_scope=body.recurring_scope,
    )
    return result.to_dict()
