"""FastAPI application for the Cruso scheduling API.

Creates the FastAPI app with:
- Lifespan context manager for dependency initialization
- A correlation-id middleware tagging every log line of a request
- Exception handlers mapping domain errors to HTTP status codes
- The API router

Usage:
    from cruso.web.app import create_app

    app = create_app()
    # Run with: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cruso.core.errors import InvalidInput, ProviderPermanent, ProviderTransient
from cruso.core.logging import (
    configure_logging,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize dependencies on startup.

    On startup:
    1. Load config and configure logging
    2. Initialize the database
    3. Build the calendar provider and availability engine
    4. Build the exchange handlers and engagement dispatcher

    A config that fails to load leaves every dependency as None so the
    health endpoint can still report the problem.
    """
    from cruso.calendar.client import GoogleCalendarClient, env_token_provider
    from cruso.calendar.engine import AvailabilityEngine
    from cruso.calendar.provider import GoogleCalendarProvider
    from cruso.config import get_config
    from cruso.core.errors import ConfigLoadError, ConfigValidationError
    from cruso.db.store import DatabaseStore
    from cruso.exchange.dispatcher import EngagementDispatcher
    from cruso.exchange.facts import ExchangeFacts
    from cruso.exchange.handlers import ExchangeHandlers, OutboxEmailSender

    # 1. Load config
    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        logger.error("config_load_failed", error=str(e))
        app.state.config = None
        app.state.store = None
        app.state.engine = None
        app.state.dispatcher = None
        yield
        return

    configure_logging(config.logging.level, json_output=config.logging.json_output)
    app.state.config = config

    # 2. Initialize database
    db_path = Path(config.database.path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = DatabaseStore(db_path)
    await store.initialize()
    app.state.store = store

    # 3. Calendar provider and availability engine
    provider_settings = config.provider
    client = GoogleCalendarClient(
        token_provider=env_token_provider(provider_settings.access_token_env),
        base_url=provider_settings.base_url,
        max_retries=provider_settings.max_retries,
        timeout=provider_settings.timeout_seconds,
        rate=provider_settings.rate,
        capacity=provider_settings.capacity,
    )
    provider = GoogleCalendarProvider(client, provider_settings.calendar_ids, config.timezone)
    app.state.engine = AvailabilityEngine(provider, config)

    # 4. Exchange handling
    exchange = config.exchange
    handlers = ExchangeHandlers(
        store=store,
        sender=OutboxEmailSender(store, exchange.assistant_address),
        settings=exchange,
    )
    facts = ExchangeFacts(
        store,
        max_messages=exchange.max_messages,
        max_age=timedelta(days=exchange.max_age_days),
    )
    app.state.dispatcher = EngagementDispatcher(store, handlers, facts)

    logger.info(
        "app_started",
        calendars=len(provider_settings.calendar_ids),
        database=str(db_path),
    )

    yield

    client.session.close()
    logger.info("app_stopped")


async def _correlation_middleware(request: Request, call_next):
    """Tag the request's log lines with the caller's correlation id, or a new one."""
    correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex[:12]
    token = set_correlation_id(correlation_id)
    try:
        response = await call_next(request)
    finally:
        reset_correlation_id(token)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


async def _invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_input", "detail": str(exc), "field": exc.field},
    )


async def _provider_transient_handler(request: Request, exc: ProviderTransient) -> JSONResponse:
    logger.warning("provider_transient", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=503,
        content={"error": "provider_unavailable", "detail": str(exc)},
        headers={"Retry-After": "30"},
    )


async def _provider_permanent_handler(request: Request, exc: ProviderPermanent) -> JSONResponse:
    logger.error(
        "provider_permanent",
        path=request.url.path,
        status_code=exc.status_code,
        error=str(exc),
    )
    return JSONResponse(
        status_code=502,
        content={
            "error": "provider_rejected",
            "detail": str(exc),
            "provider_status": exc.status_code,
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    from cruso.web.routes import api_router, health_router

    app = FastAPI(
        title="Cruso",
        description="Email-driven calendar assistant scheduling API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(_correlation_middleware)
    app.add_exception_handler(InvalidInput, _invalid_input_handler)
    app.add_exception_handler(ProviderTransient, _provider_transient_handler)
    app.add_exception_handler(ProviderPermanent, _provider_permanent_handler)

    app.include_router(health_router)
    app.include_router(api_router)

    return app
