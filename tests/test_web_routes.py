"""Tests for the HTTP API.

Tests the FastAPI application routes using httpx AsyncClient with a fake
calendar provider and a temporary database.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from conftest import FakeCalendarProvider, at, make_event, span
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from cruso.calendar.engine import AvailabilityEngine
from cruso.calendar.events import SeriesScope
from cruso.calendar.intervals import TimeRange
from cruso.config_schema import AppConfig
from cruso.core.errors import ProviderPermanent, ProviderTransient
from cruso.db.store import DatabaseStore
from cruso.exchange.dispatcher import EngagementDispatcher
from cruso.exchange.facts import ExchangeFacts
from cruso.exchange.handlers import ExchangeHandlers, OutboxEmailSender
from cruso.exchange.models import InboundMessage
from cruso.web.app import create_app

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def store(data_dir: Path) -> DatabaseStore:
    """Return an initialized DatabaseStore."""
    s = DatabaseStore(data_dir / "test_web.db")
    await s.initialize()
    return s


@pytest.fixture
def provider() -> FakeCalendarProvider:
    return FakeCalendarProvider([make_event("planning", span(10, 11))])


@pytest.fixture
def app(
    store: DatabaseStore, sample_config: AppConfig, provider: FakeCalendarProvider
) -> FastAPI:
    """Create a FastAPI app with test dependencies."""
    test_app = create_app()

    handlers = ExchangeHandlers(
        store, OutboxEmailSender(store, "cruso@example.com"), sample_config.exchange
    )
    test_app.state.config = sample_config
    test_app.state.store = store
    test_app.state.engine = AvailabilityEngine(provider, sample_config)
    test_app.state.dispatcher = EngagementDispatcher(store, handlers, ExchangeFacts(store))

    return test_app


@pytest.fixture
async def client(app: FastAPI) -> AsyncClient:
    """Return an httpx AsyncClient for the test app."""
    # Override lifespan to avoid real initialization
    app.router.lifespan_context = _noop_lifespan
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@asynccontextmanager
async def _noop_lifespan(app: FastAPI):
    """No-op lifespan that preserves existing app.state."""
    yield


def _range(start: datetime, end: datetime) -> dict[str, str]:
    return {"start": start.isoformat(), "end": end.isoformat()}


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    async def test_healthy(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_degraded_without_engine(self, client: AsyncClient, app: FastAPI):
        app.state.engine = None
        resp = await client.get("/health")
        assert resp.json()["status"] == "degraded"

    async def test_correlation_id_is_echoed(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Correlation-ID": "req-42"})
        assert resp.headers["X-Correlation-ID"] == "req-42"

    async def test_correlation_id_is_generated(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.headers["X-Correlation-ID"]


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class TestAvailability:
    async def test_check(self, client: AsyncClient):
        resp = await client.post("/api/availability/check", json=_range(at(9), at(13)))

        assert resp.status_code == 200
        data = resp.json()
        assert data["is_available"] is False
        assert data["timezone"] == "America/New_York"
        assert data["free_slots"] == [
            _range(at(9), at(10)),
            _range(at(11), at(13)),
        ]

    async def test_check_with_events(self, client: AsyncClient):
        body = {**_range(at(9), at(13)), "include_events": True, "timezone": "UTC"}
        resp = await client.post("/api/availability/check", json=body)
        assert [e["id"] for e in resp.json()["events"]] == ["planning"]

    async def test_naive_datetime_is_422(self, client: AsyncClient):
        body = {"start": "2025-01-06T09:00:00", "end": "2025-01-06T10:00:00"}
        resp = await client.post("/api/availability/check", json=body)

        assert resp.status_code == 422
        assert resp.json()["error"] == "invalid_input"
        assert resp.json()["field"] == "start"

    async def test_oversized_window_is_422(self, client: AsyncClient):
        resp = await client.post(
            "/api/availability/check", json=_range(at(0), at(0) + timedelta(days=120))
        )
        assert resp.status_code == 422
        assert "90-day limit" in resp.json()["detail"]

    async def test_missing_field_is_422(self, client: AsyncClient):
        resp = await client.post("/api/availability/check", json={"start": at(9).isoformat()})
        assert resp.status_code == 422

    @pytest.mark.parametrize("minutes", ["NaN", "Infinity", "1e300"])
    async def test_unusable_min_duration_is_422(self, client: AsyncClient, minutes):
        start, end = at(9).isoformat(), at(13).isoformat()
        body = f'{{"start": "{start}", "end": "{end}", "min_duration_minutes": {minutes}}}'
        resp = await client.post(
            "/api/availability/check",
            content=body,
            headers={"Content-Type": "application/json"},
        )

        assert resp.status_code == 422
        assert resp.json()["field"] == "min_duration_minutes"

    async def test_transient_provider_error_is_503(
        self, client: AsyncClient, provider, monkeypatch
    ):
        async def _down(window):
            raise ProviderTransient("calendar unavailable", status_code=503)

        monkeypatch.setattr(provider, "query_busy", _down)
        resp = await client.post("/api/availability/check", json=_range(at(9), at(13)))

        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "30"

    async def test_permanent_provider_error_is_502(
        self, client: AsyncClient, provider, monkeypatch
    ):
        async def _revoked(window):
            raise ProviderPermanent("token revoked", status_code=401)

        monkeypatch.setattr(provider, "query_busy", _revoked)
        resp = await client.post("/api/availability/check", json=_range(at(9), at(13)))

        assert resp.status_code == 502
        assert resp.json()["provider_status"] == 401

    async def test_slots(self, client: AsyncClient):
        body = {
            **_range(at(9), at(12)),
            "duration_minutes": 60,
            "exclude": [_range(at(11), at(12))],
        }
        resp = await client.post("/api/availability/slots", json=body)

        assert resp.status_code == 200
        assert resp.json()["slots"] == [_range(at(9), at(10))]

    async def test_create(self, client: AsyncClient, provider):
        midnight = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        tomorrow = midnight + timedelta(days=1)
        standup = TimeRange(
            tomorrow + timedelta(hours=10), tomorrow + timedelta(hours=10, minutes=30)
        )
        provider.events = [make_event("standup", standup)]
        body = {
            **_range(tomorrow + timedelta(hours=10), tomorrow + timedelta(hours=11)),
            "block_summary": "Hold",
        }

        resp = await client.post("/api/availability/create", json=body)

        assert resp.status_code == 200
        data = resp.json()
        assert data["state"] == "success"
        assert data["rescheduled_event_count"] == 1
        assert data["block_event"]["summary"] == "Hold"

    async def test_create_with_recurring_scope(self, client: AsyncClient, provider):
        midnight = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        tomorrow = midnight + timedelta(days=1)
        standup = TimeRange(
            tomorrow + timedelta(hours=10), tomorrow + timedelta(hours=10, minutes=30)
        )
        provider.events = [make_event("standup", standup, recurring_event_id="standup-series")]
        body = {
            **_range(tomorrow + timedelta(hours=10), tomorrow + timedelta(hours=11)),
            "recurring_scope": "series",
        }

        resp = await client.post("/api/availability/create", json=body)

        assert resp.status_code == 200
        ((_, _, scope),) = provider.moves
        assert scope == SeriesScope()

    async def test_create_with_unknown_scope_is_422(self, client: AsyncClient, provider):
        body = {**_range(at(10), at(11)), "recurring_scope": "everything"}
        resp = await client.post("/api/availability/create", json=body)

        assert resp.status_code == 422
        assert resp.json()["field"] == "scope"
        assert provider.moves == []


# ---------------------------------------------------------------------------
# Inbound email
# ---------------------------------------------------------------------------


class TestInbound:
    async def test_new_sender_is_onboarded(self, client: AsyncClient, store: DatabaseStore):
        body = {
            "message_id": "m1",
            "sender": "ada@example.com",
            "recipients": ["cruso@example.com"],
            "subject": "Hello",
            "received_at": datetime.now(UTC).isoformat(),
        }
        resp = await client.post("/api/exchange/inbound", json=body)

        assert resp.status_code == 200
        data = resp.json()
        assert data["action"] == "onboard"
        assert data["status"] == "handled"
        assert data["exchange_id"] == "m1"
        assert await store.get_user_by_email("ada@example.com") is None

    async def test_reply_inherits_exchange(self, client: AsyncClient, store: DatabaseStore):
        now = datetime.now(UTC)
        await store.create_user("ada@example.com")
        await store.set_allowed_entries(["ada@example.com"])
        await store.save_message(
            InboundMessage(
                message_id="m1",
                exchange_id="thread-7",
                sender="ada@example.com",
                received_at=now - timedelta(minutes=5),
            )
        )

        body = {
            "message_id": "m2",
            "previous_message_id": "m1",
            "sender": "ada@example.com",
            "received_at": now.isoformat(),
        }
        resp = await client.post("/api/exchange/inbound", json=body)

        data = resp.json()
        assert data["exchange_id"] == "thread-7"
        assert data["action"] == "engage"
        assert data["status"] == "handled"

    async def test_bad_sender_is_422(self, client: AsyncClient):
        body = {
            "message_id": "m1",
            "sender": "not-an-address",
            "received_at": datetime.now(UTC).isoformat(),
        }
        resp = await client.post("/api/exchange/inbound", json=body)
        assert resp.status_code == 422
        assert resp.json()["field"] == "sender"

    async def test_unavailable_dispatcher_is_503(self, client: AsyncClient, app: FastAPI):
        app.state.dispatcher = None
        body = {
            "message_id": "m1",
            "sender": "ada@example.com",
            "received_at": datetime.now(UTC).isoformat(),
        }
        resp = await client.post("/api/exchange/inbound", json=body)
        assert resp.status_code == 503
