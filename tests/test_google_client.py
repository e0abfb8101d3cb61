"""Tests for the Google Calendar REST client: retries and error mapping."""

from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests
from conftest import at

from cruso.calendar.client import GoogleCalendarClient, env_token_provider, format_instant
from cruso.core.errors import ProviderPermanent, ProviderTransient, RateLimitExceeded


def response(status: int, body: Any = None, headers: dict[str, str] | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.content = b"" if body is None else b"{}"
    resp.text = "" if body is None else str(body)
    resp.json.return_value = body
    return resp


def google_error(status: int, reason: str, message: str = "failed") -> MagicMock:
    return response(status, {"error": {"errors": [{"reason": reason}], "message": message}})


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps: list[float] = []
    monkeypatch.setattr("cruso.calendar.client.time", SimpleNamespace(sleep=sleeps.append))
    return sleeps


@pytest.fixture
def session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(session) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        lambda: "token-123",
        max_retries=2,
        retry_delays=[0.01, 0.02],
        rate=1000.0,
        capacity=100,
        session=session,
    )


class TestRequest:
    def test_success_sends_bearer_token(self, client, session):
        session.request.return_value = response(200, {"items": []})

        assert client.request("GET", "/users/me/calendarList") == {"items": []}
        kwargs = session.request.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer token-123"
        assert kwargs["url"] == "https://www.googleapis.com/calendar/v3/users/me/calendarList"

    def test_no_content(self, client, session):
        session.request.return_value = response(204)
        assert client.request("DELETE", "/calendars/primary/events/x") == {}

    def test_retries_server_errors_then_succeeds(self, client, session, no_sleep):
        session.request.side_effect = [response(503, {}), response(200, {"ok": True})]

        assert client.request("GET", "/x") == {"ok": True}
        assert session.request.call_count == 2
        assert len(no_sleep) == 1

    def test_server_errors_exhaust_retries(self, client, session):
        session.request.return_value = response(500, {"error": {"message": "backend"}})

        with pytest.raises(ProviderTransient) as exc_info:
            client.request("GET", "/x")
        assert exc_info.value.status_code == 500
        assert session.request.call_count == 3

    def test_429_maps_to_rate_limit(self, client, session, no_sleep):
        session.request.return_value = response(
            429, {"error": {"message": "slow down"}}, {"Retry-After": "2"}
        )

        with pytest.raises(RateLimitExceeded):
            client.request("GET", "/x")
        assert all(1.5 <= delay <= 2.5 for delay in no_sleep)

    def test_403_rate_limit_reason_is_transient(self, client, session):
        session.request.return_value = google_error(403, "userRateLimitExceeded")
        with pytest.raises(RateLimitExceeded):
            client.request("GET", "/x")
        assert session.request.call_count == 3

    def test_403_permission_is_permanent(self, client, session):
        session.request.return_value = google_error(403, "forbidden", "no access")
        with pytest.raises(ProviderPermanent, match="permission denied") as exc_info:
            client.request("GET", "/x")
        assert exc_info.value.error_code == "forbidden"
        assert session.request.call_count == 1

    @pytest.mark.parametrize(
        ("status", "phrase"),
        [(401, "authentication failed"), (404, "not found"), (410, "not found"), (400, "rejected")],
    )
    def test_client_errors_are_permanent(self, client, session, status, phrase):
        session.request.return_value = google_error(status, "someReason")
        with pytest.raises(ProviderPermanent, match=phrase) as exc_info:
            client.request("GET", "/x")
        assert exc_info.value.status_code == status

    def test_timeouts_are_retried_then_transient(self, client, session):
        session.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(ProviderTransient, match="timed out"):
            client.request("GET", "/x")
        assert session.request.call_count == 3

    def test_connection_errors_are_transient(self, client, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(ProviderTransient, match="Connection"):
            client.request("GET", "/x")


class TestOperations:
    def test_list_events_follows_pages(self, client, session):
        session.request.side_effect = [
            response(200, {"items": [{"id": "a"}], "nextPageToken": "p2", "timeZone": "UTC"}),
            response(200, {"items": [{"id": "b"}]}),
        ]

        items, timezone = client.list_events("team@example.com", at(9), at(17))

        assert [i["id"] for i in items] == ["a", "b"]
        assert timezone == "UTC"
        first, second = session.request.call_args_list
        assert first.kwargs["url"].endswith("/calendars/team%40example.com/events")
        assert first.kwargs["params"]["timeMin"] == "2025-01-06T09:00:00Z"
        assert first.kwargs["params"]["singleEvents"] == "true"
        assert second.kwargs["params"]["pageToken"] == "p2"

    def test_free_busy_body(self, client, session):
        session.request.return_value = response(200, {"calendars": {}})
        client.free_busy(["primary", "work"], at(9), at(17))

        kwargs = session.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["json"]["items"] == [{"id": "primary"}, {"id": "work"}]

    def test_list_instances(self, client, session):
        session.request.return_value = response(200, {"items": [{"id": "i1"}]})
        assert client.list_instances("primary", "weekly", at(10)) == [{"id": "i1"}]
        params = session.request.call_args.kwargs["params"]
        assert params == {"originalStart": "2025-01-06T10:00:00Z"}


def test_env_token_provider(monkeypatch):
    monkeypatch.setenv("TEST_CAL_TOKEN", " abc ")
    assert env_token_provider("TEST_CAL_TOKEN")() == "abc"

    monkeypatch.delenv("TEST_CAL_TOKEN")
    with pytest.raises(ProviderPermanent) as exc_info:
        env_token_provider("TEST_CAL_TOKEN")()
    assert exc_info.value.error_code == "missing_token"


def test_format_instant():
    assert format_instant(at(9)) == "2025-01-06T09:00:00Z"
