"""Google Calendar REST client with retry logic and error handling.

Provides:
- Automatic retry with jittered backoff for transient errors (429, 5xx,
  403 rate-limit reasons, timeouts, dropped connections)
- Proactive rate limiting through a shared token bucket
- Mapping of every failure onto ProviderTransient / ProviderPermanent

Retries live here and only here; the availability engine never retries.

Usage:
    from cruso.calendar.client import GoogleCalendarClient, env_token_provider

    client = GoogleCalendarClient(env_token_provider("CRUSO_CALENDAR_TOKEN"))
    items, timezone = client.list_events("primary", time_min, time_max)
"""

import os
import random
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import quote

import requests

from cruso.core.errors import (
    ProviderPermanent,
    ProviderTransient,
    RateLimitExceeded,
)
from cruso.core.logging import get_logger
from cruso.core.rate_limiter import get_bucket

logger = get_logger(__name__)

GOOGLE_CALENDAR_BASE_URL = "https://www.googleapis.com/calendar/v3"

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]

GOOGLE_CALENDAR_RATE = 5.0
GOOGLE_CALENDAR_CAPACITY = 10

# 403 reasons Google uses for quota throttling rather than missing permissions
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})

TokenProvider = Callable[[], str]


def env_token_provider(variable: str) -> TokenProvider:
    """Token provider reading an OAuth access token from an environment variable."""

    def _token() -> str:
        token = os.environ.get(variable, "").strip()
        if not token:
            raise ProviderPermanent(
                f"No calendar access token found in ${variable}. "
                "Set it to a valid OAuth access token and retry.",
                status_code=401,
                error_code="missing_token",
            )
        return token

    return _token


def format_instant(value: datetime) -> str:
    """RFC 3339 timestamp as the Calendar API expects it."""
    return value.isoformat().replace("+00:00", "Z")


class GoogleCalendarClient:
    """Google Calendar v3 client.

    Synchronous by design: GoogleCalendarProvider runs calls in worker threads.

    Attributes:
        token_provider: Callable returning a current access token
        base_url: Calendar API base URL
        max_retries: Maximum number of retry attempts
        retry_delays: Delay (seconds) before each retry
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = GOOGLE_CALENDAR_BASE_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: list[float] | None = None,
        timeout: float = 30.0,
        rate: float = GOOGLE_CALENDAR_RATE,
        capacity: int = GOOGLE_CALENDAR_CAPACITY,
        session: requests.Session | None = None,
    ):
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS
        self.timeout = timeout
        self.session = session or requests.Session()
        self._rate_bucket = get_bucket(name="google_calendar", rate=rate, capacity=capacity)

    def _get_headers(self) -> dict[str, str]:
        token = self.token_provider()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _make_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return self.base_url + endpoint

    @staticmethod
    def _error_details(response: requests.Response) -> tuple[str, str]:
        """Return (reason, message) from a Google error body."""
        try:
            error_info = response.json().get("error", {})
        except ValueError:
            return "unknown", response.text or f"HTTP {response.status_code}"
        if not isinstance(error_info, dict):
            return "unknown", str(error_info)
        errors = error_info.get("errors") or [{}]
        reason = errors[0].get("reason") or error_info.get("status") or "unknown"
        return reason, error_info.get("message") or response.text

    def _is_rate_limited(self, response: requests.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code == 403:
            reason, _ = self._error_details(response)
            return reason in RATE_LIMIT_REASONS
        return False

    def _should_retry(self, response: requests.Response, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        if 500 <= response.status_code < 600:
            return True
        return self._is_rate_limited(response)

    def _get_retry_delay(self, response: requests.Response | None, attempt: int) -> float:
        """Backoff delay with ±20% jitter; honors Retry-After when present."""
        base_delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    base_delay = float(retry_after)
                except ValueError:
                    pass
        jitter = base_delay * 0.2 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_error_response(
        self, response: requests.Response, method: str, endpoint: str
    ) -> None:
        """Raise the typed provider error for a failed response."""
        status = response.status_code
        reason, message = self._error_details(response)

        logger.error(
            "calendar_api_error",
            method=method,
            endpoint=endpoint,
            status_code=status,
            error_code=reason,
            error_message=message[:200],
        )

        if self._is_rate_limited(response):
            retry_after = response.headers.get("Retry-After", "unknown")
            raise RateLimitExceeded(
                f"Calendar rate limit exceeded ({status}). Retry after: {retry_after} seconds.",
                status_code=status,
                error_code=reason,
            )
        if status >= 500:
            raise ProviderTransient(
                f"Calendar API unavailable ({status}): {message}. Retry later.",
                status_code=status,
                error_code=reason,
            )
        if status == 401:
            raise ProviderPermanent(
                f"Calendar authentication failed (401): {message}. "
                "The access token has expired or was revoked; reconnect the calendar.",
                status_code=status,
                error_code=reason,
            )
        if status == 403:
            raise ProviderPermanent(
                f"Calendar permission denied (403): {message}. "
                "Grant calendar read/write access and reconnect.",
                status_code=status,
                error_code=reason,
            )
        if status in (404, 410):
            raise ProviderPermanent(
                f"Calendar resource not found ({status}): {message}. "
                f"The calendar or event behind '{endpoint}' no longer exists.",
                status_code=status,
                error_code=reason,
            )
        raise ProviderPermanent(
            f"Calendar API rejected {method} {endpoint} ({status}): {message}",
            status_code=status,
            error_code=reason,
        )

    def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request to the Calendar API with retry logic.

        Returns:
            Parsed JSON response ({} for 204 No Content)

        Raises:
            ProviderTransient: When retries are exhausted on a retryable failure
            RateLimitExceeded: When throttling persists after all retries
            ProviderPermanent: For auth, permission, not-found and other 4xx errors
        """
        url = self._make_url(endpoint)
        last_response = None

        for attempt in range(self.max_retries + 1):
            try:
                self._rate_bucket.consume_sync()
                headers = self._get_headers()

                logger.debug(
                    "calendar_api_request",
                    method=method,
                    endpoint=endpoint,
                    attempt=attempt + 1,
                )
                response = self.session.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
                last_response = response

                if response.status_code < 400:
                    if response.status_code == 204 or not response.content:
                        return {}
                    return response.json()

                if self._should_retry(response, attempt):
                    delay = self._get_retry_delay(response, attempt)
                    logger.warning(
                        "calendar_api_retry",
                        method=method,
                        endpoint=endpoint,
                        status_code=response.status_code,
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue

                self._handle_error_response(response, method, endpoint)

            except requests.exceptions.Timeout:
                if attempt < self.max_retries:
                    delay = self._get_retry_delay(None, attempt)
                    logger.warning(
                        "calendar_api_timeout_retry",
                        method=method,
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise ProviderTransient(
                    f"Request to {endpoint} timed out after {self.timeout}s and "
                    f"{self.max_retries} retries. The calendar provider may be degraded.",
                ) from None

            except requests.exceptions.ConnectionError as e:
                if attempt < self.max_retries:
                    delay = self._get_retry_delay(None, attempt)
                    logger.warning(
                        "calendar_api_connection_retry",
                        method=method,
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        error=str(e),
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise ProviderTransient(
                    f"Connection to the calendar provider failed: {e}. "
                    "Check network connectivity and try again.",
                ) from e

        if last_response is not None:
            self._handle_error_response(last_response, method, endpoint)
        raise ProviderTransient(f"Request to {endpoint} failed after {self.max_retries} retries")

    # -------------------------------------------------------------------------
    # Calendar operations
    # -------------------------------------------------------------------------

    @staticmethod
    def _events_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            path += f"/{quote(event_id, safe='')}"
        return path

    def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        single_events: bool = True,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """List events overlapping [time_min, time_max), following pagination.

        Returns:
            (event resources, calendar timezone reported by the API)
        """
        params: dict[str, Any] = {
            "timeMin": format_instant(time_min),
            "timeMax": format_instant(time_max),
            "singleEvents": "true" if single_events else "false",
            "maxResults": 250,
        }
        if single_events:
            params["orderBy"] = "startTime"

        items: list[dict[str, Any]] = []
        timezone = None
        endpoint = self._events_path(calendar_id)
        while True:
            page = self.request("GET", endpoint, params=params)
            items.extend(page.get("items") or [])
            timezone = timezone or page.get("timeZone")
            token = page.get("nextPageToken")
            if not token:
                break
            params = {**params, "pageToken": token}

        logger.debug("calendar_events_listed", calendar_id=calendar_id, count=len(items))
        return items, timezone

    def free_busy(
        self, calendar_ids: list[str], time_min: datetime, time_max: datetime
    ) -> dict[str, Any]:
        return self.request(
            "POST",
            "/freeBusy",
            json={
                "timeMin": format_instant(time_min),
                "timeMax": format_instant(time_max),
                "items": [{"id": cid} for cid in calendar_ids],
            },
        )

    def get_event(self, calendar_id: str, event_id: str) -> dict[str, Any]:
        return self.request("GET", self._events_path(calendar_id, event_id))

    def list_instances(
        self, calendar_id: str, event_id: str, original_start: datetime
    ) -> list[dict[str, Any]]:
        """Occurrences of a recurring event that were scheduled at ``original_start``."""
        page = self.request(
            "GET",
            self._events_path(calendar_id, event_id) + "/instances",
            params={"originalStart": format_instant(original_start)},
        )
        return page.get("items") or []

    def patch_event(
        self, calendar_id: str, event_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return self.request("PATCH", self._events_path(calendar_id, event_id), json=body)

    def insert_event(self, calendar_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", self._events_path(calendar_id), json=body)
