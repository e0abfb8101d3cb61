"""Custom exception types for Cruso.

Error messages follow the same shape everywhere:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance)

Rescheduling that only partly succeeds is not an error. It is reported through
the ``unresolved`` list of the rescheduling result so callers can decide
whether partial success is acceptable.
"""


class CrusoError(Exception):
    """Base exception for all Cruso errors."""

    pass


class ConfigValidationError(CrusoError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(CrusoError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class InvalidInput(CrusoError):
    """Raised for malformed or missing facts, intervals or ranges.

    Never silently defaulted: the call that received the input aborts.

    Attributes:
        field: Name of the offending argument or attribute (if known)
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ProviderError(CrusoError):
    """Raised when the calendar provider returns an error.

    Attributes:
        status_code: HTTP status code from the provider (if any)
        error_code: Error reason from the provider response (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ProviderTransient(ProviderError):
    """Retryable provider failure: throttling, 5xx, timeouts, dropped connections."""

    pass


class ProviderPermanent(ProviderError):
    """Provider failure that needs user action.

    Expired auth, a missing permission or an unknown calendar or event.
    """

    pass


class RateLimitExceeded(ProviderTransient):
    """Raised when API rate limits are exceeded and cannot be recovered.

    This is raised when the rate limiter would require an excessive wait time
    (>20 seconds) rather than blocking indefinitely, and when the provider keeps
    answering 429 after all retries.
    """

    pass


class DatabaseError(CrusoError):
    """Raised when SQLite operations fail."""

    pass


class ExchangeOwnerNotFound(CrusoError):
    """Raised when a reply from a non-user can't be tied to the user who owns the exchange."""

    pass
