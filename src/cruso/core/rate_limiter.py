"""Token bucket rate limiting for calendar provider calls.

Provider requests are serialized through a per-provider bucket so batch
operations (for example moving several events while creating availability)
stay inside the provider's quota. The bucket refuses to block for more than
``MAX_WAIT_SECONDS``; callers get ``RateLimitExceeded`` instead.

Default provider limits:
- google_calendar: 5 requests per second, burst of 10
"""

import asyncio
import threading
import time

from cruso.core.errors import RateLimitExceeded
from cruso.core.logging import get_logger

logger = get_logger(__name__)

MAX_WAIT_SECONDS = 20.0


class TokenBucket:
    """Token bucket rate limiter.

    Tokens are added at a fixed rate and each request consumes one. When the
    bucket is empty the caller waits until enough tokens have been refilled.

    Example:
        limiter = TokenBucket(rate=5.0, capacity=10)
        limiter.consume_sync()  # blocks if needed
    """

    def __init__(
        self,
        rate: float = 1.0,
        capacity: int = 1,
        initial_tokens: int | None = None,
    ):
        """Initialize a token bucket rate limiter.

        Args:
            rate: Token refill rate per second
            capacity: Maximum number of tokens in the bucket
            initial_tokens: Initial number of tokens in the bucket (defaults to capacity)
        """
        self.rate = rate
        self.capacity = capacity
        self.tokens: float = capacity if initial_tokens is None else initial_tokens
        self.last_refill = time.monotonic()
        self.lock = asyncio.Lock()
        self.sync_lock = threading.Lock()

    def _check_capacity(self, tokens: int) -> None:
        if tokens > self.capacity:
            logger.error(
                "rate_limit_capacity_exceeded",
                tokens=tokens,
                capacity=self.capacity,
            )
            raise RateLimitExceeded(
                f"Requested tokens ({tokens}) exceed bucket capacity ({self.capacity})"
            )

    def _take_or_wait_time(self, tokens: int) -> float:
        """Take tokens if available; otherwise return how long to wait.

        Must be called with a lock held.

        Raises:
            RateLimitExceeded: If the wait would exceed MAX_WAIT_SECONDS
        """
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return 0.0

        required_tokens = tokens - self.tokens
        wait_time = required_tokens / self.rate
        if wait_time > MAX_WAIT_SECONDS:
            logger.warning(
                "rate_limit_excessive_wait",
                wait_time=wait_time,
                tokens_needed=required_tokens,
            )
            raise RateLimitExceeded(f"Rate limit exceeded, would require {wait_time:.2f}s wait")
        logger.debug("rate_limit_waiting", wait_time=wait_time, tokens_needed=required_tokens)
        return wait_time

    def _take_after_wait(self, tokens: int) -> bool:
        self._refill()
        if self.tokens < tokens:
            logger.error("rate_limit_refill_short", tokens=self.tokens, required=tokens)
            raise RateLimitExceeded("Failed to get enough tokens even after waiting")
        self.tokens -= tokens
        return True

    async def consume(self, tokens: int = 1) -> bool:
        """Consume tokens from the bucket, waiting if needed.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if tokens were consumed

        Raises:
            RateLimitExceeded: If tokens cannot be consumed even after waiting
        """
        self._check_capacity(tokens)
        async with self.lock:
            wait_time = self._take_or_wait_time(tokens)
        if wait_time == 0.0:
            return True

        # Lock released while sleeping so other consumers can check
        await asyncio.sleep(wait_time)
        async with self.lock:
            return self._take_after_wait(tokens)

    def consume_sync(self, tokens: int = 1) -> bool:
        """Thread-safe synchronous version of consume().

        Used by GoogleCalendarClient.request(), which runs in worker threads.
        """
        self._check_capacity(tokens)
        with self.sync_lock:
            wait_time = self._take_or_wait_time(tokens)
        if wait_time == 0.0:
            return True

        time.sleep(wait_time)
        with self.sync_lock:
            return self._take_after_wait(tokens)

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now


_buckets: dict[str, TokenBucket] = {}


def get_bucket(name: str = "default", rate: float = 1.0, capacity: int = 1) -> TokenBucket:
    """Get or create a token bucket for the given name.

    Args:
        name: Bucket name/identifier
        rate: Token refill rate if creating a new bucket
        capacity: Token capacity if creating a new bucket

    Returns:
        TokenBucket instance
    """
    if name not in _buckets:
        _buckets[name] = TokenBucket(rate=rate, capacity=capacity)
    return _buckets[name]


def reset_buckets() -> None:
    """Drop all named buckets. Intended for tests."""
    _buckets.clear()
