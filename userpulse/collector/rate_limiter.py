"""Rate limiting for discussion source requests."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional

from userpulse.config.settings import Settings

logger = logging.getLogger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait from a Retry-After value, given either as seconds or as an HTTP date."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except (ValueError, TypeError):
        pass
    try:
        retry_at = parsedate_to_datetime(str(value))
    except (ValueError, TypeError):
        logger.warning(f"Failed to parse Retry-After header: {value!r}")
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, retry_at.timestamp() - time.time())


@dataclass
class RateLimitConfig:
    """Rate limiting configuration."""
    max_requests_per_minute: int = 100
    min_remaining_calls: int = 5
    sleep_buffer_sec: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitConfig":
        return cls(
            max_requests_per_minute=settings.RATE_LIMIT_MAX_REQUESTS_PER_MINUTE,
            min_remaining_calls=settings.RATE_LIMIT_MIN_REMAINING_CALLS,
            sleep_buffer_sec=settings.RATE_LIMIT_SLEEP_BUFFER_SEC,
        )


class RateLimiter:
    """
    Rate limiter for source API requests.

    Monitors X-Ratelimit headers and enforces a request floor to avoid 429 errors.
    One instance is shared by every community search of a process, so the
    check-and-sleep in ``pre_request`` is serialised with a lock.
    """

    def __init__(self, config: RateLimitConfig):
        """
        Initialize the rate limiter with configuration.

        Args:
            config: Rate limiting configuration
        """
        self.config = config
        self.remaining_calls: Optional[int] = None
        self.reset_timestamp: Optional[float] = None
        self.last_request_time = 0.0
        self._lock = asyncio.Lock()

        # Absolute rate limit calculation
        self.min_interval = 60.0 / self.config.max_requests_per_minute

    async def pre_request(self) -> None:
        """
        Check rate limits before making a request and sleep if necessary.

        This should be called before each source API request.
        """
        async with self._lock:
            now = time.time()
            elapsed = now - self.last_request_time
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)

            if (self.remaining_calls is not None and
                    self.reset_timestamp is not None and
                    self.remaining_calls < self.config.min_remaining_calls):

                wait_time = self.reset_timestamp - time.time() + self.config.sleep_buffer_sec
                if wait_time > 0:
                    logger.info(f"Rate limit approaching: {self.remaining_calls} calls remaining. "
                                f"Sleeping for {wait_time:.2f}s until reset.")
                    await asyncio.sleep(wait_time)
                    self.remaining_calls = None
                    self.reset_timestamp = None

            # Reserve the slot so concurrent callers space themselves out
            self.last_request_time = time.time()

    def update_from_headers(self, headers: Mapping[str, Any]) -> None:
        """
        Update rate limit tracking based on response headers.

        Args:
            headers: Response headers from a source API request
        """
        self.last_request_time = time.time()

        if "x-ratelimit-remaining" in headers:
            try:
                self.remaining_calls = int(float(headers["x-ratelimit-remaining"]))
            except (ValueError, TypeError):
                logger.warning("Failed to parse x-ratelimit-remaining header")

        if "x-ratelimit-reset" in headers:
            try:
                reset_seconds = float(headers["x-ratelimit-reset"])
                self.reset_timestamp = time.time() + reset_seconds
            except (ValueError, TypeError):
                logger.warning("Failed to parse x-ratelimit-reset header")

        if self.remaining_calls is not None and self.reset_timestamp is not None:
            reset_in = self.reset_timestamp - time.time()
            logger.debug(f"Rate limit status: {self.remaining_calls} calls remaining, "
                         f"reset in {reset_in:.2f}s")

    async def handle_429(self, retry_after: Optional[str] = None) -> float:
        """
        Handle a 429 Too Many Requests response.

        Args:
            retry_after: Value of the Retry-After header, if available

        Returns:
            The number of seconds slept
        """
        wait_seconds = parse_retry_after(retry_after)
        if wait_seconds is None:
            wait_seconds = 60.0
        wait_seconds += self.config.sleep_buffer_sec

        logger.warning(f"Rate limited (429). Waiting for {wait_seconds:.2f}s before retrying.")
        await asyncio.sleep(wait_seconds)

        self.remaining_calls = None
        self.reset_timestamp = None
        return wait_seconds
