"""Error handling and retry logic for discussion source requests."""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple, TypeVar, cast

from aiohttp.client_exceptions import ClientResponseError
from asyncprawcore.exceptions import ResponseException

from userpulse.collector.rate_limiter import RateLimiter, parse_retry_after
from userpulse.core.errors import RateLimited, UpstreamUnavailable, UserPulseError

logger = logging.getLogger(__name__)

T = TypeVar("T")
AsyncFunc = Callable[..., Awaitable[T]]


class ConsecutiveErrorTracker:
    """Tracker for consecutive errors with threshold checking."""

    def __init__(self, threshold: int, prometheus_exporter=None):
        """
        Initialize the error tracker.

        Args:
            threshold: Maximum number of consecutive errors allowed
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        self.threshold = threshold
        self.consecutive_errors = 0
        self.prometheus_exporter = prometheus_exporter

    def record_error(self) -> None:
        """Record an error occurrence and increment the counter."""
        self.consecutive_errors += 1
        logger.warning(f"Consecutive errors: {self.consecutive_errors}/{self.threshold}")

        if self.prometheus_exporter:
            self.prometheus_exporter.set_consecutive_5xx_errors(self.consecutive_errors)
            self.prometheus_exporter.record_api_error("5xx")

    def record_success(self) -> None:
        """Record a successful request, resetting the consecutive error count."""
        if self.consecutive_errors > 0:
            logger.info(f"Resetting consecutive 5xx counter (was {self.consecutive_errors})")
            self.consecutive_errors = 0

            if self.prometheus_exporter:
                self.prometheus_exporter.set_consecutive_5xx_errors(0)

    def should_abort(self) -> bool:
        """
        Check if we should abort due to too many consecutive errors.

        Returns:
            True if the failure threshold has been reached
        """
        return self.consecutive_errors >= self.threshold


def response_status(exc: BaseException) -> Tuple[Optional[int], Mapping[str, Any]]:
    """Extract the HTTP status and headers carried by an aiohttp or asyncprawcore error."""
    if isinstance(exc, ClientResponseError):
        return exc.status, exc.headers or {}
    if isinstance(exc, ResponseException):
        response = exc.response
        return getattr(response, "status", None), getattr(response, "headers", None) or {}
    return None, {}


def with_exponential_backoff(
    max_retries: int = 5,
    initial_backoff: float = 1.0,
    max_backoff: float = 32.0,
    backoff_factor: float = 2.0,
    error_tracker: Optional[ConsecutiveErrorTracker] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> Callable[[AsyncFunc[T]], AsyncFunc[T]]:
    """
    Decorator for retrying async source calls with exponential backoff.

    429 responses wait on the rate limiter and 5xx responses back off
    exponentially. Exhausted retries surface as ``RateLimited`` or
    ``UpstreamUnavailable``; other client errors are not retried.

    Args:
        max_retries: Maximum number of retry attempts
        initial_backoff: Initial backoff time in seconds
        max_backoff: Maximum backoff time in seconds
        backoff_factor: Multiplier for backoff time between retries
        error_tracker: Optional tracker for consecutive 5xx errors
        rate_limiter: Optional rate limiter for handling 429 responses

    Returns:
        Decorator function
    """
    def decorator(func: AsyncFunc[T]) -> AsyncFunc[T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            retries = 0
            rate_limit_waits = 0
            backoff = initial_backoff

            while True:
                try:
                    result = await func(*args, **kwargs)

                    if error_tracker:
                        error_tracker.record_success()

                    return result

                except UserPulseError:
                    raise

                except (ClientResponseError, ResponseException) as e:
                    status, headers = response_status(e)

                    if status == 429:
                        retry_after = headers.get("Retry-After") or headers.get("retry-after")
                        if rate_limiter and rate_limit_waits < max_retries:
                            logger.warning(f"Rate limited (429): {e}")
                            await rate_limiter.handle_429(retry_after)
                            rate_limit_waits += 1
                            continue
                        raise RateLimited(
                            f"Source rate limit persisted after {rate_limit_waits} waits",
                            retry_after=parse_retry_after(retry_after),
                        ) from e

                    elif status is not None and 500 <= status < 600:
                        if error_tracker:
                            error_tracker.record_error()
                            if error_tracker.should_abort():
                                logger.critical(
                                    f"Aborting after {error_tracker.consecutive_errors} "
                                    f"consecutive 5xx errors"
                                )
                                raise UpstreamUnavailable(f"Source returned {status} repeatedly") from e

                        if retries >= max_retries:
                            logger.error(f"Max retries ({max_retries}) exceeded: {e}")
                            raise UpstreamUnavailable(f"Source returned {status}") from e

                        logger.warning(
                            f"Server error {status}: {e}. "
                            f"Retrying in {backoff:.2f}s ({retries+1}/{max_retries})"
                        )
                        await asyncio.sleep(backoff)
                        retries += 1
                        backoff = min(backoff * backoff_factor, max_backoff)
                        continue

                    else:
                        logger.warning(f"Client error {status}: {e}")
                        raise UpstreamUnavailable(f"Source rejected the request ({status})") from e

                except Exception as e:
                    # Network and other transient errors are retried with backoff
                    if retries >= max_retries:
                        logger.error(f"Max retries ({max_retries}) exceeded: {e}")
                        raise UpstreamUnavailable(f"Source request failed: {e}") from e

                    logger.warning(
                        f"Error: {e}. "
                        f"Retrying in {backoff:.2f}s ({retries+1}/{max_retries})"
                    )
                    await asyncio.sleep(backoff)
                    retries += 1
                    backoff = min(backoff * backoff_factor, max_backoff)
                    continue

        return cast(AsyncFunc[T], wrapper)
    return decorator
