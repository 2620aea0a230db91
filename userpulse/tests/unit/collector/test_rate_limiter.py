"""Tests for the rate limiter module."""

import unittest
from unittest.mock import AsyncMock, patch

from userpulse.collector.rate_limiter import RateLimitConfig, RateLimiter, parse_retry_after
from userpulse.config.settings import Settings

RETRY_AT = 1445412480.0
RETRY_AT_HTTP_DATE = "Wed, 21 Oct 2015 07:28:00 GMT"


class TestRateLimiter(unittest.IsolatedAsyncioTestCase):
    """Test cases for the RateLimiter class."""

    def setUp(self):
        self.config = RateLimitConfig(
            max_requests_per_minute=60,  # 1 request per second
            min_remaining_calls=5,
            sleep_buffer_sec=1,
        )
        self.rate_limiter = RateLimiter(self.config)

    async def test_pre_request_enforces_request_floor(self):
        """Requests closer together than the floor wait out the difference."""
        self.rate_limiter.last_request_time = 100.0

        with patch("userpulse.collector.rate_limiter.time.time", return_value=100.25), \
                patch("userpulse.collector.rate_limiter.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await self.rate_limiter.pre_request()

        mock_sleep.assert_awaited_once_with(0.75)
        self.assertEqual(self.rate_limiter.last_request_time, 100.25)

    async def test_pre_request_no_sleep_needed(self):
        self.rate_limiter.last_request_time = 100.0

        with patch("userpulse.collector.rate_limiter.time.time", return_value=101.5), \
                patch("userpulse.collector.rate_limiter.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await self.rate_limiter.pre_request()

        mock_sleep.assert_not_awaited()

    async def test_pre_request_waits_for_reset_when_quota_is_low(self):
        """Below the remaining-calls floor, sleep until the window resets plus the buffer."""
        self.rate_limiter.remaining_calls = 3
        self.rate_limiter.reset_timestamp = 110.0

        with patch("userpulse.collector.rate_limiter.time.time", return_value=100.0), \
                patch("userpulse.collector.rate_limiter.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await self.rate_limiter.pre_request()

        mock_sleep.assert_awaited_once_with(11.0)
        self.assertIsNone(self.rate_limiter.remaining_calls)
        self.assertIsNone(self.rate_limiter.reset_timestamp)

    def test_update_from_headers(self):
        headers = {"x-ratelimit-remaining": "42.0", "x-ratelimit-reset": "30"}

        with patch("userpulse.collector.rate_limiter.time.time", return_value=100.0):
            self.rate_limiter.update_from_headers(headers)

        self.assertEqual(self.rate_limiter.remaining_calls, 42)
        self.assertEqual(self.rate_limiter.reset_timestamp, 130.0)
        self.assertEqual(self.rate_limiter.last_request_time, 100.0)

    def test_update_from_headers_invalid_values(self):
        headers = {"x-ratelimit-remaining": "invalid", "x-ratelimit-reset": "also-invalid"}

        with patch("userpulse.collector.rate_limiter.time.time", return_value=100.0):
            self.rate_limiter.update_from_headers(headers)

        self.assertIsNone(self.rate_limiter.remaining_calls)
        self.assertIsNone(self.rate_limiter.reset_timestamp)

    async def test_handle_429_with_retry_after(self):
        self.rate_limiter.remaining_calls = 0
        self.rate_limiter.reset_timestamp = 200.0

        with patch("userpulse.collector.rate_limiter.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            waited = await self.rate_limiter.handle_429("60")

        mock_sleep.assert_awaited_once_with(61.0)
        self.assertEqual(waited, 61.0)
        self.assertIsNone(self.rate_limiter.remaining_calls)
        self.assertIsNone(self.rate_limiter.reset_timestamp)

    async def test_handle_429_without_retry_after(self):
        with patch("userpulse.collector.rate_limiter.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            waited = await self.rate_limiter.handle_429(None)

        mock_sleep.assert_awaited_once_with(61.0)
        self.assertEqual(waited, 61.0)

    async def test_handle_429_with_unparseable_retry_after(self):
        with patch("userpulse.collector.rate_limiter.asyncio.sleep", new_callable=AsyncMock):
            waited = await self.rate_limiter.handle_429("soon")

        self.assertEqual(waited, 61.0)

    async def test_handle_429_with_http_date(self):
        with patch("userpulse.collector.rate_limiter.time.time", return_value=RETRY_AT - 30), \
                patch("userpulse.collector.rate_limiter.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            waited = await self.rate_limiter.handle_429(RETRY_AT_HTTP_DATE)

        mock_sleep.assert_awaited_once_with(31.0)
        self.assertEqual(waited, 31.0)


class TestParseRetryAfter(unittest.TestCase):

    def test_seconds(self):
        self.assertEqual(parse_retry_after("30"), 30.0)
        self.assertEqual(parse_retry_after("-5"), 0.0)

    def test_http_date(self):
        with patch("userpulse.collector.rate_limiter.time.time", return_value=RETRY_AT - 90):
            self.assertEqual(parse_retry_after(RETRY_AT_HTTP_DATE), 90.0)

    def test_http_date_in_the_past(self):
        with patch("userpulse.collector.rate_limiter.time.time", return_value=RETRY_AT + 10):
            self.assertEqual(parse_retry_after(RETRY_AT_HTTP_DATE), 0.0)

    def test_missing_or_garbage(self):
        self.assertIsNone(parse_retry_after(None))
        self.assertIsNone(parse_retry_after(""))
        self.assertIsNone(parse_retry_after("soon"))


class TestRateLimitConfig(unittest.TestCase):

    def test_from_settings(self):
        settings = Settings(RATE_LIMIT_MAX_REQUESTS_PER_MINUTE=30, RATE_LIMIT_SLEEP_BUFFER_SEC=4)

        config = RateLimitConfig.from_settings(settings)

        self.assertEqual(config.max_requests_per_minute, 30)
        self.assertEqual(config.sleep_buffer_sec, 4)
        self.assertEqual(RateLimiter(config).min_interval, 2.0)


if __name__ == "__main__":
    unittest.main()
