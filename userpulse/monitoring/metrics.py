"""Prometheus metrics for monitoring the UserPulse service."""

import logging
import time
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

# Define metrics
RECORDS_COLLECTED = Counter(
    "userpulse_records_collected_total",
    "Total number of raw records mined from a community",
    ["community", "kind"],
)

COMMUNITY_FAILURES = Counter(
    "userpulse_community_search_failures_total",
    "Number of community searches that failed and contributed no records",
    ["community"],
)

API_ERRORS = Counter(
    "userpulse_api_errors_total",
    "Number of source API errors encountered",
    ["error_type"],
)

CONSECUTIVE_5XX_ERRORS = Gauge(
    "userpulse_consecutive_5xx_errors",
    "Number of consecutive 5XX errors encountered",
)

SUMMARIZER_FALLBACKS = Counter(
    "userpulse_summarizer_fallbacks_total",
    "Number of summarizer calls that degraded to their fallback",
    ["operation"],
)

JOBS_FINISHED = Counter(
    "userpulse_jobs_finished_total",
    "Number of jobs that reached a terminal state",
    ["status"],
)

JOBS_IN_FLIGHT = Gauge(
    "userpulse_jobs_in_flight",
    "Number of jobs currently running",
)

REQUEST_DURATION = Histogram(
    "userpulse_request_duration_seconds",
    "Duration of source API requests in seconds",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)


class PrometheusExporter:
    """Prometheus metrics exporter for the UserPulse service."""

    def __init__(self, port: int = 8003):
        """
        Initialize the Prometheus exporter.

        Args:
            port: Port to expose metrics on
        """
        self.port = port
        self.server_started = False

    def start_server(self) -> None:
        """Start the Prometheus metrics server."""
        if not self.server_started:
            try:
                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Started Prometheus metrics server on port {self.port}")
            except Exception as e:
                logger.error(f"Failed to start Prometheus metrics server: {str(e)}")

    def record_collected(self, community: str, kind: str, count: int = 1) -> None:
        """
        Record mined records.

        Args:
            community: Community the records came from
            kind: ``post`` or ``comment``
            count: Number of records
        """
        if count:
            RECORDS_COLLECTED.labels(community=community, kind=kind).inc(count)

    def record_community_failure(self, community: str) -> None:
        COMMUNITY_FAILURES.labels(community=community).inc()

    def record_api_error(self, error_type: str) -> None:
        """
        Record an API error.

        Args:
            error_type: Type of API error (e.g., '5xx', '429', 'connection')
        """
        API_ERRORS.labels(error_type=error_type).inc()

    def set_consecutive_5xx_errors(self, count: int) -> None:
        CONSECUTIVE_5XX_ERRORS.set(count)

    def record_summarizer_fallback(self, operation: str) -> None:
        SUMMARIZER_FALLBACKS.labels(operation=operation).inc()

    def record_job_started(self) -> None:
        JOBS_IN_FLIGHT.inc()

    def record_job_finished(self, status: str) -> None:
        JOBS_IN_FLIGHT.dec()
        JOBS_FINISHED.labels(status=status).inc()

    def time_request(self) -> "RequestTimer":
        """
        Create a context manager for timing source API requests.

        Returns:
            RequestTimer context manager
        """
        return RequestTimer()


class RequestTimer:
    """Context manager for timing API requests."""

    def __init__(self):
        self.start_time: Optional[float] = None

    def __enter__(self) -> "RequestTimer":
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is not None:
            duration = time.time() - self.start_time
            REQUEST_DURATION.observe(duration)
