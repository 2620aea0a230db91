"""Exception hierarchy for the UserPulse service."""

from typing import Any, Optional


class UserPulseError(Exception):
    """Base class for all service errors. ``status_code`` is used by the HTTP layer."""

    status_code: int = 500

    def __init__(self, message: str = "", *, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class UpstreamUnavailable(UserPulseError):
    """A discussion source or the summarizer could not be reached."""
    status_code = 502


class RateLimited(UpstreamUnavailable):
    """An upstream answered with a rate-limit response after retries were exhausted."""
    status_code = 429

    def __init__(self, message: str = "", *, retry_after: Optional[float] = None, details: Optional[Any] = None):
        super().__init__(message, details=details)
        self.retry_after = retry_after


class MalformedUpstreamResponse(UserPulseError):
    """An upstream reply could not be parsed or did not match the expected schema."""
    status_code = 502


class InvalidRequestError(UserPulseError):
    """A mining request failed validation."""
    status_code = 400


class JobNotFound(UserPulseError):
    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Invalid job id: {job_id}")
        self.job_id = job_id


class JobNotReady(UserPulseError):
    status_code = 202

    def __init__(self, job_id: str):
        super().__init__("Not ready")
        self.job_id = job_id


class JobAlreadyExists(UserPulseError):
    status_code = 409

    def __init__(self, job_id: str):
        super().__init__(f"Job already exists: {job_id}")
        self.job_id = job_id


class JobFailed(UserPulseError):
    """Raised to a waiting caller when the job ended in ``failed``."""

    def __init__(self, job_id: str, error: Optional[str]):
        super().__init__(error or "Job failed")
        self.job_id = job_id
        self.error = error


class JobTimeout(UserPulseError):
    """Raised to a waiting caller when the poll ceiling elapsed. The job keeps running."""
    status_code = 504

    def __init__(self, job_id: str, timeout: float):
        super().__init__(f"Job {job_id} did not finish within {timeout:.0f}s")
        self.job_id = job_id
        self.timeout = timeout
