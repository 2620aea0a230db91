"""
Caller-side run loop: submit a job, stream its log and wait for the result.

When the poll ceiling elapses the caller still gets a report: one built
locally from whatever raw records the job had collected so far.
"""

import asyncio
import logging
from typing import Callable, Optional

from userpulse.config.settings import Settings, settings as default_settings
from userpulse.core.errors import JobFailed, JobNotFound
from userpulse.core.job_store import JobStore
from userpulse.core.orchestrator import JobOrchestrator
from userpulse.core.report import build_fallback_report
from userpulse.models.dtos import AnalysisResult, JobStatus, MiningRequest

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], None]


class AnalysisClient:
    """Runs a mining request to completion against an orchestrator."""

    def __init__(self, orchestrator: JobOrchestrator, store: JobStore, settings: Optional[Settings] = None):
        self.orchestrator = orchestrator
        self.store = store
        self.settings = settings or default_settings

    async def run(
        self,
        request: MiningRequest,
        timeout: Optional[float] = None,
        on_log: Optional[LogCallback] = None,
        poll_interval: Optional[float] = None,
    ) -> AnalysisResult:
        """
        Submit ``request`` and poll until it finishes.

        Raises:
            JobFailed: The job ended in ``failed``.
        """
        timeout = self.settings.POLL_TIMEOUT_SECONDS if timeout is None else timeout
        poll_interval = self.settings.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval

        job_id = await self.orchestrator.submit(request)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        forwarded = 0

        while True:
            job = await self.store.get(job_id)
            if job is None:
                raise JobNotFound(job_id)

            if on_log and len(job.logs) > forwarded:
                for line in job.logs[forwarded:]:
                    on_log(line)
                forwarded = len(job.logs)

            if job.status == JobStatus.COMPLETED and job.result is not None:
                return job.result
            if job.status == JobStatus.FAILED:
                raise JobFailed(job_id, job.error)

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(poll_interval, remaining))

        logger.warning(
            f"Job {job_id} still {job.status.value} after {timeout:.0f}s; "
            f"building local report from {len(job.collected)} collected items"
        )
        result = build_fallback_report(
            job.collected,
            request.entities,
            request.days,
            appendix_rows=self.settings.FALLBACK_APPENDIX_ROWS,
        )
        if on_log:
            on_log(
                f"[Writer] Generated local fallback report with {result.coverage.total_items_used} items "
                f"across {len(result.coverage.communities_used)} subreddits."
            )
        return result
