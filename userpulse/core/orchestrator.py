"""
Job orchestration: submit, poll, fetch and wait.

``submit`` returns as soon as the job is recorded; the work itself runs in
an ``asyncio`` task owned by the orchestrator, which guarantees that every
job ends in ``completed`` or ``failed``.
"""

import asyncio
import logging
import secrets
from typing import Awaitable, Callable, Optional, Set

from userpulse.config.settings import Settings, settings as default_settings
from userpulse.core.errors import JobAlreadyExists, JobFailed, JobNotFound, JobNotReady, JobTimeout
from userpulse.core.job_store import JobStore
from userpulse.models.dtos import AnalysisResult, JobStatus, JobStatusView, JobUpdate, MiningRequest

logger = logging.getLogger(__name__)

Runner = Callable[[str, MiningRequest], Awaitable[AnalysisResult]]

STARTED_LOG = "[System] Background analysis started"
ID_ATTEMPTS = 5


def new_job_id() -> str:
    return secrets.token_urlsafe(12)


class JobOrchestrator:
    """Creates jobs, runs them in the background and serves their state."""

    def __init__(
        self,
        store: JobStore,
        runner: Runner,
        settings: Optional[Settings] = None,
        prometheus_exporter=None,
    ):
        self.store = store
        self.runner = runner
        self.settings = settings or default_settings
        self.prometheus_exporter = prometheus_exporter
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def submit(self, request: MiningRequest) -> str:
        """Record a new job, start it in the background and return its id without waiting."""
        for _ in range(ID_ATTEMPTS):
            job_id = new_job_id()
            try:
                await self.store.create(job_id)
                break
            except JobAlreadyExists:
                logger.warning(f"Job id collision on {job_id}; generating another")
        else:
            raise JobAlreadyExists(job_id)

        await self.store.patch(job_id, JobUpdate(status=JobStatus.RUNNING, append_logs=[STARTED_LOG]))
        logger.info(f"Submitted job {job_id} for {request.entity} vs {', '.join(request.competitors)}")

        task = asyncio.create_task(self._execute(job_id, request), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if self.prometheus_exporter:
            self.prometheus_exporter.record_job_started()
        return job_id

    async def _execute(self, job_id: str, request: MiningRequest) -> None:
        status = JobStatus.FAILED
        try:
            result = await self.runner(job_id, request)
            await self.store.complete(job_id, result)
            status = JobStatus.COMPLETED
            logger.info(f"Job {job_id} completed")
        except asyncio.CancelledError:
            logger.warning(f"Job {job_id} cancelled")
            await self.store.fail(job_id, "Job cancelled")
            raise
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=True)
            await self.store.fail(job_id, str(e) or e.__class__.__name__)
        finally:
            if self.prometheus_exporter:
                self.prometheus_exporter.record_job_finished(status.value)

    async def poll(self, job_id: str) -> JobStatusView:
        """Return the job's status, progress and the tail of its log."""
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return JobStatusView(
            id=job.id,
            status=job.status,
            progress=job.progress,
            logs=job.logs[-self.settings.JOB_LOG_TAIL:],
            error=job.error,
            has_result=job.result is not None,
        )

    async def fetch_result(self, job_id: str) -> AnalysisResult:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if job.result is None:
            raise JobNotReady(job_id)
        return job.result

    async def wait(
        self,
        job_id: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> AnalysisResult:
        """
        Poll until the job is terminal.

        Raises:
            JobFailed: The job ended in ``failed``.
            JobTimeout: ``timeout`` elapsed first. The background task keeps
                running and will still record its outcome.
        """
        timeout = self.settings.POLL_TIMEOUT_SECONDS if timeout is None else timeout
        poll_interval = self.settings.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            job = await self.store.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.status == JobStatus.COMPLETED and job.result is not None:
                return job.result
            if job.status == JobStatus.FAILED:
                raise JobFailed(job_id, job.error)

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise JobTimeout(job_id, timeout)
            await asyncio.sleep(min(poll_interval, remaining))

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Give running jobs ``timeout`` seconds to finish, then cancel the rest."""
        if not self._tasks:
            return
        timeout = self.settings.SHUTDOWN_GRACE_SECONDS if timeout is None else timeout
        tasks = list(self._tasks)
        logger.info(f"Waiting up to {timeout:.1f}s for {len(tasks)} running job(s)")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} unfinished job(s) at shutdown")
