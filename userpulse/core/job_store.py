"""
Job storage.

``JobStore`` is the interface the orchestrator and pipeline depend on;
``InMemoryJobStore`` keeps jobs in a dict for the lifetime of the process.
All mutations go through ``patch``/``complete``/``fail`` so the monotonicity
rules (status only moves forward, progress never decreases, terminal jobs are
frozen) are enforced in one place.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from userpulse.core.errors import JobAlreadyExists
from userpulse.models.dtos import AnalysisResult, Job, JobStatus, JobUpdate, RawRecord, utc_now

logger = logging.getLogger(__name__)

QUEUED_LOG = "[System] Job queued"
COMPLETED_LOG = "[System] Job completed"


class JobStore(ABC):
    """Storage interface for analysis jobs."""

    @abstractmethod
    async def create(self, job_id: str) -> Job:
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def patch(self, job_id: str, update: JobUpdate) -> Optional[Job]:
        ...

    @abstractmethod
    async def complete(self, job_id: str, result: AnalysisResult) -> Optional[Job]:
        ...

    @abstractmethod
    async def fail(self, job_id: str, message: str) -> Optional[Job]:
        ...


class InMemoryJobStore(JobStore):
    """Process-local job store. Snapshots returned by ``get`` are deep copies."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    async def create(self, job_id: str) -> Job:
        async with self._lock:
            if job_id in self._jobs:
                raise JobAlreadyExists(job_id)
            job = Job(id=job_id, status=JobStatus.QUEUED, progress=0, logs=[QUEUED_LOG])
            self._jobs[job_id] = job
            logger.debug(f"Created job {job_id}")
            return job.model_copy(deep=True)

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def patch(self, job_id: str, update: JobUpdate) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job.status.is_terminal:
                logger.debug(f"Ignoring update to terminal job {job_id}")
                return job.model_copy(deep=True)

            if update.status is not None:
                if update.status.is_terminal:
                    logger.debug(f"Terminal status for {job_id} must go through complete/fail")
                elif update.status.order >= job.status.order:
                    job.status = update.status
                else:
                    logger.debug(f"Ignoring status regression {job.status.value} -> {update.status.value} for {job_id}")

            if update.progress is not None:
                job.progress = max(job.progress, min(100, max(0, update.progress)))

            if update.append_logs:
                job.logs.extend(update.append_logs)

            if update.collected is not None:
                job.collected = list(update.collected)

            job.updated_at = utc_now()
            return job.model_copy(deep=True)

    async def complete(self, job_id: str, result: AnalysisResult) -> Optional[Job]:
        return await self._finish(job_id, JobStatus.COMPLETED, result=result, log_line=COMPLETED_LOG)

    async def fail(self, job_id: str, message: str) -> Optional[Job]:
        return await self._finish(job_id, JobStatus.FAILED, error=message, log_line=f"[System] Error: {message}")

    async def _finish(
        self,
        job_id: str,
        status: JobStatus,
        *,
        log_line: str,
        result: Optional[AnalysisResult] = None,
        error: Optional[str] = None,
    ) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job.status.is_terminal:
                logger.debug(f"Job {job_id} already {job.status.value}; ignoring {status.value}")
                return job.model_copy(deep=True)
            job.status = status
            job.progress = 100
            job.result = result
            job.error = error
            job.logs.append(log_line)
            job.updated_at = utc_now()
            return job.model_copy(deep=True)


class JobReporter:
    """Progress and log writer bound to a single job."""

    def __init__(self, store: JobStore, job_id: str):
        self.store = store
        self.job_id = job_id

    async def log(self, *lines: str) -> None:
        for line in lines:
            logger.info(f"[{self.job_id}] {line}")
        await self.store.patch(self.job_id, JobUpdate(append_logs=list(lines)))

    async def progress(self, pct: int, line: Optional[str] = None) -> None:
        lines: List[str] = [line] if line else []
        for entry in lines:
            logger.info(f"[{self.job_id}] {entry}")
        await self.store.patch(self.job_id, JobUpdate(progress=pct, append_logs=lines))

    async def collected(self, records: Sequence[RawRecord]) -> None:
        await self.store.patch(self.job_id, JobUpdate(collected=list(records)))
