"""
Analysis job endpoints.

Start a job, poll its status and fetch its result. Errors raised by the
orchestrator are mapped to HTTP responses by the handlers in ``api.main``.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, status

from userpulse.core.orchestrator import JobOrchestrator
from userpulse.models.dtos import AnalysisResult, JobStatusView, JobSubmitted, MiningRequest

router = APIRouter()
logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> JobOrchestrator:
    """Orchestrator of the running application."""
    return request.app.state.service.orchestrator


@router.post(
    "/start",
    response_model=JobSubmitted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start an analysis job",
)
async def start_analysis(
    body: MiningRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobSubmitted:
    """Create a job for ``body`` and return its id immediately; the work runs in the background."""
    job_id = await orchestrator.submit(body)
    return JobSubmitted(job_id=job_id)


@router.get("/status", response_model=JobStatusView, summary="Poll an analysis job")
async def job_status(
    job_id: str = Query(..., alias="jobId", min_length=1),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobStatusView:
    return await orchestrator.poll(job_id)


@router.get(
    "/result",
    response_model=AnalysisResult,
    summary="Fetch the result of a completed job",
    responses={202: {"description": "The job has not finished yet"}, 404: {"description": "Unknown job id"}},
)
async def job_result(
    job_id: str = Query(..., alias="jobId", min_length=1),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> AnalysisResult:
    return await orchestrator.fetch_result(job_id)
