import asyncio
from unittest.mock import MagicMock

import pytest

from userpulse.core.errors import JobFailed, JobNotFound, JobNotReady, JobTimeout, UpstreamUnavailable
from userpulse.core.job_store import COMPLETED_LOG, QUEUED_LOG, InMemoryJobStore
from userpulse.core.orchestrator import STARTED_LOG, JobOrchestrator
from userpulse.models.dtos import AnalysisResult, CoverageMeta, JobStatus, MiningRequest, ReportSections


def make_result() -> AnalysisResult:
    return AnalysisResult(
        report=ReportSections(header="# header", raw="# report"),
        coverage=CoverageMeta(days=30),
    )


@pytest.fixture
def request_model() -> MiningRequest:
    return MiningRequest(entity="Acme", competitors=["Globex"], communities=["SaaS"])


def make_orchestrator(runner, test_settings, exporter=None):
    store = InMemoryJobStore()
    return store, JobOrchestrator(store, runner, settings=test_settings, prometheus_exporter=exporter)


@pytest.mark.asyncio
async def test_submit_returns_before_runner_finishes(test_settings, request_model):
    gate = asyncio.Event()

    async def runner(job_id, request):
        await gate.wait()
        return make_result()

    store, orchestrator = make_orchestrator(runner, test_settings)

    job_id = await orchestrator.submit(request_model)
    view = await orchestrator.poll(job_id)

    assert view.status == JobStatus.RUNNING
    assert view.logs[:2] == [QUEUED_LOG, STARTED_LOG]
    assert orchestrator.in_flight == 1

    gate.set()
    result = await orchestrator.wait(job_id)
    assert result.report.raw == "# report"


@pytest.mark.asyncio
async def test_job_ids_are_unique(test_settings, request_model):
    async def runner(job_id, request):
        return make_result()

    _, orchestrator = make_orchestrator(runner, test_settings)

    ids = {await orchestrator.submit(request_model) for _ in range(20)}

    assert len(ids) == 20
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_successful_job_completes(test_settings, request_model):
    async def runner(job_id, request):
        return make_result()

    exporter = MagicMock()
    store, orchestrator = make_orchestrator(runner, test_settings, exporter)

    job_id = await orchestrator.submit(request_model)
    await orchestrator.wait(job_id)

    job = await store.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.logs[-1] == COMPLETED_LOG
    exporter.record_job_started.assert_called_once()
    exporter.record_job_finished.assert_called_once_with("completed")


@pytest.mark.asyncio
async def test_runner_exception_fails_job(test_settings, request_model):
    async def runner(job_id, request):
        raise UpstreamUnavailable("all communities failed for Acme")

    store, orchestrator = make_orchestrator(runner, test_settings)

    job_id = await orchestrator.submit(request_model)
    with pytest.raises(JobFailed) as excinfo:
        await orchestrator.wait(job_id)

    assert excinfo.value.error == "all communities failed for Acme"
    view = await orchestrator.poll(job_id)
    assert view.status == JobStatus.FAILED
    assert view.error == "all communities failed for Acme"
    assert view.logs[-1] == "[System] Error: all communities failed for Acme"


@pytest.mark.asyncio
async def test_poll_and_fetch_unknown_job(test_settings):
    async def runner(job_id, request):
        return make_result()

    _, orchestrator = make_orchestrator(runner, test_settings)

    with pytest.raises(JobNotFound):
        await orchestrator.poll("nope")
    with pytest.raises(JobNotFound):
        await orchestrator.fetch_result("nope")


@pytest.mark.asyncio
async def test_fetch_result_before_completion_is_not_ready(test_settings, request_model):
    gate = asyncio.Event()

    async def runner(job_id, request):
        await gate.wait()
        return make_result()

    _, orchestrator = make_orchestrator(runner, test_settings)
    job_id = await orchestrator.submit(request_model)

    with pytest.raises(JobNotReady):
        await orchestrator.fetch_result(job_id)

    gate.set()
    await orchestrator.wait(job_id)
    result = await orchestrator.fetch_result(job_id)
    assert result.report.raw == "# report"


@pytest.mark.asyncio
async def test_poll_returns_log_tail(test_settings, request_model):
    test_settings.JOB_LOG_TAIL = 3

    async def runner(job_id, request):
        return make_result()

    _, orchestrator = make_orchestrator(runner, test_settings)
    job_id = await orchestrator.submit(request_model)
    await orchestrator.wait(job_id)

    view = await orchestrator.poll(job_id)
    assert len(view.logs) == 3
    assert view.logs[-1] == COMPLETED_LOG
    assert view.has_result is True


@pytest.mark.asyncio
async def test_wait_times_out_without_cancelling(test_settings, request_model):
    gate = asyncio.Event()

    async def runner(job_id, request):
        await gate.wait()
        return make_result()

    store, orchestrator = make_orchestrator(runner, test_settings)
    job_id = await orchestrator.submit(request_model)

    with pytest.raises(JobTimeout):
        await orchestrator.wait(job_id, timeout=0.05)

    assert (await store.get(job_id)).status == JobStatus.RUNNING
    gate.set()
    await orchestrator.wait(job_id)
    assert (await store.get(job_id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_shutdown_cancels_unfinished_jobs(test_settings, request_model):
    async def runner(job_id, request):
        await asyncio.sleep(60)
        return make_result()

    store, orchestrator = make_orchestrator(runner, test_settings)
    job_id = await orchestrator.submit(request_model)
    await asyncio.sleep(0)

    await orchestrator.shutdown(timeout=0.05)

    job = await store.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "Job cancelled"
    assert orchestrator.in_flight == 0


@pytest.mark.asyncio
async def test_every_job_reaches_a_terminal_state(test_settings):
    async def runner(job_id, request):
        await asyncio.sleep(0.01)
        if request.entity.startswith("bad"):
            raise RuntimeError("boom")
        return make_result()

    store, orchestrator = make_orchestrator(runner, test_settings)
    requests = [
        MiningRequest(entity=f"{prefix}{i}", competitors=["Globex"], communities=["SaaS"])
        for i, prefix in enumerate(["good", "bad", "good", "bad"])
    ]
    ids = [await orchestrator.submit(r) for r in requests]

    await orchestrator.shutdown(timeout=2)

    statuses = [(await store.get(job_id)).status for job_id in ids]
    assert statuses == [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.COMPLETED, JobStatus.FAILED]
