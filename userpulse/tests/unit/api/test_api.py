import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from userpulse.api.main import create_app
from userpulse.core.service import build_service
from userpulse.tests.stubs import FakeSource, FakeSummarizer, make_post

START_URL = "/api/v1/analyze/start"
STATUS_URL = "/api/v1/analyze/status"
RESULT_URL = "/api/v1/analyze/result"


@pytest.fixture
def service(test_settings):
    source = FakeSource(
        posts={"SaaS": [make_post("a1", "Acme is great"), make_post("g1", "Globex bug again")]},
        match_variants=True,
    )
    return build_service(test_settings, source=source, summarizer=FakeSummarizer())


@pytest_asyncio.fixture
async def client(service):
    app = create_app(service=service)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as ac:
        yield ac
    await service.orchestrator.shutdown()


async def wait_for_completion(client, job_id, attempts=200):
    for _ in range(attempts):
        response = await client.get(STATUS_URL, params={"jobId": job_id})
        if response.json()["status"] in ("completed", "failed"):
            return response
        await asyncio.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["jobs_in_flight"] == 0


@pytest.mark.asyncio
async def test_start_returns_job_id_immediately(client):
    response = await client.post(START_URL, json={"entity": "Acme", "competitors": ["Globex"]})

    assert response.status_code == 202
    assert response.json()["jobId"]


@pytest.mark.asyncio
async def test_start_poll_and_fetch_result(client):
    response = await client.post(
        START_URL,
        json={"entity": "Acme", "competitors": ["Globex"], "communities": ["r/SaaS"], "days": 7, "minScore": 1},
    )
    job_id = response.json()["jobId"]

    status_response = await wait_for_completion(client, job_id)
    status_body = status_response.json()
    assert status_body["status"] == "completed"
    assert status_body["progress"] == 100
    assert status_body["hasResult"] is True
    assert status_body["logs"][-1] == "[System] Job completed"

    result = await client.get(RESULT_URL, params={"jobId": job_id})
    assert result.status_code == 200
    body = result.json()
    assert "Competitive Intelligence Report" in body["report"]["raw"]
    assert body["report"]["appendixCsv"].startswith("Competitor,Aspect")
    assert body["coverage"]["days"] == 7
    assert body["coverage"]["communitiesUsed"] == ["SaaS"]


@pytest.mark.asyncio
async def test_result_before_completion_is_202(service):
    gate = asyncio.Event()

    async def blocked(job_id, request):
        await gate.wait()

    service.orchestrator.runner = blocked
    app = create_app(service=service)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as ac:
        job_id = (await ac.post(START_URL, json={"entity": "Acme", "competitors": ["Globex"]})).json()["jobId"]

        response = await ac.get(RESULT_URL, params={"jobId": job_id})
        assert response.status_code == 202
        assert response.json() == {"error": "Not ready"}

        status_response = await ac.get(STATUS_URL, params={"jobId": job_id})
        assert status_response.json()["status"] == "running"

    await service.orchestrator.shutdown(timeout=0)


@pytest.mark.asyncio
async def test_unknown_job_is_404(client):
    for url in (STATUS_URL, RESULT_URL):
        response = await client.get(url, params={"jobId": "does-not-exist"})
        assert response.status_code == 404
        assert response.json() == {"error": "Invalid job id"}


@pytest.mark.asyncio
async def test_missing_job_id_is_400(client):
    response = await client.get(STATUS_URL)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid input data"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"competitors": ["Globex"]},
        {"entity": "Acme", "competitors": []},
        {"entity": "Acme", "competitors": ["A", "B", "C", "D"]},
        {"entity": "Acme", "competitors": ["acme"]},
        {"entity": "   ", "competitors": ["Globex"]},
        {"entity": "Acme", "competitors": ["Globex"], "days": 0},
    ],
)
async def test_invalid_start_payload_is_400(client, payload):
    response = await client.post(START_URL, json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid input data"
    assert body["details"]


@pytest.mark.asyncio
async def test_failed_job_reports_error(service):
    service.source.posts = {"SaaS": RuntimeError("boom"), "startups": RuntimeError("boom")}
    app = create_app(service=service)
    payload = {"entity": "Acme", "competitors": ["Globex"], "communities": ["SaaS", "startups"]}
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as ac:
        job_id = (await ac.post(START_URL, json=payload)).json()["jobId"]
        status_response = await wait_for_completion(ac, job_id)

        body = status_response.json()
        assert body["status"] == "failed"
        assert "community searches failed" in body["error"]

        result = await ac.get(RESULT_URL, params={"jobId": job_id})
        assert result.status_code == 202
