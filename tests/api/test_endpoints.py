"""
API endpoint tests
"""

import httpx
import pytest
import pytest_asyncio
from api.main import app
from api.dependencies import get_db, get_job_store
from jobs.handlers import MONITOR_CHECK
from tests.helpers import create_monitor


@pytest_asyncio.fixture
async def client(db_session, job_store):
    """Client bound to the app in the test's event loop, with database overrides"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_store] = lambda: job_store

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_endpoint_database_connected(client, job_store):
    """Test health endpoint returns database and queue status"""
    await job_store.enqueue(MONITOR_CHECK, {"monitor_id": 1})

    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["database_connected"] is True
    assert data["workers_enabled"] is False
    assert data["workers_running"] is False
    assert data["status"] == "healthy"
    assert data["jobs"] == {"queued": 1, "started": 0, "done": 0, "failed": 0}


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "req_abc123"})

    assert response.headers["X-Request-ID"] == "req_abc123"
    assert "X-API-Latency-ms" in response.headers


@pytest.mark.asyncio
async def test_request_id_is_generated(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.headers["X-Request-ID"].startswith("req_")


# ============================================================================
# On-demand checks
# ============================================================================

@pytest.mark.asyncio
async def test_enqueue_check(client, db_session):
    monitor = await create_monitor(db_session)

    first = await client.post(f"/monitors/{monitor.id}/check")
    second = await client.post(f"/monitors/{monitor.id}/check")

    assert first.status_code == 202
    assert first.json()["status"] == "queued"
    assert first.json()["job_id"] is not None
    assert first.json()["monitor_id"] == monitor.id

    assert second.status_code == 202
    assert second.json()["status"] == "already_queued"
    assert second.json()["job_id"] is None


@pytest.mark.asyncio
async def test_enqueue_check_unknown_monitor(client):
    response = await client.post("/monitors/9999/check")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_enqueue_check_inactive_monitor(client, db_session, job_store):
    monitor = await create_monitor(db_session, active=False)

    response = await client.post(f"/monitors/{monitor.id}/check")

    assert response.status_code == 409
    assert await job_store.count_jobs_by_status() == {"queued": 0, "started": 0, "done": 0, "failed": 0}


# ============================================================================
# Job events
# ============================================================================

@pytest.mark.asyncio
async def test_job_events_for_monitor(client, db_session):
    monitor = await create_monitor(db_session)
    other = await create_monitor(db_session, name="other")
    queued = (await client.post(f"/monitors/{monitor.id}/check")).json()
    await client.post(f"/monitors/{other.id}/check")

    response = await client.get("/jobs/events", params={"monitor_id": monitor.id})

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    event = data["events"][0]
    assert event["type"] == MONITOR_CHECK
    assert event["status"] == "queued"
    assert event["message"] == "requested via API"
    assert event["job_id"] == str(queued["job_id"])


@pytest.mark.asyncio
async def test_job_events_rejects_bad_limit(client):
    response = await client.get("/jobs/events", params={"limit": 0})

    assert response.status_code == 422
