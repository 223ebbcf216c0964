"""
API endpoint tests
"""

import httpx
import pytest
import pytest_asyncio
from unittest.mock import MagicMock, patch
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from api.main import app
from api.dependencies import get_db, get_http_transport
from core.config import settings
from ingestion.loaders.raw_loader import RawIngestionStore
from ingestion.scheduler import SyncScheduler
from ingestion.sync_config import SyncConfigService
from models.base import Provider, SyncMode
from models.credentials import ProviderCredential


@pytest_asyncio.fixture
async def client(session_factory):
    """ASGI client with the database dependency pointed at the test database"""
    
    async def override_get_db():
        async with session_factory() as session:
            yield session
    
    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    
    app.dependency_overrides.clear()
    app.state.scheduler = None


@pytest.mark.asyncio
async def test_health_with_empty_database(client):
    response = await client.get("/health")
    
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database_connected"] is True
    assert [p["provider"] for p in data["providers"]] == ["eitje", "bork"]
    assert all(p["mode"] == "manual" for p in data["providers"])
    assert response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    response = await client.get("/", headers={"X-Request-ID": "abc-123"})
    
    assert response.headers["X-Request-ID"] == "abc-123"


@pytest.mark.asyncio
async def test_get_sync_config_creates_defaults(client):
    response = await client.get("/sync-config", params={"provider": "bork"})
    
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["mode"] == "manual"
    assert data["enabled_endpoints"] == ["tickets"]
    assert data["worker_interval_minutes"] == 5


@pytest.mark.asyncio
async def test_update_sync_config_registers_scheduler_job(client):
    app.state.scheduler = SyncScheduler(scheduler=AsyncIOScheduler(timezone="UTC"))
    
    response = await client.post("/sync-config", json={"mode": "incremental", "incremental_interval_minutes": 15})
    
    assert response.status_code == 200
    body = response.json()
    assert body["data"]["mode"] == "incremental"
    assert body["data"]["incremental_interval_minutes"] == 15
    assert body["scheduler_job"] == "eitje-incremental"
    assert body["warning"] is None


@pytest.mark.asyncio
async def test_scheduler_failure_is_a_warning(client):
    scheduler = MagicMock()
    scheduler.toggle.side_effect = RuntimeError("scheduler down")
    app.state.scheduler = scheduler
    
    response = await client.post("/sync-config", json={"mode": "backfill"})
    
    assert response.status_code == 200
    assert response.json()["data"]["mode"] == "backfill"
    assert "scheduler down" in response.json()["warning"]


@pytest.mark.asyncio
async def test_invalid_sync_config_is_rejected(client):
    response = await client.post("/sync-config", json={"worker_interval_minutes": 0})
    
    assert response.status_code == 400
    assert response.json()["success"] is False
    
    response = await client.post("/sync-config", json={"enabled_endpoints": ["bogus"]})
    
    assert response.status_code == 400
    assert "bogus" in response.json()["error"]


@pytest.mark.asyncio
async def test_backfill_plan_and_status(client, session_factory):
    response = await client.post("/sync/backfill", json={
        "start_date": "2024-01-01",
        "end_date": "2024-01-20",
        "endpoints": ["revenue_days"],
        "chunk_days": 7,
    })
    
    assert response.status_code == 200
    plan = response.json()
    assert plan["success"] is True
    assert plan["total_chunks"] == 3
    assert plan["chunks"][-1] == {"start": "2024-01-15", "end": "2024-01-20"}
    
    async with session_factory() as session:
        assert (await SyncConfigService(session).get(Provider.EITJE)).mode == SyncMode.BACKFILL
    
    status = (await client.get("/sync/backfill/status")).json()["data"]
    assert status[0]["id"] == plan["progress_id"]
    assert status[0]["queue"]["pending"] == 3
    
    cleanup = (await client.post("/sync/backfill/cleanup")).json()
    assert cleanup == {"success": True, "progress_cancelled": 1, "queue_items_cancelled": 3}


@pytest.mark.asyncio
async def test_backfill_rejects_chunks_wider_than_the_endpoint_allows(client):
    response = await client.post("/sync/backfill", json={
        "start_date": "2024-01-01",
        "end_date": "2024-01-31",
        "endpoints": ["time_registration_shifts"],
        "chunk_days": 14,
    })
    
    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_backfill_rejects_malformed_dates(client):
    response = await client.post("/sync/backfill", json={"start_date": "2024/01/01"})
    
    assert response.status_code == 400
    assert "start_date" in response.json()["error"]


@pytest.mark.asyncio
async def test_backfill_worker_skips_in_manual_mode(client):
    response = await client.post("/sync/backfill-worker")
    
    assert response.status_code == 200
    assert response.json()["skipped"] is True


@pytest.mark.asyncio
async def test_incremental_skips_outside_incremental_mode(client):
    response = await client.post("/sync/incremental", params={"provider": "bork"})
    
    assert response.status_code == 200
    assert response.json() == {"success": True, "skipped": True, "message": "Skipped - mode is manual"}


@pytest.mark.asyncio
async def test_manual_sync_validation_and_credentials(client):
    response = await client.post("/sync/manual", json={
        "endpoint": "time_registration_shifts", "start_date": "2024-03-01", "end_date": "2024-03-31",
    })
    assert response.status_code == 400
    
    response = await client.post("/sync/manual", params={"provider": "bork"}, json={
        "endpoint": "tickets", "start_date": "2024-03-01", "end_date": "2024-03-01", "location_id": "loc-9",
    })
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["data"]["failed_stage"] == "credentials"
    assert "loc-9" in body["error"]


@pytest.mark.asyncio
async def test_aggregate_endpoint(client, session_factory, revenue_records, no_wait_limiter):
    async with session_factory() as session:
        await RawIngestionStore(session, rate_limiter=no_wait_limiter).store(
            Provider.EITJE, "revenue_days", revenue_records
        )
    
    response = await client.post("/aggregate", json={
        "endpoint": "revenue_days", "start_date": "2024-03-01", "end_date": "2024-03-01",
    })
    
    assert response.status_code == 200
    assert response.json() == {"success": True, "recordsAggregated": 1, "failedGroups": []}


@pytest.mark.asyncio
async def test_aggregate_rejects_unknown_endpoint(client):
    response = await client.post("/aggregate", json={
        "endpoint": "users", "start_date": "2024-03-01", "end_date": "2024-03-01",
    })
    
    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_gaps_and_progress(client, session_factory, revenue_records, no_wait_limiter):
    async with session_factory() as session:
        await RawIngestionStore(session, rate_limiter=no_wait_limiter).store(
            Provider.EITJE, "revenue_days", revenue_records
        )
    
    gaps = (await client.get("/sync/gaps", params={
        "endpoint": "revenue_days", "start_date": "2024-03-01", "end_date": "2024-03-03",
    })).json()["data"]
    assert gaps["missing_dates"] == ["2024-03-02", "2024-03-03"]
    
    progress = (await client.get("/sync/progress", params={
        "start_date": "2024-03-01", "end_date": "2024-03-31", "endpoints": ["revenue_days"],
    })).json()["data"]
    assert progress["revenue_days"][0]["synced_days"] == 1
    assert progress["revenue_days"][0]["total_days"] == 31


@pytest.mark.asyncio
async def test_api_key_guards_mutating_routes(client):
    with patch.object(settings, "API_KEY", "secret"):
        rejected = await client.post("/sync/backfill/cleanup")
        accepted = await client.post("/sync/backfill/cleanup", headers={"X-API-Key": "secret"})
        reads = await client.get("/sync/backfill/status")
    
    assert rejected.status_code == 401
    assert rejected.json()["success"] is False
    assert accepted.status_code == 200
    assert reads.status_code == 200


@pytest.mark.asyncio
async def test_unexpected_errors_return_the_error_envelope(client):
    with patch("api.routes.sync.ProgressTracker.backfill_status", side_effect=RuntimeError("boom")):
        response = await client.get("/sync/backfill/status")
    
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "boom"}


@pytest.mark.asyncio
async def test_connection_check_uses_stored_credentials(client, session_factory):
    seen = []
    
    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[{"Key": "T1"}])
    
    async with session_factory() as session:
        session.add(ProviderCredential(
            provider=Provider.BORK,
            location_id="loc-1",
            base_url="https://bork.test/api",
            credentials={"api_key": "bork-key"},
            is_active=True,
        ))
        await session.commit()
    app.dependency_overrides[get_http_transport] = lambda: httpx.MockTransport(handler)
    
    response = await client.get("/sync/test-connection", params={"provider": "bork", "location_id": "loc-1"})
    
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["success"] is True
    assert data["location_id"] == "loc-1"
    assert seen[0].url.params["appid"] == "bork-key"


@pytest.mark.asyncio
async def test_connection_check_reports_provider_failures(client, session_factory):
    async with session_factory() as session:
        session.add(ProviderCredential(
            provider=Provider.BORK,
            location_id="loc-1",
            base_url="https://bork.test/api",
            credentials={"api_key": "wrong"},
            is_active=True,
        ))
        await session.commit()
    app.dependency_overrides[get_http_transport] = lambda: httpx.MockTransport(lambda r: httpx.Response(403))
    
    response = await client.get("/sync/test-connection", params={"provider": "bork", "location_id": "loc-1"})
    
    assert response.status_code == 502
    assert response.json()["success"] is False
    assert response.json()["data"]["status_code"] == 403


@pytest.mark.asyncio
async def test_connection_check_needs_a_bork_location(client):
    response = await client.get("/sync/test-connection", params={"provider": "bork"})
    
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Bork requires a location_id"}
