import pytest


@pytest.mark.asyncio
async def test_health_reports_configuration(client):
    resp = await client.get("/api/v1/system/health")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "ok"
    assert data["rate_limit_enabled"] is False
    assert data["storage_bucket"]


@pytest.mark.asyncio
async def test_root_banner(client):
    resp = await client.get("/")
    assert resp.json()["message"] == "AgricJournal API is running"


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client):
    resp = await client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
