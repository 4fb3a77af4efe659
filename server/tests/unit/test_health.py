"""Unit tests for health endpoints."""

import pytest


@pytest.mark.asyncio
async def test_health_ping_rpc(test_client):
    """Test the RPC-style health ping endpoint."""
    response = await test_client.post("/v1/health/ping", json={})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "seatline-api"
    assert data["version"] == "1.0.0"
    assert "timestamp" in data
    assert set(data["workers"]) == {"hold_expiry", "overbooking_expiry", "trip_status", "no_show"}
    assert not any(data["workers"].values())


@pytest.mark.asyncio
async def test_metrics_exposition(test_client):
    """Prometheus exposition carries the reservation counters."""
    response = await test_client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "parcel_otp_mismatches_total" in response.text
