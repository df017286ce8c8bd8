import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_endpoint_returns_service_metadata(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["service"]
    # Status can be "ok" or "degraded" depending on datastore availability
    assert payload["status"] in ["ok", "degraded"]
    assert "datastores" in payload
    assert payload["datastores"]["database"] == {"status": "ok"}
    assert "event_bus" in payload["datastores"]


@pytest.mark.asyncio
async def test_health_reports_request_id(async_client: AsyncClient) -> None:
    response = await async_client.get("/health", headers={"x-request-id": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
