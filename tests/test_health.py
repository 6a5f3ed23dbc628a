from __future__ import annotations

import pytest

from linkpool.models.domain import DomainStatus


@pytest.mark.asyncio
async def test_health_endpoints(client):
    liveness = await client.get("/health/liveliness")
    readiness = await client.get("/health/readiness")
    health = await client.get("/health")

    assert liveness.status_code == 200
    assert liveness.json()["status"] == "ok"
    assert readiness.status_code == 200
    assert readiness.json()["checks"] == {"store": True}
    assert health.status_code == 200
    payload = health.json()
    assert payload["liveliness"] == "ok"
    assert payload["readiness"]["status"] == "ok"


@pytest.mark.asyncio
async def test_readiness_degraded_when_store_down(client, test_app):
    class DownStore:
        async def ping(self):
            return False

    test_app.state.store = DownStore()

    response = await client.get("/health/readiness")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_domains_health_endpoint(client, test_app):
    registry = test_app.state.domain_registry

    empty = await client.get("/health/domains")
    assert empty.status_code == 200
    assert empty.json()["total_count"] == 0

    await registry.add("a.example.com", status=DomainStatus.BANNED)
    down = await client.get("/health/domains")
    assert down.status_code == 503
    assert down.json()["status"] == "unhealthy"

    await registry.add("b.example.com", status=DomainStatus.ACTIVE)
    degraded = await client.get("/health/domains")
    assert degraded.status_code == 200
    assert degraded.json()["status"] == "degraded"

