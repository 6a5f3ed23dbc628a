from __future__ import annotations

import pytest

from linkpool.models.domain import DomainStatus


class StoppedConsumers:
    async def is_running(self, consumer_id: str) -> bool:
        return consumer_id != "lc-stopped"


@pytest.mark.asyncio
async def test_link_without_id_goes_to_error_page(client):
    response = await client.get("/api/link")

    assert response.status_code == 302
    assert response.headers["location"] == "/h5/error.html"


@pytest.mark.asyncio
async def test_link_redirects_to_landing_page(client, test_app):
    registry = test_app.state.domain_registry
    await registry.add("land.example.com", status=DomainStatus.ACTIVE)

    response = await client.get("/api/link", params={"id": "lc 1"})

    assert response.status_code == 302
    assert response.headers["location"] == "https://land.example.com/h5/landing?id=lc+1"


@pytest.mark.asyncio
async def test_link_uses_fallback_domains(client, test_app):
    registry = test_app.state.domain_registry
    await registry.add("pool.example.com", status=DomainStatus.ACTIVE)
    fallback = await registry.add("fallback.example.com", protocol="http", status=DomainStatus.ACTIVE)
    await test_app.state.binding_manager.update_fallback_config("lc-1", {"domain_ids": [fallback.id]})

    response = await client.get("/api/link", params={"id": "lc-1"})

    assert response.headers["location"] == "http://fallback.example.com/h5/landing?id=lc-1"


@pytest.mark.asyncio
async def test_link_without_available_domain_goes_to_error_page(client):
    response = await client.get("/api/link", params={"id": "lc-1"})

    assert response.status_code == 302
    assert response.headers["location"] == "/h5/error.html"


@pytest.mark.asyncio
async def test_link_for_stopped_consumer_goes_to_error_page(client, test_app):
    await test_app.state.domain_registry.add("land.example.com", status=DomainStatus.ACTIVE)
    test_app.state.consumer_directory = StoppedConsumers()

    stopped = await client.get("/api/link", params={"id": "lc-stopped"})
    running = await client.get("/api/link", params={"id": "lc-running"})

    assert stopped.headers["location"] == "/h5/error.html"
    assert running.headers["location"].startswith("https://land.example.com/")


@pytest.mark.asyncio
async def test_link_selection_error_degrades_to_error_page(client, test_app):
    class BrokenBindings:
        async def select_for_consumer(self, consumer_id):
            raise RuntimeError("store offline")

    test_app.state.binding_manager = BrokenBindings()

    response = await client.get("/api/link", params={"id": "lc-1"})

    assert response.status_code == 302
    assert response.headers["location"] == "/h5/error.html"
