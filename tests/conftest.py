from __future__ import annotations

import random
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from redis.exceptions import WatchError

from linkpool.config import AppConfig, GeneralSettings, Settings
from linkpool.main import create_app, init_services
from linkpool.models.domain import DomainStatus, PoolConfig
from linkpool.pool import ConsumerBindingManager, DomainRegistry, DomainSelector, FailureTracker
from linkpool.store import InMemoryRecordStore

MASTER_KEY = "sk-admin-test"
UNBIND_CODE = "unbind-test-code"


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.versions: dict[str, int] = {}
        # Number of upcoming EXEC calls that fail as if a watched key changed.
        self.forced_conflicts = 0
        self.exec_calls = 0
        self.closed = False

    def _touch(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    async def get(self, key: str):
        return self.store.get(key)

    async def set(self, key: str, value: str):
        self.store[key] = value
        self._touch(key)
        return True

    async def delete(self, *keys: str):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self._touch(key)
        return removed

    async def mget(self, keys):
        return [self.store.get(key) for key in keys]

    async def sadd(self, key: str, *members: str):
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    async def srem(self, key: str, *members: str):
        values = self.sets.get(key, set())
        for member in members:
            values.discard(member)
        return len(members)

    async def smembers(self, key: str):
        return set(self.sets.get(key, set()))

    def pipeline(self, transaction: bool = True):
        return FakePipeline(self)

    async def ping(self):
        return True

    async def close(self):
        self.closed = True


class FakePipeline:
    """Mimics redis-py pipelines: immediate after WATCH, buffered otherwise or after MULTI."""

    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.ops: list[tuple[str, tuple]] = []
        self.watched: dict[str, int] = {}
        self.immediate = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.reset()
        return None

    async def reset(self):
        self.ops.clear()
        self.watched.clear()
        self.immediate = False

    async def watch(self, *keys: str):
        for key in keys:
            self.watched[key] = self.redis.versions.get(key, 0)
        self.immediate = True

    def multi(self):
        self.immediate = False

    def _command(self, name: str, *args: Any):
        if self.immediate:
            return getattr(self.redis, name)(*args)
        self.ops.append((name, args))
        return self

    def get(self, key: str):
        return self._command("get", key)

    def set(self, key: str, value: str):
        return self._command("set", key, value)

    def delete(self, *keys: str):
        return self._command("delete", *keys)

    def sadd(self, key: str, *members: str):
        return self._command("sadd", key, *members)

    def srem(self, key: str, *members: str):
        return self._command("srem", key, *members)

    async def execute(self):
        self.redis.exec_calls += 1
        try:
            if self.redis.forced_conflicts > 0:
                self.redis.forced_conflicts -= 1
                raise WatchError("watched key changed")
            for key, version in self.watched.items():
                if self.redis.versions.get(key, 0) != version:
                    raise WatchError("watched key changed")

            results = []
            for name, args in self.ops:
                results.append(await getattr(self.redis, name)(*args))
            return results
        finally:
            self.ops.clear()
            self.watched.clear()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def registry(store) -> DomainRegistry:
    return DomainRegistry(store, pool_defaults=PoolConfig(max_failures=3))


@pytest.fixture
def selector(registry) -> DomainSelector:
    return DomainSelector(registry, rng=random.Random(7))


@pytest.fixture
def tracker(registry) -> FailureTracker:
    return FailureTracker(registry)


@pytest.fixture
def bindings(registry, selector, store) -> ConsumerBindingManager:
    return ConsumerBindingManager(registry, selector, store, unbind_confirmation_code=UNBIND_CODE)


@pytest.fixture
def add_active(registry):
    async def _add(host: str, **kwargs: Any):
        return await registry.add(host=host, status=DomainStatus.ACTIVE, **kwargs)

    return _add


@pytest.fixture
async def test_app() -> FastAPI:
    app = create_app()
    cfg = AppConfig(
        general_settings=GeneralSettings(
            master_key=MASTER_KEY,
            unbind_confirmation_code=UNBIND_CODE,
            background_health_checks=False,
            store_backend="memory",
        )
    )
    settings = Settings(store_backend="memory", config_path="does-not-exist.yaml")
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    await init_services(app, cfg, settings, store=InMemoryRecordStore(), http_client=http_client)
    try:
        yield app
    finally:
        await http_client.aclose()


@pytest.fixture
async def client(test_app: FastAPI):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {MASTER_KEY}"}


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def unbind_code() -> str:
    return UNBIND_CODE
