from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from linkpool.models.domain import DomainStatus
from linkpool.store import JsonFileRecordStore, RedisRecordStore


@pytest.fixture(params=["file", "redis"])
def store(request, tmp_path, fake_redis):
    if request.param == "file":
        return JsonFileRecordStore(tmp_path)
    return RedisRecordStore(fake_redis, prefix="concurrency")


@pytest.mark.asyncio
async def test_concurrent_round_robin_visits_each_domain_evenly(registry, selector, add_active):
    domains = [await add_active(f"rr{i}.example.com") for i in range(3)]

    selections = await asyncio.gather(*(selector.select_global() for _ in range(2 * len(domains))))

    picks = Counter(selection.domain_id for selection in selections)
    assert picks == {domain.id: 2 for domain in domains}
    for domain in domains:
        assert (await registry.find_by_id(domain.id)).total_requests == 2


@pytest.mark.asyncio
async def test_concurrent_failure_reports_keep_every_increment(registry, tracker, add_active):
    domain = await add_active("busy.example.com")

    await asyncio.gather(*(tracker.report_request_failure(domain.id) for _ in range(20)))

    stored = await registry.find_by_id(domain.id)
    assert stored.consecutive_failures == 20
    assert stored.total_failures == 20
    assert stored.status == DomainStatus.BANNED
