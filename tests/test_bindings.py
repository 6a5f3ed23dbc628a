from __future__ import annotations

import pytest

from linkpool.models.domain import BindingRole, DomainStatus, FallbackSelectionMode, UpdatePoolConfigRequest
from linkpool.models.errors import NotFoundError, RejectedError
from linkpool.pool import ConsumerBindingManager, FailureTracker
from linkpool.store import CONSUMERS


def _ban(record):
    record.status = DomainStatus.BANNED
    return record


@pytest.mark.asyncio
async def test_get_config_creates_default(bindings, store):
    config = await bindings.get_config("lc-1")

    assert config.consumer_id == "lc-1"
    assert config.primary_domain is None
    assert config.fallback_domains.domain_ids == []
    assert await store.get("consumers", "lc-1") is not None


@pytest.mark.asyncio
async def test_legacy_config_is_backfilled(bindings, store, add_active):
    a = await add_active("a.example.com")
    await store.put("consumers", "lc-1", {"consumer_id": "lc-1", "fallback_domains": {"domain_ids": [a.id]}})

    config = await bindings.get_config("lc-1")

    assert config.fallback_domains.priority == [0]
    assert config.fallback_domains.selection_mode == FallbackSelectionMode.SEQUENTIAL
    assert config.fallback_domains.stats.total_redirects == 0


@pytest.mark.asyncio
async def test_bind_primary_is_permanent(bindings, add_active):
    a = await add_active("a.example.com")
    b = await add_active("b.example.com")

    config = await bindings.bind_primary("lc-1", a.id, confirmed=True)
    assert config.primary_domain.domain_id == a.id
    assert config.primary_domain.locked is True

    with pytest.raises(RejectedError) as exc:
        await bindings.bind_primary("lc-1", b.id, confirmed=True)
    assert exc.value.code == "primary_locked"
    assert (await bindings.get_config("lc-1")).primary_domain.domain_id == a.id

    info = await bindings.get_binding_info(a.id)
    assert [(row.consumer_id, row.role) for row in info.bindings] == [("lc-1", BindingRole.PRIMARY)]


@pytest.mark.asyncio
async def test_bind_primary_rejections(bindings, registry, add_active):
    testing = await registry.add("new.example.com")
    active = await add_active("a.example.com")

    with pytest.raises(RejectedError) as not_confirmed:
        await bindings.bind_primary("lc-1", active.id, confirmed=False)
    assert not_confirmed.value.code == "not_confirmed"

    with pytest.raises(NotFoundError):
        await bindings.bind_primary("lc-1", "missing", confirmed=True)

    with pytest.raises(RejectedError) as not_active:
        await bindings.bind_primary("lc-1", testing.id, confirmed=True)
    assert not_active.value.code == "domain_not_active"

    assert (await bindings.get_config("lc-1")).primary_domain is None


@pytest.mark.asyncio
async def test_unbind_primary_requires_force_and_code(bindings, add_active, unbind_code):
    a = await add_active("a.example.com")
    await bindings.bind_primary("lc-1", a.id, confirmed=True)

    with pytest.raises(RejectedError) as no_force:
        await bindings.unbind_primary("lc-1", force_unbind=False, confirmation_token=unbind_code)
    assert no_force.value.code == "force_required"

    with pytest.raises(RejectedError) as bad_code:
        await bindings.unbind_primary("lc-1", force_unbind=True, confirmation_token="nope")
    assert bad_code.value.code == "invalid_confirmation"

    config = await bindings.unbind_primary("lc-1", force_unbind=True, confirmation_token=unbind_code)
    assert config.primary_domain is None
    assert (await bindings.get_binding_info(a.id)).bindings == []

    with pytest.raises(RejectedError) as not_bound:
        await bindings.unbind_primary("lc-1", force_unbind=True, confirmation_token=unbind_code)
    assert not_bound.value.code == "primary_not_bound"


@pytest.mark.asyncio
async def test_unbind_rejected_without_configured_code(registry, selector, store, add_active):
    manager = ConsumerBindingManager(registry, selector, store, unbind_confirmation_code=None)
    a = await add_active("a.example.com")
    await manager.bind_primary("lc-1", a.id, confirmed=True)

    with pytest.raises(RejectedError) as exc:
        await manager.unbind_primary("lc-1", force_unbind=True, confirmation_token="")
    assert exc.value.code == "invalid_confirmation"


@pytest.mark.asyncio
async def test_duplicate_fallback_rejected_and_config_unchanged(bindings, add_active):
    a = await add_active("a.example.com")
    b = await add_active("b.example.com")
    await bindings.update_fallback_config("lc-1", {"domain_ids": [a.id]})

    with pytest.raises(RejectedError) as exc:
        await bindings.update_fallback_config("lc-1", {"domain_ids": [b.id, a.id, b.id]})
    assert exc.value.code == "duplicate_domain"

    assert (await bindings.get_config("lc-1")).fallback_domains.domain_ids == [a.id]


@pytest.mark.asyncio
async def test_fallback_update_validates_ids_and_priority(bindings, add_active):
    a = await add_active("a.example.com")

    with pytest.raises(NotFoundError):
        await bindings.update_fallback_config("lc-1", {"domain_ids": [a.id, "missing"]})

    with pytest.raises(RejectedError) as exc:
        await bindings.update_fallback_config("lc-1", {"domain_ids": [a.id], "priority": [1, 2]})
    assert exc.value.code == "invalid_priority"


@pytest.mark.asyncio
async def test_fallback_update_reconciles_binding_rows(bindings, add_active):
    a = await add_active("a.example.com")
    b = await add_active("b.example.com")
    c = await add_active("c.example.com")
    await bindings.bind_primary("lc-1", a.id, confirmed=True)

    await bindings.update_fallback_config("lc-1", {"domain_ids": [a.id, b.id]})
    config = await bindings.update_fallback_config(
        "lc-1",
        {"domain_ids": [c.id, b.id], "priority": [5, 1], "selection_mode": "random"},
    )

    assert config.fallback_domains.domain_ids == [c.id, b.id]
    assert config.fallback_domains.selection_mode == FallbackSelectionMode.RANDOM
    a_rows = (await bindings.get_binding_info(a.id)).bindings
    assert [(r.consumer_id, r.role) for r in a_rows] == [("lc-1", BindingRole.PRIMARY)]
    b_rows = (await bindings.get_binding_info(b.id)).bindings
    assert [(r.role, r.priority) for r in b_rows] == [(BindingRole.FALLBACK, 1)]
    c_rows = (await bindings.get_binding_info(c.id)).bindings
    assert [(r.role, r.priority) for r in c_rows] == [(BindingRole.FALLBACK, 5)]
    assert {e.domain_id for e in await bindings.list_bindings()} == {a.id, b.id, c.id}


@pytest.mark.asyncio
async def test_sequential_fallback_picks_first_active_and_counts(bindings, registry, add_active):
    a = await add_active("a.example.com")
    b = await add_active("b.example.com")
    await bindings.update_fallback_config("lc-1", {"domain_ids": [b.id, a.id]})

    first = await bindings.select_for_consumer("lc-1")
    assert first.domain_id == b.id
    assert first.source == "consumer"

    await registry.mutate_domain(b.id, _ban)
    second = await bindings.select_for_consumer("lc-1")
    assert second.domain_id == a.id

    stats = (await bindings.get_config("lc-1")).fallback_domains.stats
    assert stats.total_redirects == 2
    assert stats.per_domain[b.id].redirect_count == 1
    assert stats.per_domain[a.id].redirect_count == 1
    assert (await registry.find_by_id(a.id)).total_requests == 0


@pytest.mark.asyncio
async def test_round_robin_fallback_rotates_by_order(bindings, add_active):
    a = await add_active("a.example.com", order=1)
    b = await add_active("b.example.com", order=2)
    await add_active("c.example.com", order=3)
    await bindings.update_fallback_config("lc-1", {"domain_ids": [b.id, a.id], "selection_mode": "round-robin"})

    picks = [(await bindings.select_for_consumer("lc-1")).domain_id for _ in range(3)]

    assert picks == [a.id, b.id, a.id]


@pytest.mark.asyncio
async def test_fallback_uses_mode_stored_at_selection_time(bindings, registry, store, add_active, monkeypatch):
    a = await add_active("a.example.com", order=1)
    b = await add_active("b.example.com", order=2)
    await bindings.update_fallback_config("lc-1", {"domain_ids": [b.id, a.id], "selection_mode": "round-robin"})

    list_domains = registry.list

    async def _list_after_mode_change():
        # An admin switches the consumer to sequential while the redirect is in flight.
        def _switch(current):
            current["fallback_domains"]["selection_mode"] = "sequential"
            return current, None

        await store.transact(CONSUMERS, "lc-1", _switch)
        return await list_domains()

    monkeypatch.setattr(registry, "list", _list_after_mode_change)
    selection = await bindings.select_for_consumer("lc-1")
    monkeypatch.setattr(registry, "list", list_domains)

    fallback = (await bindings.get_config("lc-1")).fallback_domains
    assert selection.domain_id == b.id
    assert fallback.selection_mode == FallbackSelectionMode.SEQUENTIAL
    assert fallback.cursor == 0


@pytest.mark.asyncio
async def test_primary_is_never_a_landing_target(bindings, registry, add_active):
    a = await add_active("a.example.com")
    b = await add_active("b.example.com")
    await bindings.bind_primary("lc-1", a.id, confirmed=True)
    await bindings.update_fallback_config("lc-1", {"domain_ids": [b.id]})

    selection = await bindings.select_for_consumer("lc-1")

    assert selection.domain_id == b.id


@pytest.mark.asyncio
async def test_empty_fallback_falls_through_to_global(bindings, registry, add_active):
    x = await add_active("x.example.com")
    y = await add_active("y.example.com")

    selection = await bindings.select_for_consumer("lc-1")

    assert selection.source == "global"
    assert selection.domain_id in {x.id, y.id}
    chosen = await registry.find_by_id(selection.domain_id)
    assert chosen.total_requests == 1
    assert await bindings.store.get("consumers", "lc-1") is None


@pytest.mark.asyncio
async def test_banned_fallback_and_inactive_pool_is_unavailable(bindings, registry, add_active, store):
    a = await add_active("a.example.com")
    await bindings.update_fallback_config("lc-1", {"domain_ids": [a.id]})
    await registry.update_pool_config(UpdatePoolConfigRequest(is_active=False))

    tracker = FailureTracker(registry)
    for _ in range(3):
        await tracker.report_request_failure(a.id)

    assert await bindings.select_for_consumer("lc-1") is None
    assert (await bindings.get_config("lc-1")).fallback_domains.stats.total_redirects == 0


@pytest.mark.asyncio
async def test_reset_stats_and_remove_consumer(bindings, add_active):
    a = await add_active("a.example.com")
    await bindings.update_fallback_config("lc-1", {"domain_ids": [a.id], "selection_mode": "round-robin"})
    await bindings.select_for_consumer("lc-1")

    reset = await bindings.reset_fallback_stats("lc-1")
    assert reset.fallback_domains.stats.total_redirects == 0
    assert reset.fallback_domains.cursor == 0

    assert await bindings.remove_consumer("lc-1") is True
    assert (await bindings.get_binding_info(a.id)).bindings == []
    assert await bindings.remove_consumer("lc-1") is False
    with pytest.raises(NotFoundError):
        await bindings.reset_fallback_stats("lc-1")


@pytest.mark.asyncio
async def test_domain_delete_cascades_to_fallbacks_not_primary(bindings, registry, add_active):
    a = await add_active("a.example.com")
    b = await add_active("b.example.com")
    await bindings.bind_primary("lc-1", a.id, confirmed=True)
    await bindings.update_fallback_config("lc-1", {"domain_ids": [a.id, b.id], "priority": [2, 1]})

    await registry.delete(a.id)

    config = await bindings.get_config("lc-1")
    assert config.fallback_domains.domain_ids == [b.id]
    assert config.fallback_domains.priority == [1]
    assert config.primary_domain.domain_id == a.id
    assert a.id not in {e.domain_id for e in await bindings.list_bindings()}
    with pytest.raises(NotFoundError):
        await bindings.get_binding_info(a.id)
