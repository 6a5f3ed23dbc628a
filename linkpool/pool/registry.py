from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable

from linkpool.metrics import clear_domain_state, set_domain_state
from linkpool.models.domain import (
    DomainRecord,
    DomainStatus,
    PoolConfig,
    UpdateDomainRequest,
    UpdatePoolConfigRequest,
    normalize_host,
    normalize_path,
    utcnow,
)
from linkpool.models.errors import NotFoundError, RejectedError
from linkpool.store.base import DELETE, DOMAINS, POOL, POOL_KEY, RecordStore

logger = logging.getLogger(__name__)

DomainListener = Callable[[DomainRecord], Awaitable[None] | None]
ConfigListener = Callable[[PoolConfig, PoolConfig], Awaitable[None] | None]


def _new_domain_id() -> str:
    return f"domain-{uuid.uuid4().hex[:12]}"


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json")


class DomainRegistry:
    """CRUD over domain records and the pool config singleton."""

    def __init__(
        self,
        store: RecordStore,
        pool_defaults: PoolConfig | None = None,
        id_factory: Callable[[], str] = _new_domain_id,
    ) -> None:
        self.store = store
        self.pool_defaults = pool_defaults or PoolConfig()
        self.id_factory = id_factory
        # add/update check host and order uniqueness across records.
        self._structure_lock = asyncio.Lock()
        self._delete_listeners: list[DomainListener] = []
        self._config_listeners: list[ConfigListener] = []

    def on_delete(self, callback: DomainListener) -> None:
        self._delete_listeners.append(callback)

    def on_config_change(self, callback: ConfigListener) -> None:
        self._config_listeners.append(callback)

    # -- pool config -------------------------------------------------------

    async def get_pool_config(self) -> PoolConfig:
        raw = await self.store.get(POOL, POOL_KEY)
        if raw is not None:
            return PoolConfig.model_validate(raw)

        defaults = _dump(self.pool_defaults)

        def _create(current: dict[str, Any] | None) -> tuple[Any, dict[str, Any]]:
            if current is not None:
                return None, current
            return defaults, defaults

        return PoolConfig.model_validate(await self.store.transact(POOL, POOL_KEY, _create))

    async def mutate_pool_config(self, fn: Callable[[PoolConfig], tuple[PoolConfig | None, Any]]) -> Any:
        """Atomically apply `fn` to the pool config; `fn` returns `(new_config, result)`."""
        defaults = _dump(self.pool_defaults)

        def _apply(current: dict[str, Any] | None) -> tuple[Any, Any]:
            config = PoolConfig.model_validate(current if current is not None else defaults)
            updated, result = fn(config)
            if updated is None:
                return (None if current is not None else defaults), result
            updated.updated_at = utcnow()
            return _dump(updated), result

        return await self.store.transact(POOL, POOL_KEY, _apply)

    async def update_pool_config(self, updates: UpdatePoolConfigRequest) -> PoolConfig:
        changes = updates.model_dump(exclude_none=True)

        def _apply(config: PoolConfig) -> tuple[PoolConfig, tuple[PoolConfig, PoolConfig]]:
            before = config.model_copy()
            after = config.model_copy(update=changes)
            return after, (before, after)

        before, after = await self.mutate_pool_config(_apply)
        logger.info("pool config updated: %s", changes)
        for listener in self._config_listeners:
            outcome = listener(before, after)
            if asyncio.iscoroutine(outcome):
                await outcome
        return after

    # -- domains -----------------------------------------------------------

    async def list(self) -> list[DomainRecord]:
        records = [DomainRecord.model_validate(raw) for raw in await self.store.list(DOMAINS)]
        return sorted(records, key=lambda d: (d.order, d.created_at, d.id))

    async def find_by_id(self, domain_id: str) -> DomainRecord | None:
        raw = await self.store.get(DOMAINS, domain_id)
        return DomainRecord.model_validate(raw) if raw is not None else None

    async def require(self, domain_id: str) -> DomainRecord:
        domain = await self.find_by_id(domain_id)
        if domain is None:
            raise NotFoundError(message=f"Domain '{domain_id}' not found", param="domain_id")
        return domain

    async def add(
        self,
        host: str,
        protocol: str = "https",
        weight: int | None = None,
        order: int | None = None,
        health_check_path: str | None = None,
        status: DomainStatus | str | None = None,
    ) -> DomainRecord:
        try:
            host = normalize_host(host)
        except ValueError as exc:
            raise RejectedError(message=str(exc), param="host", code="invalid_host") from exc
        if weight is not None and int(weight) < 1:
            raise RejectedError(message="weight must be a positive integer", param="weight", code="invalid_weight")

        async with self._structure_lock:
            existing = await self.list()
            self._check_unique(existing, host=host, order=order)
            if order is None:
                order = max((d.order for d in existing), default=0) + 1

            now = utcnow()
            domain = DomainRecord(
                id=self.id_factory(),
                host=host,
                protocol=protocol,
                status=DomainStatus(status) if status else DomainStatus.TESTING,
                weight=int(weight or 1),
                order=int(order),
                health_check_path=normalize_path(health_check_path),
                created_at=now,
                updated_at=now,
            )
            await self.store.put(DOMAINS, domain.id, _dump(domain))

        set_domain_state(domain_id=domain.id, host=domain.host, status=domain.status.value)
        logger.info("domain added: %s (%s, order=%d)", domain.host, domain.status.value, domain.order)
        return domain

    async def update(self, domain_id: str, updates: UpdateDomainRequest | dict[str, Any]) -> DomainRecord:
        if isinstance(updates, dict):
            try:
                updates = UpdateDomainRequest.model_validate(updates)
            except ValueError as exc:
                raise RejectedError(message=str(exc), code="invalid_update") from exc
        changes = updates.model_dump(exclude_none=True)
        if "health_check_path" in changes:
            changes["health_check_path"] = normalize_path(changes["health_check_path"])

        async with self._structure_lock:
            if "host" in changes or "order" in changes:
                others = [d for d in await self.list() if d.id != domain_id]
                self._check_unique(others, host=changes.get("host"), order=changes.get("order"))

            def _apply(domain: DomainRecord) -> DomainRecord:
                was_banned = domain.status == DomainStatus.BANNED
                updated = domain.model_copy(update=changes)
                updated.status = DomainStatus(updated.status)
                # Leaving banned by hand starts a fresh failure streak.
                if was_banned and updated.status != DomainStatus.BANNED:
                    updated.consecutive_failures = 0
                return updated

            domain = await self.mutate_domain(domain_id, _apply)

        if domain is None:
            raise NotFoundError(message=f"Domain '{domain_id}' not found", param="domain_id")
        set_domain_state(domain_id=domain.id, host=domain.host, status=domain.status.value)
        return domain

    async def toggle_status(self, domain_id: str) -> DomainRecord:
        """Flip active <-> inactive. Banned and testing domains are left alone."""

        def _apply(domain: DomainRecord) -> DomainRecord:
            if domain.status == DomainStatus.ACTIVE:
                domain.status = DomainStatus.INACTIVE
            elif domain.status == DomainStatus.INACTIVE:
                domain.status = DomainStatus.ACTIVE
            else:
                raise RejectedError(
                    message=f"Cannot toggle a domain in '{domain.status.value}' status",
                    param="status",
                    code="invalid_status_toggle",
                )
            return domain

        domain = await self.mutate_domain(domain_id, _apply)
        if domain is None:
            raise NotFoundError(message=f"Domain '{domain_id}' not found", param="domain_id")
        set_domain_state(domain_id=domain.id, host=domain.host, status=domain.status.value)
        return domain

    async def delete(self, domain_id: str) -> bool:
        def _remove(current: dict[str, Any] | None) -> tuple[Any, DomainRecord | None]:
            if current is None:
                return None, None
            return DELETE, DomainRecord.model_validate(current)

        async with self._structure_lock:
            removed: DomainRecord | None = await self.store.transact(DOMAINS, domain_id, _remove)
        if removed is None:
            return False

        def _shift_cursor(config: PoolConfig) -> tuple[PoolConfig | None, None]:
            if removed.order < config.round_robin_cursor:
                config.round_robin_cursor = max(0, config.round_robin_cursor - 1)
                return config, None
            return None, None

        await self.mutate_pool_config(_shift_cursor)
        clear_domain_state(domain_id=removed.id, host=removed.host)
        for listener in self._delete_listeners:
            outcome = listener(removed)
            if asyncio.iscoroutine(outcome):
                await outcome
        logger.info("domain deleted: %s", removed.host)
        return True

    async def mutate_domain(
        self,
        domain_id: str,
        fn: Callable[[DomainRecord], DomainRecord | None],
    ) -> DomainRecord | None:
        """Atomic read-modify-write of one domain record. Returns None when it does not exist."""

        def _apply(current: dict[str, Any] | None) -> tuple[Any, DomainRecord | None]:
            if current is None:
                return None, None
            domain = DomainRecord.model_validate(current)
            updated = fn(domain)
            if updated is None:
                return None, domain
            updated.id = domain.id
            updated.updated_at = utcnow()
            return _dump(updated), updated

        return await self.store.transact(DOMAINS, domain_id, _apply)

    async def statistics(self) -> dict[str, Any]:
        domains = await self.list()
        total_requests = sum(d.total_requests for d in domains)
        total_failures = sum(d.total_failures for d in domains)
        consecutive = sum(d.consecutive_failures for d in domains)

        if total_requests > 0:
            success_rate = max(0.0, (total_requests - total_failures) / total_requests * 100)
        elif total_failures > 0 or consecutive > 0:
            success_rate = 0.0
        else:
            success_rate = 100.0

        def _count(status: DomainStatus) -> int:
            return sum(1 for d in domains if d.status == status)

        return {
            "total_domains": len(domains),
            "active_domains": _count(DomainStatus.ACTIVE),
            "banned_domains": _count(DomainStatus.BANNED),
            "inactive_domains": _count(DomainStatus.INACTIVE),
            "testing_domains": _count(DomainStatus.TESTING),
            "total_requests": total_requests,
            "total_failures": total_failures,
            "success_rate": round(success_rate, 2),
        }

    @staticmethod
    def _check_unique(existing: list[DomainRecord], host: str | None, order: int | None) -> None:
        if host is not None and any(d.host == host for d in existing):
            raise RejectedError(message=f"Domain '{host}' already exists", param="host", code="duplicate_host")
        if order is not None and any(d.order == int(order) for d in existing):
            raise RejectedError(message=f"Order {order} is already in use", param="order", code="duplicate_order")
