from __future__ import annotations

import logging
import secrets
from typing import Any, Callable

from linkpool.metrics import increment_selection, increment_selection_unavailable
from linkpool.models.domain import (
    BindingRecord,
    BindingRole,
    ConsumerDomainConfig,
    DomainBindings,
    DomainRecord,
    DomainSelection,
    DomainStatus,
    FallbackDomainStat,
    FallbackDomainsUpdate,
    FallbackSelectionMode,
    FallbackStats,
    PrimaryDomain,
    SelectionStrategy,
    utcnow,
)
from linkpool.models.errors import NotFoundError, RejectedError
from linkpool.pool.registry import DomainRegistry
from linkpool.pool.selector import DomainSelector
from linkpool.store.base import BINDINGS, CONSUMERS, DELETE, RecordStore

logger = logging.getLogger(__name__)

ConfigMutator = Callable[[ConsumerDomainConfig], tuple[ConsumerDomainConfig | None, Any]]


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json")


class ConsumerBindingManager:
    """Per-consumer domain configuration: locked primary, fallback list and selection.

    The primary domain is the consumer's entry identity and is never returned by
    `select_for_consumer`; landing traffic always goes to fallback or pool domains.
    """

    def __init__(
        self,
        registry: DomainRegistry,
        selector: DomainSelector,
        store: RecordStore,
        unbind_confirmation_code: str | None = None,
    ):
        self.registry = registry
        self.selector = selector
        self.store = store
        self.unbind_confirmation_code = unbind_confirmation_code
        registry.on_delete(self._on_domain_deleted)

    async def get_config(self, consumer_id: str) -> ConsumerDomainConfig:
        raw = await self.store.get(CONSUMERS, consumer_id)
        if raw is not None:
            return ConsumerDomainConfig.model_validate(raw)
        return await self._mutate_config(consumer_id, lambda config: (None, config))

    async def update_fallback_config(
        self,
        consumer_id: str,
        fallback_domains: FallbackDomainsUpdate | dict[str, Any] | None,
        strategy: SelectionStrategy | str | None = None,
    ) -> ConsumerDomainConfig:
        try:
            if isinstance(fallback_domains, dict):
                fallback_domains = FallbackDomainsUpdate.model_validate(fallback_domains)
            if strategy is not None:
                strategy = SelectionStrategy(strategy)
        except ValueError as exc:
            raise RejectedError(message=str(exc), param="fallback_domains", code="invalid_update") from exc

        domains: dict[str, DomainRecord] = {}
        ids: list[str] = []
        priority: list[int] = []
        if fallback_domains is not None:
            ids = list(fallback_domains.domain_ids)
            duplicates = sorted({domain_id for domain_id in ids if ids.count(domain_id) > 1})
            if duplicates:
                raise RejectedError(
                    message=f"Domain listed more than once: {', '.join(duplicates)}",
                    param="fallback_domains.domain_ids",
                    code="duplicate_domain",
                )
            if fallback_domains.priority is not None and len(fallback_domains.priority) != len(ids):
                raise RejectedError(
                    message="priority must have one entry per domain id",
                    param="fallback_domains.priority",
                    code="invalid_priority",
                )
            priority = list(fallback_domains.priority) if fallback_domains.priority is not None else list(range(len(ids)))

            domains = {d.id: d for d in await self.registry.list()}
            missing = [domain_id for domain_id in ids if domain_id not in domains]
            if missing:
                raise NotFoundError(
                    message=f"Domain '{missing[0]}' not found",
                    param="fallback_domains.domain_ids",
                )

        def _apply(config: ConsumerDomainConfig) -> tuple[ConsumerDomainConfig, tuple[list[str], ConsumerDomainConfig]]:
            previous = list(config.fallback_domains.domain_ids)
            if fallback_domains is not None:
                fallback = config.fallback_domains
                fallback.domain_ids = list(ids)
                fallback.priority = list(priority)
                if fallback_domains.selection_mode is not None:
                    fallback.selection_mode = fallback_domains.selection_mode
                if fallback_domains.failover_enabled is not None:
                    fallback.failover_enabled = fallback_domains.failover_enabled
                fallback.updated_at = utcnow()
            if strategy is not None:
                config.strategy = strategy
            return config, (previous, config)

        previous, config = await self._mutate_config(consumer_id, _apply)

        if fallback_domains is not None:
            for domain_id in set(previous) - set(ids):
                await self._remove_binding(domain_id, consumer_id, BindingRole.FALLBACK)
            for domain_id, rank in zip(ids, priority, strict=False):
                await self._put_binding(domains[domain_id], consumer_id, BindingRole.FALLBACK, rank)
            logger.info("fallback domains for %s set to %s", consumer_id, ids)
        return config

    async def bind_primary(self, consumer_id: str, domain_id: str, confirmed: bool) -> ConsumerDomainConfig:
        if confirmed is not True:
            raise RejectedError(
                message="Binding a primary domain is permanent and must be confirmed",
                param="confirmed",
                code="not_confirmed",
            )

        current = await self.get_config(consumer_id)
        if current.primary_domain is not None and current.primary_domain.locked:
            raise self._locked_error()

        domain = await self.registry.find_by_id(domain_id)
        if domain is None:
            raise NotFoundError(message=f"Domain '{domain_id}' not found", param="domain_id")
        if domain.status != DomainStatus.ACTIVE:
            raise RejectedError(
                message=f"Domain '{domain.host}' is {domain.status.value}, only active domains can be bound",
                param="domain_id",
                code="domain_not_active",
            )

        def _apply(config: ConsumerDomainConfig) -> tuple[ConsumerDomainConfig, ConsumerDomainConfig]:
            # Re-checked here: a concurrent bind may have won since the read above.
            if config.primary_domain is not None and config.primary_domain.locked:
                raise self._locked_error()
            config.primary_domain = PrimaryDomain(
                domain_id=domain.id,
                host=domain.host,
                protocol=domain.protocol,
                locked_at=utcnow(),
                locked=True,
            )
            return config, config

        config = await self._mutate_config(consumer_id, _apply)
        await self._put_binding(domain, consumer_id, BindingRole.PRIMARY)
        logger.info("primary domain %s locked for %s", domain.host, consumer_id)
        return config

    async def unbind_primary(self, consumer_id: str, force_unbind: bool, confirmation_token: str) -> ConsumerDomainConfig:
        """Administrative override that clears a locked primary domain."""
        if force_unbind is not True:
            raise RejectedError(
                message="Unbinding a primary domain requires force_unbind",
                param="force_unbind",
                code="force_required",
            )
        expected = self.unbind_confirmation_code
        if not expected or not secrets.compare_digest(
            str(confirmation_token or "").encode("utf-8"), expected.encode("utf-8")
        ):
            raise RejectedError(
                message="Invalid confirmation code",
                param="confirmation_code",
                code="invalid_confirmation",
            )

        def _apply(config: ConsumerDomainConfig) -> tuple[ConsumerDomainConfig, tuple[ConsumerDomainConfig, PrimaryDomain]]:
            if config.primary_domain is None:
                raise RejectedError(
                    message="No primary domain is bound",
                    param="consumer_id",
                    code="primary_not_bound",
                )
            removed = config.primary_domain
            config.primary_domain = None
            return config, (config, removed)

        config, removed = await self._mutate_config(consumer_id, _apply, create=False)
        await self._remove_binding(removed.domain_id, consumer_id, BindingRole.PRIMARY)
        logger.warning("primary domain %s force-unbound from %s", removed.host, consumer_id)
        return config

    async def select_for_consumer(self, consumer_id: str) -> DomainSelection | None:
        """Fallback list first, then the global pool. None means no redirect target."""
        raw = await self.store.get(CONSUMERS, consumer_id)
        if raw is not None:
            config = ConsumerDomainConfig.model_validate(raw)
            if config.fallback_domains.domain_ids:
                selection = await self._select_fallback(consumer_id)
                if selection is not None:
                    return selection

        selection = await self.selector.select_global()
        if selection is None:
            increment_selection_unavailable(source="consumer")
            logger.warning("no redirect target for %s", consumer_id)
        return selection

    async def reset_fallback_stats(self, consumer_id: str) -> ConsumerDomainConfig:
        def _apply(config: ConsumerDomainConfig) -> tuple[ConsumerDomainConfig, ConsumerDomainConfig]:
            config.fallback_domains.stats = FallbackStats()
            config.fallback_domains.cursor = 0
            config.fallback_domains.updated_at = utcnow()
            return config, config

        return await self._mutate_config(consumer_id, _apply, create=False)

    async def remove_consumer(self, consumer_id: str) -> bool:
        removed = await self.store.delete(CONSUMERS, consumer_id)
        for raw in await self.store.list(BINDINGS):
            entry = DomainBindings.model_validate(raw)
            if any(b.consumer_id == consumer_id for b in entry.bindings):
                await self._mutate_bindings(
                    entry.domain_id,
                    lambda bindings: [b for b in bindings if b.consumer_id != consumer_id],
                )
        if removed:
            logger.info("domain config removed for %s", consumer_id)
        return removed

    async def get_binding_info(self, domain_id: str) -> DomainBindings:
        domain = await self.registry.require(domain_id)
        raw = await self.store.get(BINDINGS, domain_id)
        if raw is None:
            return DomainBindings(domain_id=domain.id, host=domain.host)
        entry = DomainBindings.model_validate(raw)
        entry.host = domain.host
        return entry

    async def list_bindings(self) -> list[DomainBindings]:
        entries = [DomainBindings.model_validate(raw) for raw in await self.store.list(BINDINGS)]
        return sorted(entries, key=lambda e: e.domain_id)

    async def _select_fallback(self, consumer_id: str) -> DomainSelection | None:
        domains = {d.id: d for d in await self.registry.list()}

        def _apply(
            current: ConsumerDomainConfig,
        ) -> tuple[ConsumerDomainConfig | None, tuple[DomainRecord, FallbackSelectionMode] | None]:
            fallback = current.fallback_domains
            mode = fallback.selection_mode
            eligible = [
                domains[domain_id]
                for domain_id in fallback.domain_ids
                if domain_id in domains and domains[domain_id].status == DomainStatus.ACTIVE
            ]
            if mode == FallbackSelectionMode.ROUND_ROBIN:
                eligible.sort(key=lambda d: d.order)
            selected, next_cursor = self.selector.fallback_strategy_for(mode).select(eligible, fallback.cursor)
            if selected is None:
                return None, None

            now = utcnow()
            fallback.cursor = next_cursor
            fallback.stats.total_redirects += 1
            fallback.stats.last_redirect_at = now
            stat = fallback.stats.per_domain.setdefault(selected.id, FallbackDomainStat())
            stat.redirect_count += 1
            stat.last_redirect_at = now
            return current, (selected, mode)

        try:
            picked = await self._mutate_config(consumer_id, _apply, create=False)
        except NotFoundError:
            picked = None
        if picked is None:
            logger.info("no active fallback domain for %s, using global pool", consumer_id)
            return None

        selected, mode = picked
        increment_selection(source="consumer", strategy=mode.value)
        return DomainSelection(
            domain_id=selected.id,
            host=selected.host,
            protocol=selected.protocol,
            source="consumer",
        )

    async def _mutate_config(self, consumer_id: str, fn: ConfigMutator, create: bool = True) -> Any:
        def _apply(current: dict[str, Any] | None) -> tuple[Any, Any]:
            if current is None:
                if not create:
                    raise NotFoundError(
                        message=f"No domain config for '{consumer_id}'",
                        param="consumer_id",
                    )
                config = ConsumerDomainConfig(consumer_id=consumer_id)
            else:
                config = ConsumerDomainConfig.model_validate(current)

            updated, result = fn(config)
            if updated is None:
                return (None if current is not None else _dump(config)), result
            updated.updated_at = utcnow()
            return _dump(updated), result

        return await self.store.transact(CONSUMERS, consumer_id, _apply)

    async def _mutate_bindings(
        self,
        domain_id: str,
        fn: Callable[[list[BindingRecord]], list[BindingRecord]],
        host: str = "",
    ) -> None:
        def _apply(current: dict[str, Any] | None) -> tuple[Any, None]:
            entry = DomainBindings.model_validate(current) if current is not None else DomainBindings(domain_id=domain_id)
            if host:
                entry.host = host
            entry.bindings = fn(list(entry.bindings))
            if not entry.bindings:
                return (DELETE if current is not None else None), None
            return _dump(entry), None

        await self.store.transact(BINDINGS, domain_id, _apply)

    async def _put_binding(
        self,
        domain: DomainRecord,
        consumer_id: str,
        role: BindingRole,
        priority: int | None = None,
    ) -> None:
        def _upsert(bindings: list[BindingRecord]) -> list[BindingRecord]:
            kept = [b for b in bindings if not (b.consumer_id == consumer_id and b.role == role)]
            existing = next((b for b in bindings if b.consumer_id == consumer_id and b.role == role), None)
            bound_at = existing.bound_at if existing is not None else utcnow()
            kept.append(BindingRecord(consumer_id=consumer_id, role=role, bound_at=bound_at, priority=priority))
            return kept

        await self._mutate_bindings(domain.id, _upsert, host=domain.host)

    async def _remove_binding(self, domain_id: str, consumer_id: str, role: BindingRole) -> None:
        await self._mutate_bindings(
            domain_id,
            lambda bindings: [b for b in bindings if not (b.consumer_id == consumer_id and b.role == role)],
        )

    async def _on_domain_deleted(self, domain: DomainRecord) -> None:
        await self.store.delete(BINDINGS, domain.id)

        def _strip(config: ConsumerDomainConfig) -> tuple[ConsumerDomainConfig | None, None]:
            fallback = config.fallback_domains
            if domain.id not in fallback.domain_ids:
                return None, None
            kept = [(i, p) for i, p in zip(fallback.domain_ids, fallback.priority, strict=False) if i != domain.id]
            fallback.domain_ids = [i for i, _ in kept]
            fallback.priority = [p for _, p in kept]
            fallback.stats.per_domain.pop(domain.id, None)
            fallback.updated_at = utcnow()
            return config, None

        for raw in await self.store.list(CONSUMERS):
            consumer_id = raw.get("consumer_id")
            if consumer_id and domain.id in (raw.get("fallback_domains") or {}).get("domain_ids", []):
                try:
                    await self._mutate_config(consumer_id, _strip, create=False)
                except NotFoundError:
                    continue
                logger.info("removed deleted domain %s from fallback list of %s", domain.host, consumer_id)

    @staticmethod
    def _locked_error() -> RejectedError:
        return RejectedError(
            message="Primary domain is already locked for this consumer",
            param="domain_id",
            code="primary_locked",
        )
