from __future__ import annotations

import logging
import random

from linkpool.metrics import increment_selection, increment_selection_unavailable
from linkpool.models.domain import (
    DomainRecord,
    DomainSelection,
    DomainStatus,
    FallbackSelectionMode,
    PoolConfig,
    SelectionStrategy,
)
from linkpool.models.errors import NoDomainAvailableError
from linkpool.pool.registry import DomainRegistry
from linkpool.pool.strategies import (
    RandomStrategy,
    RoundRobinStrategy,
    SelectionStrategyImpl,
    SequentialStrategy,
    WeightedStrategy,
)

logger = logging.getLogger(__name__)


def _count_request(domain: DomainRecord) -> DomainRecord:
    domain.total_requests += 1
    return domain


class DomainSelector:
    """Picks a domain from the global pool according to the pool strategy."""

    def __init__(self, registry: DomainRegistry, rng: random.Random | None = None):
        self.registry = registry
        self.rng = rng
        self._strategies = self._load_strategies()
        self._fallback_strategies = self._load_fallback_strategies()

    def _load_strategies(self) -> dict[SelectionStrategy, SelectionStrategyImpl]:
        return {
            SelectionStrategy.ROUND_ROBIN: RoundRobinStrategy(),
            SelectionStrategy.RANDOM: RandomStrategy(self.rng),
            SelectionStrategy.WEIGHTED: WeightedStrategy(self.rng),
        }

    def _load_fallback_strategies(self) -> dict[FallbackSelectionMode, SelectionStrategyImpl]:
        return {
            FallbackSelectionMode.SEQUENTIAL: SequentialStrategy(),
            FallbackSelectionMode.RANDOM: RandomStrategy(self.rng),
            FallbackSelectionMode.ROUND_ROBIN: RoundRobinStrategy(),
        }

    def strategy_for(self, strategy: SelectionStrategy) -> SelectionStrategyImpl:
        return self._strategies.get(strategy, self._strategies[SelectionStrategy.ROUND_ROBIN])

    def fallback_strategy_for(self, mode: FallbackSelectionMode) -> SelectionStrategyImpl:
        return self._fallback_strategies.get(mode, self._fallback_strategies[FallbackSelectionMode.SEQUENTIAL])

    async def active_domains(self) -> list[DomainRecord]:
        return [d for d in await self.registry.list() if d.status == DomainStatus.ACTIVE]

    async def select_global(self) -> DomainSelection | None:
        """Return a domain from the pool, or None when the pool is off or has no active domain."""
        config = await self.registry.get_pool_config()
        if not config.is_active:
            increment_selection_unavailable(source="global")
            return None

        active = await self.active_domains()
        if not active:
            logger.warning("no active domain in pool")
            increment_selection_unavailable(source="global")
            return None

        if config.strategy == SelectionStrategy.ROUND_ROBIN:
            selected = await self._advance_round_robin(active)
        else:
            selected, _ = self.strategy_for(config.strategy).select(active, config.round_robin_cursor)

        if selected is None:
            increment_selection_unavailable(source="global")
            return None

        await self.registry.mutate_domain(selected.id, _count_request)
        increment_selection(source="global", strategy=config.strategy.value)
        return DomainSelection(
            domain_id=selected.id,
            host=selected.host,
            protocol=selected.protocol,
            source="global",
        )

    async def _advance_round_robin(self, active: list[DomainRecord]) -> DomainRecord | None:
        strategy = self._strategies[SelectionStrategy.ROUND_ROBIN]

        # Cursor read and advance happen in one store transaction.
        def _advance(config: PoolConfig) -> tuple[PoolConfig | None, DomainRecord | None]:
            if not config.is_active:
                return None, None
            selected, next_cursor = strategy.select(active, config.round_robin_cursor)
            if selected is None:
                return None, None
            config.round_robin_cursor = next_cursor
            return config, selected

        return await self.registry.mutate_pool_config(_advance)

    def require_selection(self, selection: DomainSelection | None) -> DomainSelection:
        if selection is None:
            raise NoDomainAvailableError(message="No active domain available in the pool")
        return selection
