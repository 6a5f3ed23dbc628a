from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from linkpool.metrics import increment_domain_ban, set_domain_state
from linkpool.models.domain import DomainRecord, DomainStatus, utcnow
from linkpool.pool.registry import DomainRegistry

logger = logging.getLogger(__name__)


class FailureTracker:
    """Consecutive-failure accounting and the active/banned transitions.

    Request-path failures count toward the ban threshold; background probe failures
    only update totals and timestamps.
    """

    def __init__(
        self,
        registry: DomainRegistry,
        alert_callback: Callable[[dict[str, Any]], Awaitable[None]] | None = None,
    ):
        self.registry = registry
        self.alert_callback = alert_callback

    async def report_request_failure(self, domain_id: str, error: str | None = None) -> DomainRecord | None:
        config = await self.registry.get_pool_config()
        max_failures = max(1, int(config.max_failures))
        banned_now = False

        def _apply(domain: DomainRecord) -> DomainRecord:
            nonlocal banned_now
            now = utcnow()
            domain.consecutive_failures += 1
            domain.total_failures += 1
            domain.last_failed_at = now
            domain.last_checked_at = now
            banned_now = False
            if domain.consecutive_failures >= max_failures and domain.status != DomainStatus.BANNED:
                domain.status = DomainStatus.BANNED
                banned_now = True
            return domain

        domain = await self.registry.mutate_domain(domain_id, _apply)
        if domain is None:
            return None

        if banned_now:
            logger.warning(
                "domain %s banned after %d consecutive failures (%s)",
                domain.host,
                domain.consecutive_failures,
                error or "request_failed",
            )
            increment_domain_ban()
            set_domain_state(domain_id=domain.id, host=domain.host, status=domain.status.value)
            if self.alert_callback:
                await self.alert_callback(
                    {
                        "alert_type": "domain_banned",
                        "domain_id": domain.id,
                        "host": domain.host,
                        "reason": error or "request_failed",
                        "consecutive_failures": domain.consecutive_failures,
                    }
                )
        return domain

    async def report_health_check_failure(self, domain_id: str, error: str | None = None) -> DomainRecord | None:
        def _apply(domain: DomainRecord) -> DomainRecord:
            now = utcnow()
            domain.total_failures += 1
            domain.last_failed_at = now
            domain.last_checked_at = now
            return domain

        domain = await self.registry.mutate_domain(domain_id, _apply)
        if domain is not None:
            logger.debug("health check failure recorded for %s: %s", domain.host, error)
        return domain

    async def report_success(self, domain_id: str) -> DomainRecord | None:
        previous: DomainStatus | None = None

        def _apply(domain: DomainRecord) -> DomainRecord:
            nonlocal previous
            previous = domain.status
            domain.consecutive_failures = 0
            domain.last_checked_at = utcnow()
            # A passing probe also promotes a new domain out of testing.
            if domain.status in (DomainStatus.BANNED, DomainStatus.TESTING):
                domain.status = DomainStatus.ACTIVE
            return domain

        domain = await self.registry.mutate_domain(domain_id, _apply)
        if domain is None:
            return None

        if previous != domain.status:
            logger.info("domain %s recovered: %s -> %s", domain.host, getattr(previous, "value", previous), domain.status.value)
            set_domain_state(domain_id=domain.id, host=domain.host, status=domain.status.value)
        return domain
