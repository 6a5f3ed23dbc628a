from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable

import httpx

from linkpool.metrics import increment_health_probe, set_domain_state
from linkpool.models.domain import DomainRecord, DomainStatus
from linkpool.pool.failures import FailureTracker
from linkpool.pool.registry import DomainRegistry

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckConfig:
    enabled: bool = True
    timeout_seconds: float = 10.0
    default_interval_seconds: int = 300


@dataclass
class ProbeResult:
    domain_id: str
    host: str
    ok: bool
    response_time_ms: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = "ok" if self.ok else "failed"
        payload.pop("ok")
        return payload


class HealthMonitor:
    """Probes every domain's health endpoint on the pool's interval.

    The background loop reports failures as non-punitive health-check failures;
    `run_manual` is operator-initiated and reports them as request failures, which
    count toward the ban threshold.
    """

    def __init__(
        self,
        config: HealthCheckConfig,
        registry: DomainRegistry,
        tracker: FailureTracker,
        http_client: httpx.AsyncClient | None = None,
        checker: Callable[[DomainRecord], Awaitable[ProbeResult]] | None = None,
    ):
        self.config = config
        self.registry = registry
        self.tracker = tracker
        self.http_client = http_client
        self.checker = checker or self.probe
        self._owns_client = http_client is None
        self._running = False
        self._wakeup = asyncio.Event()
        self._interval = config.default_interval_seconds

    async def start(self) -> None:
        if not self.config.enabled:
            return

        self._running = True
        logger.info("health monitor started")
        await self._run_safely()
        while self._running:
            interval = await self._current_interval()
            rescheduled = await self._sleep(interval)
            if not self._running:
                break
            if rescheduled:
                logger.info("health check timer restarted")
                continue
            await self._run_safely()

    def stop(self) -> None:
        self._running = False
        self._wakeup.set()

    def reschedule(self) -> None:
        """Restart the sleep with the current pool interval; takes effect on the next tick."""
        self._wakeup.set()

    async def on_config_change(self, before: Any, after: Any) -> None:
        if before.health_check_interval_seconds != after.health_check_interval_seconds:
            self.reschedule()

    async def aclose(self) -> None:
        if self._owns_client and self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None

    async def run_scheduled(self) -> dict[str, Any] | None:
        """One background cycle; skipped entirely while the pool is inactive."""
        config = await self.registry.get_pool_config()
        if not config.is_active:
            logger.debug("pool inactive, skipping health check cycle")
            return None
        return await self._check_all(punitive=False, trigger="scheduled")

    async def run_manual(self) -> dict[str, Any]:
        return await self._check_all(punitive=True, trigger="manual")

    async def probe(self, domain: DomainRecord) -> ProbeResult:
        client = self._client()
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                client.get(domain.health_check_url, follow_redirects=False),
                timeout=self.config.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return ProbeResult(
                domain_id=domain.id,
                host=domain.host,
                ok=False,
                error=f"timeout after {self.config.timeout_seconds:g}s",
            )
        except httpx.HTTPError as exc:
            return ProbeResult(
                domain_id=domain.id,
                host=domain.host,
                ok=False,
                error=str(exc) or exc.__class__.__name__,
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        ok = 200 <= response.status_code < 400
        return ProbeResult(
            domain_id=domain.id,
            host=domain.host,
            ok=ok,
            response_time_ms=elapsed_ms,
            error=None if ok else f"HTTP {response.status_code}",
        )

    def _client(self) -> httpx.AsyncClient:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
            self._owns_client = True
        return self.http_client

    async def _check_all(self, punitive: bool, trigger: str) -> dict[str, Any]:
        domains = await self.registry.list()
        if domains:
            logger.info("health check (%s) starting for %d domains", trigger, len(domains))

        outcomes = await asyncio.gather(*(self._check_domain(d) for d in domains), return_exceptions=True)
        results: list[ProbeResult] = []
        for domain, outcome in zip(domains, outcomes, strict=False):
            if isinstance(outcome, ProbeResult):
                result = outcome
            elif isinstance(outcome, Exception):
                result = ProbeResult(domain_id=domain.id, host=domain.host, ok=False, error=str(outcome))
            else:
                raise outcome

            await self._record(result, punitive)
            increment_health_probe(ok=result.ok, trigger=trigger)
            results.append(result)

        healthy = sum(1 for r in results if r.ok)
        return {
            "checked": len(results),
            "healthy": healthy,
            "unhealthy": len(results) - healthy,
            "results": [r.to_dict() for r in results],
        }

    async def _check_domain(self, domain: DomainRecord) -> ProbeResult:
        return await self.checker(domain)

    async def _record(self, result: ProbeResult, punitive: bool) -> None:
        if result.ok:
            logger.info("health check ok: %s (%sms)", result.host, result.response_time_ms)
            await self.tracker.report_success(result.domain_id)
            return

        logger.warning("health check failed: %s - %s", result.host, result.error)
        if punitive:
            await self.tracker.report_request_failure(result.domain_id, result.error)
        else:
            await self.tracker.report_health_check_failure(result.domain_id, result.error)

    async def _run_safely(self) -> None:
        try:
            await self.run_scheduled()
        except Exception:
            logger.exception("health check cycle failed")

    async def _current_interval(self) -> int:
        try:
            config = await self.registry.get_pool_config()
            self._interval = max(1, int(config.health_check_interval_seconds))
        except Exception:
            logger.exception("could not read health check interval, keeping %ss", self._interval)
        return self._interval

    async def _sleep(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        self._wakeup.clear()
        return True


class HealthEndpointHandler:
    def __init__(self, registry: DomainRegistry):
        self.registry = registry

    async def get_health_status(self) -> dict[str, Any]:
        domains = await self.registry.list()
        items: list[dict[str, Any]] = []
        active_count = 0

        for domain in domains:
            if domain.status == DomainStatus.ACTIVE:
                active_count += 1
            set_domain_state(domain_id=domain.id, host=domain.host, status=domain.status.value)
            items.append(
                {
                    "domain_id": domain.id,
                    "host": domain.host,
                    "status": domain.status.value,
                    "consecutive_failures": domain.consecutive_failures,
                    "total_requests": domain.total_requests,
                    "total_failures": domain.total_failures,
                    "last_checked_at": domain.last_checked_at.isoformat() if domain.last_checked_at else None,
                    "last_failed_at": domain.last_failed_at.isoformat() if domain.last_failed_at else None,
                }
            )

        total = len(domains)
        if total == 0 or active_count == total:
            status = "healthy"
        elif active_count == 0:
            status = "unhealthy"
        else:
            status = "degraded"

        return {
            "status": status,
            "timestamp": int(time.time()),
            "active_count": active_count,
            "total_count": total,
            "domains": items,
        }
