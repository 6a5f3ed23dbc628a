from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Request

from linkpool.api.admin.endpoints.common import service_or_503, success
from linkpool.middleware.admin import require_master_key
from linkpool.models.domain import AddDomainRequest, UpdateDomainRequest, UpdatePoolConfigRequest
from linkpool.models.errors import NotFoundError
from linkpool.pool import ConsumerBindingManager, DomainRegistry, DomainSelector, FailureTracker, HealthMonitor

router = APIRouter(
    prefix="/api/admin/domain-pool",
    tags=["Admin Domain Pool"],
    dependencies=[Depends(require_master_key)],
)


def _registry(request: Request) -> DomainRegistry:
    return service_or_503(request, "domain_registry")


@router.get("")
async def get_pool(request: Request) -> dict[str, Any]:
    registry = _registry(request)
    config = await registry.get_pool_config()
    return success({"config": config, "statistics": await registry.statistics()})


@router.put("/config")
async def update_pool_config(request: Request, payload: UpdatePoolConfigRequest) -> dict[str, Any]:
    config = await _registry(request).update_pool_config(payload)
    return success(config, message="Pool config updated")


@router.get("/domains")
async def list_domains(request: Request) -> dict[str, Any]:
    return success(await _registry(request).list())


@router.post("/domains")
async def add_domain(request: Request, payload: AddDomainRequest) -> dict[str, Any]:
    domain = await _registry(request).add(
        host=payload.host,
        protocol=payload.protocol,
        weight=payload.weight,
        order=payload.order,
        health_check_path=payload.health_check_path,
    )
    return success(domain, message="Domain added")


@router.put("/domains/{domain_id}")
async def update_domain(request: Request, domain_id: str, payload: UpdateDomainRequest) -> dict[str, Any]:
    domain = await _registry(request).update(domain_id, payload)
    return success(domain, message="Domain updated")


@router.delete("/domains/{domain_id}")
async def delete_domain(request: Request, domain_id: str) -> dict[str, Any]:
    if not await _registry(request).delete(domain_id):
        raise NotFoundError(message=f"Domain '{domain_id}' not found", param="domain_id")
    return success(None, message="Domain deleted")


@router.post("/domains/{domain_id}/toggle")
async def toggle_domain(request: Request, domain_id: str) -> dict[str, Any]:
    domain = await _registry(request).toggle_status(domain_id)
    return success(domain, message=f"Domain is now {domain.status.value}")


@router.post("/domains/{domain_id}/report-failure")
async def report_failure(request: Request, domain_id: str) -> dict[str, Any]:
    tracker: FailureTracker = service_or_503(request, "failure_tracker")
    domain = await tracker.report_request_failure(domain_id, "reported by admin")
    if domain is None:
        raise NotFoundError(message=f"Domain '{domain_id}' not found", param="domain_id")
    return success(domain)


@router.get("/domains/{domain_id}/binding-info")
async def binding_info(request: Request, domain_id: str) -> dict[str, Any]:
    bindings: ConsumerBindingManager = service_or_503(request, "binding_manager")
    return success(await bindings.get_binding_info(domain_id))


@router.post("/health-check")
async def run_health_check(request: Request) -> dict[str, Any]:
    monitor: HealthMonitor = service_or_503(request, "health_monitor")
    report = await monitor.run_manual()
    return success(
        report,
        message=f"Checked {report['checked']} domains: {report['healthy']} healthy, {report['unhealthy']} unhealthy",
    )


@router.get("/select")
async def select_domain(request: Request) -> dict[str, Any]:
    selector: DomainSelector = service_or_503(request, "domain_selector")
    selection = selector.require_selection(await selector.select_global())
    return success({**asdict(selection), "base_url": selection.base_url})
