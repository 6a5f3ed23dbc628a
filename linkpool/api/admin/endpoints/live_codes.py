from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from linkpool.api.admin.endpoints.common import service_or_503, success
from linkpool.middleware.admin import require_master_key
from linkpool.models.domain import BindPrimaryRequest, UnbindPrimaryRequest, UpdateDomainConfigRequest
from linkpool.models.errors import NotFoundError
from linkpool.pool import ConsumerBindingManager

router = APIRouter(
    prefix="/api/admin/live-codes/{consumer_id}/domain-config",
    tags=["Admin Live Code Domains"],
    dependencies=[Depends(require_master_key)],
)


def _bindings(request: Request) -> ConsumerBindingManager:
    return service_or_503(request, "binding_manager")


@router.get("")
async def get_domain_config(request: Request, consumer_id: str) -> dict[str, Any]:
    return success(await _bindings(request).get_config(consumer_id))


@router.put("")
async def update_domain_config(request: Request, consumer_id: str, payload: UpdateDomainConfigRequest) -> dict[str, Any]:
    config = await _bindings(request).update_fallback_config(
        consumer_id,
        payload.fallback_domains,
        strategy=payload.strategy,
    )
    return success(config, message="Domain config updated")


@router.post("/primary")
async def bind_primary(request: Request, consumer_id: str, payload: BindPrimaryRequest) -> dict[str, Any]:
    config = await _bindings(request).bind_primary(consumer_id, payload.domain_id, payload.confirmed)
    return success(config, message="Primary domain bound and locked")


@router.delete("/primary")
async def unbind_primary(request: Request, consumer_id: str, payload: UnbindPrimaryRequest) -> dict[str, Any]:
    config = await _bindings(request).unbind_primary(
        consumer_id,
        force_unbind=payload.force_unbind,
        confirmation_token=payload.confirmation_code,
    )
    return success(config, message="Primary domain unbound")


@router.post("/reset-stats")
async def reset_stats(request: Request, consumer_id: str) -> dict[str, Any]:
    config = await _bindings(request).reset_fallback_stats(consumer_id)
    return success(config, message="Fallback stats reset")


@router.delete("")
async def remove_domain_config(request: Request, consumer_id: str) -> dict[str, Any]:
    if not await _bindings(request).remove_consumer(consumer_id):
        raise NotFoundError(message=f"No domain config for '{consumer_id}'", param="consumer_id")
    return success(None, message="Domain config removed")
