from fastapi import APIRouter

from linkpool.api.admin.endpoints import domain_pool_router, live_codes_router

admin_router = APIRouter()

admin_router.include_router(domain_pool_router)
admin_router.include_router(live_codes_router)

__all__ = ["admin_router"]
