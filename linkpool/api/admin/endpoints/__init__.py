from linkpool.api.admin.endpoints.domain_pool import router as domain_pool_router
from linkpool.api.admin.endpoints.live_codes import router as live_codes_router

__all__ = ["domain_pool_router", "live_codes_router"]
