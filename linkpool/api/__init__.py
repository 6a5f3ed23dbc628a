from .admin import admin_router
from .link import AllowAllConsumers, ConsumerDirectory
from .link import router as link_router

__all__ = ["AllowAllConsumers", "ConsumerDirectory", "admin_router", "link_router"]
