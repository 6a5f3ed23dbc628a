from .admin import require_master_key
from .errors import register_exception_handlers

__all__ = ["register_exception_handlers", "require_master_key"]
