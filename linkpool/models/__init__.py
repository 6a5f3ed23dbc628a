from .domain import (
    AddDomainRequest,
    BindingMode,
    BindingRecord,
    BindingRole,
    BindPrimaryRequest,
    ConsumerDomainConfig,
    DomainBindings,
    DomainRecord,
    DomainSelection,
    DomainStatus,
    FallbackDomains,
    FallbackDomainsUpdate,
    FallbackSelectionMode,
    PoolConfig,
    PrimaryDomain,
    SelectionStrategy,
    UnbindPrimaryRequest,
    UpdateDomainConfigRequest,
    UpdateDomainRequest,
    UpdatePoolConfigRequest,
)
from .errors import (
    AuthenticationError,
    NoDomainAvailableError,
    NotFoundError,
    PoolError,
    RejectedError,
    StoreConflictError,
    StoreCorruptedError,
)

__all__ = [
    "AddDomainRequest",
    "AuthenticationError",
    "BindingMode",
    "BindingRecord",
    "BindingRole",
    "BindPrimaryRequest",
    "ConsumerDomainConfig",
    "DomainBindings",
    "DomainRecord",
    "DomainSelection",
    "DomainStatus",
    "FallbackDomains",
    "FallbackDomainsUpdate",
    "FallbackSelectionMode",
    "NoDomainAvailableError",
    "NotFoundError",
    "PoolConfig",
    "PoolError",
    "PrimaryDomain",
    "RejectedError",
    "SelectionStrategy",
    "StoreConflictError",
    "StoreCorruptedError",
    "UnbindPrimaryRequest",
    "UpdateDomainConfigRequest",
    "UpdateDomainRequest",
    "UpdatePoolConfigRequest",
]
