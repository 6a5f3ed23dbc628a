from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Protocol = Literal["http", "https"]


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class DomainStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TESTING = "testing"
    BANNED = "banned"


class SelectionStrategy(str, Enum):
    ROUND_ROBIN = "round-robin"
    RANDOM = "random"
    WEIGHTED = "weighted"


class FallbackSelectionMode(str, Enum):
    SEQUENTIAL = "sequential"
    RANDOM = "random"
    ROUND_ROBIN = "round-robin"


class BindingMode(str, Enum):
    GLOBAL_POOL = "global-pool"
    CUSTOM_DOMAINS = "custom-domains"
    HYBRID = "hybrid"


class BindingRole(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


def normalize_host(value: str) -> str:
    host = str(value or "").strip().lower()
    for prefix in ("http://", "https://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    host = host.rstrip("/")
    if not host or "/" in host or " " in host:
        raise ValueError("host must be a bare hostname such as 'a.example.com'")
    return host


def normalize_path(value: str | None) -> str:
    path = str(value or "").strip() or "/health"
    if not path.startswith("/"):
        path = f"/{path}"
    return path


class DomainRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    host: str
    protocol: Protocol = "https"
    status: DomainStatus = DomainStatus.TESTING
    weight: int = 1
    order: int = 0
    health_check_path: str = "/health"
    consecutive_failures: int = 0
    total_requests: int = 0
    total_failures: int = 0
    last_checked_at: datetime | None = None
    last_failed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}"

    @property
    def health_check_url(self) -> str:
        return f"{self.base_url}{self.health_check_path or '/health'}"


class PoolConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = "pool-main"
    name: str = "Main domain pool"
    strategy: SelectionStrategy = SelectionStrategy.ROUND_ROBIN
    max_failures: int = 3
    health_check_interval_seconds: int = 300
    retry_interval_seconds: int = 60
    # Holds a domain `order` value, not a list index.
    round_robin_cursor: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PrimaryDomain(BaseModel):
    domain_id: str
    host: str
    protocol: Protocol = "https"
    locked_at: datetime = Field(default_factory=utcnow)
    locked: bool = True


class FallbackDomainStat(BaseModel):
    redirect_count: int = 0
    last_redirect_at: datetime | None = None


class FallbackStats(BaseModel):
    total_redirects: int = 0
    last_redirect_at: datetime | None = None
    per_domain: dict[str, FallbackDomainStat] = Field(default_factory=dict)


class FallbackDomains(BaseModel):
    model_config = ConfigDict(extra="ignore")

    domain_ids: list[str] = Field(default_factory=list)
    priority: list[int] = Field(default_factory=list)
    selection_mode: FallbackSelectionMode = FallbackSelectionMode.SEQUENTIAL
    cursor: int = 0
    failover_enabled: bool = False
    stats: FallbackStats = Field(default_factory=FallbackStats)
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _backfill_priority(self) -> "FallbackDomains":
        # Older records stored fewer priorities than ids.
        if len(self.priority) < len(self.domain_ids):
            self.priority = self.priority + list(range(len(self.priority), len(self.domain_ids)))
        elif len(self.priority) > len(self.domain_ids):
            self.priority = self.priority[: len(self.domain_ids)]
        return self


class ConsumerDomainConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    consumer_id: str
    mode: BindingMode = BindingMode.CUSTOM_DOMAINS
    primary_domain: PrimaryDomain | None = None
    fallback_domains: FallbackDomains = Field(default_factory=FallbackDomains)
    strategy: SelectionStrategy | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("fallback_domains", mode="before")
    @classmethod
    def _default_fallbacks(cls, value):
        return FallbackDomains() if value is None else value


class BindingRecord(BaseModel):
    consumer_id: str
    role: BindingRole
    bound_at: datetime = Field(default_factory=utcnow)
    priority: int | None = None


class DomainBindings(BaseModel):
    domain_id: str
    host: str = ""
    bindings: list[BindingRecord] = Field(default_factory=list)


class AddDomainRequest(BaseModel):
    host: str
    protocol: Protocol = "https"
    weight: int = Field(default=1, ge=1)
    order: int | None = None
    health_check_path: str | None = None

    @field_validator("host")
    @classmethod
    def _host(cls, value: str) -> str:
        return normalize_host(value)


class UpdateDomainRequest(BaseModel):
    host: str | None = None
    protocol: Protocol | None = None
    status: DomainStatus | None = None
    weight: int | None = Field(default=None, ge=1)
    order: int | None = None
    health_check_path: str | None = None

    @field_validator("host")
    @classmethod
    def _host(cls, value: str | None) -> str | None:
        return None if value is None else normalize_host(value)


class UpdatePoolConfigRequest(BaseModel):
    name: str | None = None
    strategy: SelectionStrategy | None = None
    max_failures: int | None = Field(default=None, ge=1)
    health_check_interval_seconds: int | None = Field(default=None, ge=1)
    retry_interval_seconds: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class FallbackDomainsUpdate(BaseModel):
    domain_ids: list[str] = Field(default_factory=list)
    priority: list[int] | None = None
    selection_mode: FallbackSelectionMode | None = None
    failover_enabled: bool | None = None


class UpdateDomainConfigRequest(BaseModel):
    fallback_domains: FallbackDomainsUpdate | None = None
    strategy: SelectionStrategy | None = None


class BindPrimaryRequest(BaseModel):
    domain_id: str
    confirmed: bool = False


class UnbindPrimaryRequest(BaseModel):
    force_unbind: bool = False
    confirmation_code: str = ""


@dataclass(frozen=True)
class DomainSelection:
    domain_id: str
    host: str
    protocol: str
    role: str = BindingRole.FALLBACK.value
    # "consumer" when picked from a fallback list, "global" when picked from the pool.
    source: str = "global"

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}"
