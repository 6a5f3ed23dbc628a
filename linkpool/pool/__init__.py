from .bindings import ConsumerBindingManager
from .failures import FailureTracker
from .health import HealthCheckConfig, HealthEndpointHandler, HealthMonitor, ProbeResult
from .registry import DomainRegistry
from .selector import DomainSelector
from .strategies import (
    RandomStrategy,
    RoundRobinStrategy,
    SequentialStrategy,
    WeightedStrategy,
    random_choice,
    round_robin_choice,
    weighted_random_choice,
)

__all__ = [
    "ConsumerBindingManager",
    "DomainRegistry",
    "DomainSelector",
    "FailureTracker",
    "HealthCheckConfig",
    "HealthEndpointHandler",
    "HealthMonitor",
    "ProbeResult",
    "RandomStrategy",
    "RoundRobinStrategy",
    "SequentialStrategy",
    "WeightedStrategy",
    "random_choice",
    "round_robin_choice",
    "weighted_random_choice",
]
