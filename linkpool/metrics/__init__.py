from linkpool.metrics.counters import (
    increment_domain_ban,
    increment_health_probe,
    increment_selection,
    increment_selection_unavailable,
)
from linkpool.metrics.gauges import clear_domain_state, set_domain_state
from linkpool.metrics.prometheus import get_prometheus_registry

__all__ = [
    "clear_domain_state",
    "get_prometheus_registry",
    "increment_domain_ban",
    "increment_health_probe",
    "increment_selection",
    "increment_selection_unavailable",
    "set_domain_state",
]
