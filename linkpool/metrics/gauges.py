from __future__ import annotations

from prometheus_client import Gauge

from linkpool.metrics.prometheus import get_prometheus_registry, sanitize_label

DOMAIN_STATE_VALUES = {"active": 0, "testing": 1, "inactive": 2, "banned": 3}

linkpool_domain_state_metric = Gauge(
    "linkpool_domain_state",
    "Domain status (0=active, 1=testing, 2=inactive, 3=banned)",
    ["domain_id", "host"],
    registry=get_prometheus_registry(),
)


def set_domain_state(*, domain_id: str, host: str, status: str) -> None:
    value = DOMAIN_STATE_VALUES.get(sanitize_label(status), DOMAIN_STATE_VALUES["inactive"])
    linkpool_domain_state_metric.labels(
        domain_id=sanitize_label(domain_id),
        host=sanitize_label(host),
    ).set(float(value))


def clear_domain_state(*, domain_id: str, host: str) -> None:
    try:
        linkpool_domain_state_metric.remove(sanitize_label(domain_id), sanitize_label(host))
    except KeyError:
        pass
