from __future__ import annotations

from prometheus_client import Counter

from linkpool.metrics.prometheus import get_prometheus_registry, sanitize_label

linkpool_selections_metric = Counter(
    "linkpool_selections_total",
    "Successful domain selections",
    ["source", "strategy"],
    registry=get_prometheus_registry(),
)

linkpool_selection_unavailable_metric = Counter(
    "linkpool_selection_unavailable_total",
    "Selections that found no eligible domain",
    ["source"],
    registry=get_prometheus_registry(),
)

linkpool_domain_bans_metric = Counter(
    "linkpool_domain_bans_total",
    "Domains moved to banned status",
    registry=get_prometheus_registry(),
)

linkpool_health_probes_metric = Counter(
    "linkpool_health_probes_total",
    "Health probes by result",
    ["result", "trigger"],
    registry=get_prometheus_registry(),
)


def increment_selection(*, source: str, strategy: str) -> None:
    linkpool_selections_metric.labels(
        source=sanitize_label(source),
        strategy=sanitize_label(strategy),
    ).inc()


def increment_selection_unavailable(*, source: str) -> None:
    linkpool_selection_unavailable_metric.labels(source=sanitize_label(source)).inc()


def increment_domain_ban() -> None:
    linkpool_domain_bans_metric.inc()


def increment_health_probe(*, ok: bool, trigger: str) -> None:
    linkpool_health_probes_metric.labels(
        result="ok" if ok else "failed",
        trigger=sanitize_label(trigger),
    ).inc()
