from __future__ import annotations

from typing import Any

from prometheus_client import CollectorRegistry

PROMETHEUS_REGISTRY = CollectorRegistry()
UNKNOWN_LABEL = "unknown"


def get_prometheus_registry() -> CollectorRegistry:
    return PROMETHEUS_REGISTRY


def sanitize_label(value: Any, fallback: str = UNKNOWN_LABEL) -> str:
    if value is None:
        return fallback
    text = str(getattr(value, "value", value)).strip()
    if not text:
        return fallback
    text = text.replace("\n", " ").replace("\r", " ")
    if len(text) > 128:
        return text[:128]
    return text
