from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class MetricType(Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class MetricDef:
    name: str
    type: MetricType
    required_labels: tuple[str, ...] = ()


REGISTRY: dict[str, MetricDef] = {
    "ctl_store_requests_total": MetricDef(
        name="ctl_store_requests_total",
        type=MetricType.COUNTER,
        required_labels=("resource", "result"),
    ),
    "ctl_store_failures_total": MetricDef(
        name="ctl_store_failures_total",
        type=MetricType.COUNTER,
        required_labels=("resource",),
    ),
    "ctl_circuit_state": MetricDef(
        name="ctl_circuit_state",
        type=MetricType.GAUGE,
        required_labels=("resource",),
    ),
    "ctl_store_call_latency_ms": MetricDef(
        name="ctl_store_call_latency_ms",
        type=MetricType.HISTOGRAM,
        required_labels=("resource",),
    ),
    "ctl_trading_paused": MetricDef(
        name="ctl_trading_paused",
        type=MetricType.GAUGE,
        required_labels=("scope",),
    ),
    "ctl_control_transitions_rejected_total": MetricDef(
        name="ctl_control_transitions_rejected_total",
        type=MetricType.COUNTER,
        required_labels=("transition",),
    ),
    "ctl_similarity_fallback_total": MetricDef(
        name="ctl_similarity_fallback_total",
        type=MetricType.COUNTER,
        required_labels=("tier", "reason"),
    ),
}

RESULT_SUCCESS = "success"
RESULT_FAILURE = "failure"

_NAME_PATTERN = re.compile(r"^[a-z]+(?:_[a-z0-9]+)+$")


def validate_registry(registry: dict[str, MetricDef] | None = None) -> None:
    target = registry or REGISTRY
    for key, metric in target.items():
        if key != metric.name:
            raise ValueError(f"registry key/name mismatch: {key} != {metric.name}")
        if not _NAME_PATTERN.match(metric.name):
            raise ValueError(f"invalid metric name format: {metric.name}")
        if not metric.name.startswith("ctl_"):
            raise ValueError(f"metric name must use ctl_ namespace: {metric.name}")
        if not metric.required_labels:
            raise ValueError(f"required_labels must be non-empty for {metric.name}")
        if metric.type is MetricType.COUNTER and not metric.name.endswith("_total"):
            raise ValueError(f"counter names must end with _total: {metric.name}")


validate_registry()
