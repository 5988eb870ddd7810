from __future__ import annotations

import logging
import os
import threading
from collections import defaultdict
from typing import Protocol

from tradectl.obs.metric_registry import REGISTRY, MetricDef, MetricType

logger = logging.getLogger(__name__)


class MetricsSink(Protocol):
    def emit(self, defn: MetricDef, value: float | int, labels: dict[str, str]) -> None:
        ...


class LoggingMetricsSink:
    def emit(self, defn: MetricDef, value: float | int, labels: dict[str, str]) -> None:
        logger.info(
            "metric_emit",
            extra={
                "extra": {
                    "metric_name": defn.name,
                    "metric_type": defn.type.value,
                    "metric_value": str(value),
                    "labels": labels,
                }
            },
        )


class InMemoryMetricsSink:
    """Accumulates counters and keeps the last gauge value; used by tests and health checks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counters: dict[tuple[str, tuple[tuple[str, str], ...]], float] = defaultdict(float)
        self.gauges: dict[tuple[str, tuple[tuple[str, str], ...]], float] = {}
        self.observations: list[tuple[str, float, dict[str, str]]] = []

    def emit(self, defn: MetricDef, value: float | int, labels: dict[str, str]) -> None:
        key = (defn.name, tuple(sorted(labels.items())))
        with self._lock:
            if defn.type is MetricType.COUNTER:
                self.counters[key] += float(value)
            elif defn.type is MetricType.GAUGE:
                self.gauges[key] = float(value)
            else:
                self.observations.append((defn.name, float(value), dict(labels)))

    def counter(self, name: str, **labels: str) -> float:
        return self.counters.get((name, tuple(sorted(labels.items()))), 0.0)

    def gauge(self, name: str, **labels: str) -> float | None:
        return self.gauges.get((name, tuple(sorted(labels.items()))))


_DEFAULT_SINK: MetricsSink = LoggingMetricsSink()
_STRICT_REGISTRY = os.getenv("OBS_METRICS_STRICT", "1") != "0"


def set_metrics_sink(sink: MetricsSink) -> MetricsSink:
    """Install ``sink`` and return the previous one so callers can restore it."""
    global _DEFAULT_SINK
    previous = _DEFAULT_SINK
    _DEFAULT_SINK = sink
    return previous


def get_metrics_sink() -> MetricsSink:
    return _DEFAULT_SINK


def _validate_labels(defn: MetricDef, labels: dict[str, str]) -> None:
    missing = [label for label in defn.required_labels if label not in labels]
    if missing:
        raise ValueError(f"missing labels for {defn.name}: {missing}")


def emit_metric(name: str, value: float | int, labels: dict[str, str]) -> None:
    defn = REGISTRY.get(name)
    if defn is None:
        message = f"unknown metric name: {name}"
        if _STRICT_REGISTRY:
            raise ValueError(message)
        logger.error("metric_unknown", extra={"extra": {"name": name}})
        return
    _validate_labels(defn, labels)
    _DEFAULT_SINK.emit(defn, value, labels)


def _emit_typed(name: str, value: float | int, labels: dict[str, str], expected: MetricType) -> None:
    defn = REGISTRY.get(name)
    if defn is not None and defn.type is not expected:
        raise ValueError(f"metric {name} is not a {expected.value}")
    emit_metric(name, value, labels)


def inc_counter(name: str, labels: dict[str, str], delta: int = 1) -> None:
    _emit_typed(name, delta, labels, MetricType.COUNTER)


def set_gauge(name: str, value: float | int, labels: dict[str, str]) -> None:
    _emit_typed(name, value, labels, MetricType.GAUGE)


def observe_histogram(name: str, value: float | int, labels: dict[str, str]) -> None:
    _emit_typed(name, value, labels, MetricType.HISTOGRAM)
