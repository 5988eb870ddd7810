from tradectl.obs.metric_registry import REGISTRY, MetricDef, MetricType, validate_registry
from tradectl.obs.metrics import (
    InMemoryMetricsSink,
    LoggingMetricsSink,
    MetricsSink,
    emit_metric,
    get_metrics_sink,
    inc_counter,
    observe_histogram,
    set_gauge,
    set_metrics_sink,
)

__all__ = [
    "InMemoryMetricsSink",
    "LoggingMetricsSink",
    "MetricDef",
    "MetricType",
    "MetricsSink",
    "REGISTRY",
    "emit_metric",
    "get_metrics_sink",
    "inc_counter",
    "observe_histogram",
    "set_gauge",
    "set_metrics_sink",
    "validate_registry",
]
