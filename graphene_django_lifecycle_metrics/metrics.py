"""Prometheus metric definitions for GraphQL lifecycle instrumentation.

Every lifecycle event is identified by a :class:`MetricsNames` member and
backed by one descriptor built by :func:`build_metrics`. Descriptors are
tagged by kind and only expose the mutation valid for that kind.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Sequence

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

from graphene_django_lifecycle_metrics.labels import CONTEXT_LABELS, FIELD_LABELS, convert_ms_to_s, filter_labels

logger = logging.getLogger(__name__)

SkipPredicate = Callable[[Mapping[str, Optional[str]], Any, Any], bool]

DEFAULT_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
DEFAULT_FIELD_RESOLUTION_BUCKETS = (0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0)


class MetricsNames(Enum):
    """One member per observable lifecycle event; the value is the metric name suffix."""

    SERVER_STARTING = "server_starting"
    SERVER_CLOSING = "server_closing"
    QUERY_STARTED = "query_started"
    QUERY_PARSE_STARTED = "query_parse_started"
    QUERY_PARSE_FAILED = "query_parse_failed"
    QUERY_VALIDATION_STARTED = "query_validation_started"
    QUERY_VALIDATION_FAILED = "query_validation_failed"
    QUERY_RESOLVED = "query_resolved"
    QUERY_EXECUTION_STARTED = "query_execution_started"
    QUERY_EXECUTION_FAILED = "query_execution_failed"
    QUERY_FIELD_RESOLUTION_DURATION = "query_field_resolution_duration_seconds"
    QUERY_FAILED = "query_failed"
    QUERY_FAILED_BY_CLIENT = "query_failed_by_client"
    QUERY_DURATION = "query_duration_seconds"


class MetricTypes(Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class MissingMetricValue(ValueError):
    """A gauge or histogram was recorded without a value."""


def never_skip(labels, context, field):  # pylint: disable=unused-argument
    return False


def always_skip(labels, context, field):  # pylint: disable=unused-argument
    return True


def skip_introspection_fields(labels, context, field):  # pylint: disable=unused-argument
    """Veto field timings for introspection types such as ``__Schema`` and ``__Type``."""
    parent_type = labels.get("parentType")
    return bool(parent_type) and parent_type.startswith("__")


@dataclass(frozen=True)
class _MetricDescriptor:
    instance: Any
    labelnames: Sequence[str] = ()
    skip: SkipPredicate = never_skip

    instance_class = None
    kind = None

    def __post_init__(self):
        if not isinstance(self.instance, self.instance_class):
            raise TypeError(
                f"{type(self).__name__} requires a {self.instance_class.__name__}, got {type(self.instance).__name__}"
            )

    def _child(self, labels):
        """Return the labelled child for ``labels``.

        ``prometheus_client`` needs a value for every declared label name;
        labels omitted from ``labels`` are sent as the empty string, which
        Prometheus treats the same as a missing label.
        """
        unknown = set(labels) - set(self.labelnames)
        if unknown:
            raise ValueError(f"Undeclared label(s) {sorted(unknown)} for {type(self).__name__}")
        if not self.labelnames:
            return self.instance
        return self.instance.labels(**{name: labels.get(name, "") for name in self.labelnames})


@dataclass(frozen=True)
class CounterMetric(_MetricDescriptor):
    instance_class = Counter
    kind = MetricTypes.COUNTER

    def inc(self, labels):
        self._child(labels).inc()


@dataclass(frozen=True)
class GaugeMetric(_MetricDescriptor):
    instance_class = Gauge
    kind = MetricTypes.GAUGE

    def set(self, labels, value):
        self._child(labels).set(value)


@dataclass(frozen=True)
class HistogramMetric(_MetricDescriptor):
    instance_class = Histogram
    kind = MetricTypes.HISTOGRAM

    def observe(self, labels, value):
        self._child(labels).observe(value)


# name, documentation, descriptor class, label names
_METRIC_DEFINITIONS = (
    (MetricsNames.SERVER_STARTING, "The last timestamp when the GraphQL server was starting.", GaugeMetric, ("version",)),
    (MetricsNames.SERVER_CLOSING, "The last timestamp when the GraphQL server was closing.", GaugeMetric, ("version",)),
    (MetricsNames.QUERY_STARTED, "The number of received GraphQL requests.", CounterMetric, CONTEXT_LABELS),
    (MetricsNames.QUERY_PARSE_STARTED, "The number of times parsing started.", CounterMetric, CONTEXT_LABELS),
    (MetricsNames.QUERY_PARSE_FAILED, "The number of failed parsings.", CounterMetric, CONTEXT_LABELS),
    (MetricsNames.QUERY_VALIDATION_STARTED, "The number of times validation started.", CounterMetric, CONTEXT_LABELS),
    (MetricsNames.QUERY_VALIDATION_FAILED, "The number of failed validations.", CounterMetric, CONTEXT_LABELS),
    (MetricsNames.QUERY_RESOLVED, "The number of resolved operations.", CounterMetric, CONTEXT_LABELS),
    (MetricsNames.QUERY_EXECUTION_STARTED, "The number of times execution started.", CounterMetric, CONTEXT_LABELS),
    (MetricsNames.QUERY_EXECUTION_FAILED, "The number of failed executions.", CounterMetric, CONTEXT_LABELS),
    (
        MetricsNames.QUERY_FIELD_RESOLUTION_DURATION,
        "Duration of individual GraphQL field resolution in seconds.",
        HistogramMetric,
        CONTEXT_LABELS + FIELD_LABELS,
    ),
    (MetricsNames.QUERY_FAILED, "The number of failed GraphQL requests.", CounterMetric, CONTEXT_LABELS),
    (
        MetricsNames.QUERY_FAILED_BY_CLIENT,
        "The number of GraphQL requests rejected because of client input or credentials.",
        CounterMetric,
        CONTEXT_LABELS,
    ),
    (
        MetricsNames.QUERY_DURATION,
        "Duration of GraphQL requests in seconds.",
        HistogramMetric,
        CONTEXT_LABELS + ("success",),
    ),
)


def build_metrics(
    registry=REGISTRY,
    prefix="graphql_",
    skip_metrics=None,
    duration_buckets=DEFAULT_DURATION_BUCKETS,
    field_resolution_buckets=DEFAULT_FIELD_RESOLUTION_BUCKETS,
):
    """Create and register one descriptor per :class:`MetricsNames` member.

    Args:
        registry: The ``CollectorRegistry`` the instances are registered into.
        prefix: Prepended to every metric name.
        skip_metrics: Optional mapping of :class:`MetricsNames` to skip predicate.
        duration_buckets: Histogram buckets (seconds) for ``QUERY_DURATION``.
        field_resolution_buckets: Histogram buckets (seconds) for field timings.

    Returns:
        Mapping[MetricsNames, CounterMetric | GaugeMetric | HistogramMetric]: read-only registry.
    """
    skip_metrics = skip_metrics or {}
    buckets = {
        MetricsNames.QUERY_DURATION: duration_buckets,
        MetricsNames.QUERY_FIELD_RESOLUTION_DURATION: field_resolution_buckets,
    }

    metrics = {}
    for name, documentation, descriptor_class, labelnames in _METRIC_DEFINITIONS:
        kwargs = {"registry": registry}
        if name in buckets:
            kwargs["buckets"] = buckets[name]
        instance = descriptor_class.instance_class(prefix + name.value, documentation, labelnames, **kwargs)
        metrics[name] = descriptor_class(
            instance=instance,
            labelnames=labelnames,
            skip=skip_metrics.get(name, never_skip),
        )
    return MappingProxyType(metrics)


def action_metric(metrics, name, labels, value=None, context=None, field=None):
    """Record ``name`` unless its skip predicate vetoes it.

    Counters are incremented by one and ignore ``value``. Gauges are set to
    and histograms observe ``value`` converted from milliseconds to seconds.

    Raises:
        KeyError: ``name`` has no descriptor in ``metrics``.
        MissingMetricValue: a gauge or histogram was recorded without a value.
    """
    metric = metrics[name]
    if metric.skip(labels, context, field):
        logger.debug("Skipped %s", name.name)
        return

    filtered_labels = filter_labels(labels)

    if metric.kind is MetricTypes.COUNTER:
        metric.inc(filtered_labels)
        return

    if value is None:
        raise MissingMetricValue(f"{name.name} is a {metric.kind.value} and requires a value")

    if metric.kind is MetricTypes.GAUGE:
        metric.set(filtered_labels, convert_ms_to_s(value))
    else:
        metric.observe(filtered_labels, convert_ms_to_s(value))
