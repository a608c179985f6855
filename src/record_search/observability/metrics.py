"""Prometheus metrics for index maintenance and queries, mirrored to OpenTelemetry."""

from __future__ import annotations

from typing import Any

from opentelemetry import metrics as otel_metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from prometheus_client import Counter, Gauge, Histogram, generate_latest


_meter_holder: dict[str, Any] = {"meter": None, "provider": None}


def init_metrics(
    service_name: str = "record-search",
    resource_attributes: dict[str, str] | None = None,
) -> MeterProvider:
    """Initialize OpenTelemetry metrics."""
    provider = _meter_holder.get("provider")
    if isinstance(provider, MeterProvider):
        return provider

    attributes = {"service.name": service_name}
    if resource_attributes:
        attributes.update(resource_attributes)
    resource = Resource.create(attributes)
    provider = MeterProvider(resource=resource)
    otel_metrics.set_meter_provider(provider)
    _meter_holder["provider"] = provider
    _meter_holder["meter"] = otel_metrics.get_meter(__name__)
    return provider


def _get_meter():
    meter = _meter_holder.get("meter")
    if meter is None:
        init_metrics()
        meter = _meter_holder.get("meter")
    return meter


def _label_key(labels: dict[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted(labels.items()))


class _BoundMetric:
    def __init__(self, wrapper: MetricBridge, labels: dict[str, str]) -> None:
        self._wrapper = wrapper
        self._labels = labels

    def inc(self, amount: float = 1.0) -> None:
        self._wrapper.inc(self._labels, amount)

    def observe(self, value: float) -> None:
        self._wrapper.observe(self._labels, value)

    def set(self, value: float) -> None:
        self._wrapper.set(self._labels, value)


class MetricBridge:
    """Bridge Prometheus metrics to OTel instruments."""

    def __init__(
        self,
        prom_metric: Counter | Histogram | Gauge,
        *,
        otel_name: str,
        otel_description: str,
        otel_kind: str,
    ) -> None:
        self._prom_metric = prom_metric
        self._otel_name = otel_name
        self._otel_description = otel_description
        self._otel_kind = otel_kind
        self._otel_instrument = None
        self._last_values: dict[tuple[tuple[str, str], ...], float] = {}

    def labels(self, **labels: str) -> _BoundMetric:
        return _BoundMetric(self, labels)

    def _ensure_otel_instrument(self):
        if self._otel_instrument is not None:
            return self._otel_instrument
        meter = _get_meter()
        if self._otel_kind == "counter":
            self._otel_instrument = meter.create_counter(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "histogram":
            self._otel_instrument = meter.create_histogram(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "gauge":
            self._otel_instrument = meter.create_up_down_counter(self._otel_name, description=self._otel_description)
        else:
            raise ValueError(f"Unknown metric kind: {self._otel_kind}")
        return self._otel_instrument

    def inc(self, labels: dict[str, str], amount: float) -> None:
        self._prom_metric.labels(**labels).inc(amount)
        otel = self._ensure_otel_instrument()
        otel.add(amount, labels)

    def observe(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).observe(value)
        otel = self._ensure_otel_instrument()
        otel.record(value, labels)

    def set(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).set(value)
        otel = self._ensure_otel_instrument()
        key = _label_key(labels)
        last = self._last_values.get(key, 0.0)
        delta = value - last
        if delta:
            otel.add(delta, labels)
        self._last_values[key] = value


_INDEX_JOBS_PROM = Counter(
    "record_search_index_jobs_total",
    "Index jobs processed by the incremental indexer",
    ["action", "status"],
)

_UPDATE_LATENCY_PROM = Histogram(
    "record_search_update_index_seconds",
    "Duration of one incremental indexing run",
    ["outcome"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 60.0),
)

_REBUILD_LATENCY_PROM = Histogram(
    "record_search_rebuild_index_seconds",
    "Duration of a full index rebuild",
    ["outcome"],
    buckets=(1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0),
)

_REBUILT_DOCUMENTS_PROM = Counter(
    "record_search_rebuilt_documents_total",
    "Documents written by full rebuilds",
    ["entity_type"],
)

_SEARCH_LATENCY_PROM = Histogram(
    "record_search_query_latency_seconds",
    "Search query latency",
    ["sorted"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

_QUEUE_DEPTH_PROM = Gauge(
    "record_search_queue_depth",
    "Index jobs pending when the last indexing run started",
    ["index"],
)

INDEX_JOBS = MetricBridge(
    _INDEX_JOBS_PROM,
    otel_name="record_search_index_jobs_total",
    otel_description="Index jobs processed by the incremental indexer",
    otel_kind="counter",
)

UPDATE_LATENCY = MetricBridge(
    _UPDATE_LATENCY_PROM,
    otel_name="record_search_update_index_seconds",
    otel_description="Duration of one incremental indexing run",
    otel_kind="histogram",
)

REBUILD_LATENCY = MetricBridge(
    _REBUILD_LATENCY_PROM,
    otel_name="record_search_rebuild_index_seconds",
    otel_description="Duration of a full index rebuild",
    otel_kind="histogram",
)

REBUILT_DOCUMENTS = MetricBridge(
    _REBUILT_DOCUMENTS_PROM,
    otel_name="record_search_rebuilt_documents_total",
    otel_description="Documents written by full rebuilds",
    otel_kind="counter",
)

SEARCH_LATENCY = MetricBridge(
    _SEARCH_LATENCY_PROM,
    otel_name="record_search_query_latency_seconds",
    otel_description="Search query latency",
    otel_kind="histogram",
)

QUEUE_DEPTH = MetricBridge(
    _QUEUE_DEPTH_PROM,
    otel_name="record_search_queue_depth",
    otel_description="Index jobs pending when the last indexing run started",
    otel_kind="gauge",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()
