"""Observability module for OpenTelemetry-aligned tracing, metrics, and logging."""

from record_search.observability.context import get_trace_context, set_trace_context, trace_context
from record_search.observability.logging import JsonFormatter, configure_logging
from record_search.observability.metrics import (
    INDEX_JOBS,
    QUEUE_DEPTH,
    REBUILD_LATENCY,
    REBUILT_DOCUMENTS,
    SEARCH_LATENCY,
    UPDATE_LATENCY,
    get_metrics,
    init_metrics,
)
from record_search.observability.tracing import create_span, init_tracing, start_operation


__all__ = [
    "INDEX_JOBS",
    "QUEUE_DEPTH",
    "REBUILD_LATENCY",
    "REBUILT_DOCUMENTS",
    "SEARCH_LATENCY",
    "UPDATE_LATENCY",
    "JsonFormatter",
    "configure_logging",
    "create_span",
    "get_metrics",
    "get_trace_context",
    "init_metrics",
    "init_tracing",
    "set_trace_context",
    "start_operation",
    "trace_context",
]
