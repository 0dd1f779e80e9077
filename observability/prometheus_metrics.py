"""Prometheus metrics for DocBridge search."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

# Create custom registry for DocBridge metrics
docbridge_registry = CollectorRegistry()

# Search metrics
search_requests = Counter(
    'docbridge_search_requests_total',
    'Total number of search requests',
    ['search_type', 'status'],
    registry=docbridge_registry
)

search_duration = Histogram(
    'docbridge_search_duration_seconds',
    'Search request duration in seconds',
    ['search_type'],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=docbridge_registry
)

search_results_count = Histogram(
    'docbridge_search_results_count',
    'Number of search results returned',
    ['search_type'],
    buckets=[0, 1, 5, 10, 25, 50, 100],
    registry=docbridge_registry
)

# Docset adapter metrics
adapter_calls = Counter(
    'docbridge_adapter_calls_total',
    'Docset adapter calls by outcome',
    ['source', 'outcome'],
    registry=docbridge_registry
)

adapter_duration = Histogram(
    'docbridge_adapter_duration_seconds',
    'Docset adapter call duration in seconds',
    ['source'],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
    registry=docbridge_registry
)

# Cache metrics
cache_lookups = Counter(
    'docbridge_cache_lookups_total',
    'Fan-out cache lookups',
    ['result'],
    registry=docbridge_registry
)

# Corpus metrics
local_documents = Gauge(
    'docbridge_local_documents',
    'Number of documents in the local corpus',
    registry=docbridge_registry
)

fallback_suggestions = Counter(
    'docbridge_fallback_suggestions_total',
    'Number of times repeated empty searches triggered a fallback suggestion',
    registry=docbridge_registry
)

# Error metrics
error_count = Counter(
    'docbridge_errors_total',
    'Total number of errors',
    ['error_type', 'component'],
    registry=docbridge_registry
)


def record_search_metrics(search_type: str, duration: float, result_count: int,
                          error: Optional[str] = None) -> None:
    """Record search-related metrics."""
    status = "error" if error else "success"

    search_requests.labels(search_type=search_type, status=status).inc()
    search_duration.labels(search_type=search_type).observe(duration)

    if not error:
        search_results_count.labels(search_type=search_type).observe(result_count)

    if error:
        error_count.labels(error_type=error, component="search").inc()


def record_adapter_call(source: str, outcome: str, duration: Optional[float] = None) -> None:
    """Record one docset adapter call (outcome: success, error, timeout, cancelled)."""
    adapter_calls.labels(source=source, outcome=outcome).inc()
    if duration is not None:
        adapter_duration.labels(source=source).observe(duration)
    if outcome in ("error", "timeout"):
        error_count.labels(error_type=f"adapter_{outcome}", component="fanout").inc()


def record_cache_lookup(hit: bool) -> None:
    cache_lookups.labels(result="hit" if hit else "miss").inc()


def record_fallback_suggestion() -> None:
    fallback_suggestions.inc()


def set_local_document_count(count: int) -> None:
    local_documents.set(count)


def _total(metric_name: str) -> float:
    """Sum every sample of a metric family across its labels."""
    total = 0.0
    for metric in docbridge_registry.collect():
        for sample in metric.samples:
            if sample.name == metric_name:
                total += sample.value
    return total


def get_metrics_summary() -> Dict[str, Any]:
    """Get a summary of current metrics."""
    return {
        "search_requests_total": _total('docbridge_search_requests_total'),
        "adapter_calls_total": _total('docbridge_adapter_calls_total'),
        "cache_lookups_total": _total('docbridge_cache_lookups_total'),
        "fallback_suggestions_total": _total('docbridge_fallback_suggestions_total'),
        "errors_total": _total('docbridge_errors_total'),
        "local_documents": _total('docbridge_local_documents'),
    }


def generate_metrics() -> bytes:
    """Prometheus exposition text for the DocBridge registry."""
    return generate_latest(docbridge_registry)


__all__ = [
    'docbridge_registry',
    'record_search_metrics',
    'record_adapter_call',
    'record_cache_lookup',
    'record_fallback_suggestion',
    'set_local_document_count',
    'get_metrics_summary',
    'generate_metrics',
    'CONTENT_TYPE_LATEST',
]
