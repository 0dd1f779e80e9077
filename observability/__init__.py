"""Observability package for DocBridge."""

from .logging import (
    setup_logging,
    get_logger,
    get_structured_logger,
    StructuredLogger,
    JSONFormatter,
    ColoredFormatter,
    log_performance
)
from .prometheus_metrics import (
    record_search_metrics,
    record_adapter_call,
    record_cache_lookup,
    record_fallback_suggestion,
    set_local_document_count,
    get_metrics_summary,
    generate_metrics,
    docbridge_registry
)

__all__ = [
    'setup_logging',
    'get_logger',
    'get_structured_logger',
    'StructuredLogger',
    'JSONFormatter',
    'ColoredFormatter',
    'log_performance',
    'record_search_metrics',
    'record_adapter_call',
    'record_cache_lookup',
    'record_fallback_suggestion',
    'set_local_document_count',
    'get_metrics_summary',
    'generate_metrics',
    'docbridge_registry'
]
