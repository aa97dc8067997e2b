"""
Observability helpers: JSON logging and stage tracing.
"""

from .logging import JsonFormatter, get_logger
from .tracing import Span, Tracer, InMemorySpanCollector, current_trace_id, trace_call

__all__ = [
    "JsonFormatter",
    "get_logger",
    "Span",
    "Tracer",
    "InMemorySpanCollector",
    "current_trace_id",
    "trace_call",
]
