"""
Observability module - Logging, Metrics, and Tracing.
"""

from licensing.observability.logging import get_logger, log_context, setup_logging
from licensing.observability.metrics import metrics
from licensing.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
