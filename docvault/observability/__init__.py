"""Observability helpers: logging setup and Prometheus metrics."""

from .logging import (
    ConsoleFormatter,
    ContextLogger,
    JSONFormatter,
    get_context_logger,
    log_performance,
    setup_logging,
)
from .metrics import render_metrics

__all__ = [
    'ConsoleFormatter',
    'ContextLogger',
    'JSONFormatter',
    'get_context_logger',
    'log_performance',
    'render_metrics',
    'setup_logging',
]
