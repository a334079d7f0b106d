"""Logging, metrics and reporting."""

from .logger import LogContext, add_context, configure_logging
from .metrics import MetricsCollector, get_global_collector, reset_global_collector
from .reporter import MigrationReport, ReportGenerator

__all__ = [
    "LogContext",
    "add_context",
    "configure_logging",
    "MetricsCollector",
    "get_global_collector",
    "reset_global_collector",
    "MigrationReport",
    "ReportGenerator",
]
