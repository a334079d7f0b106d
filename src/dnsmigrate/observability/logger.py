"""Structured logging configuration with custom verbosity levels.

Levels, most to least verbose:
- TRACE (5): accepted as a --log-level threshold; passes everything DEBUG does
- DEBUG (10): rule computations, lock and lease activity
- VERBOSE (15): accepted as a --log-level threshold between DEBUG and INFO
- INFO (20): phase transitions and summaries (default)
"""

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Any

import structlog

# Phase/topology context shared by every log line of a transition
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_LEVELS = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class LogContext:
    """
    Context manager for adding context to logs.

    Usage:
        with LogContext(topology="hub-spoke", phase="DnsConfig"):
            logger.info("Applying rules")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.new_context = kwargs
        self.token = None

    def __enter__(self) -> "LogContext":
        current = _log_context.get().copy()
        current.update(self.new_context)
        self.token = _log_context.set(current)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.token:
            _log_context.reset(self.token)


def add_context(**kwargs: Any) -> None:
    """Add keys to the log context of the current execution context."""
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def clear_all_context() -> None:
    _log_context.set({})


def current_context() -> dict[str, Any]:
    return dict(_log_context.get())


class ComponentFilter(logging.Filter):
    """
    Drop dnsmigrate records below WARNING unless they come from a listed component.

    Matching is by substring of the logger name, so "forwarding" keeps
    dnsmigrate.core.forwarding. Loggers outside dnsmigrate are not touched.
    """

    def __init__(self, log_filter: str) -> None:
        super().__init__()
        self.components = [c.strip() for c in log_filter.split(",") if c.strip()]

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING or not record.name.startswith("dnsmigrate"):
            return True
        return any(component in record.name for component in self.components)


def _context_processor(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor that injects the LogContext values."""
    context = _log_context.get()
    if context:
        for key, value in context.items():
            event_dict.setdefault(key, value)
    return event_dict


def get_log_level(level: str) -> int:
    """Numeric level for a level name; unknown names fall back to INFO."""
    return LOG_LEVELS.get(level.upper(), logging.INFO)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: str | Path | None = None,
    log_filter: str | None = None,
) -> None:
    """
    Configure structured logging.

    Args:
        level: TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR or CRITICAL
        json_logs: Render JSON lines instead of the console format
        log_file: Optional path to also write logs to
        log_filter: Comma-separated component names to keep below WARNING
            (e.g. "forwarding,cutover")
    """
    log_level = get_log_level(level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(file_path))

    if log_filter:
        component_filter = ComponentFilter(log_filter)
        for handler in handlers:
            handler.addFilter(component_filter)

    logging.basicConfig(format="%(message)s", level=log_level, handlers=handlers, force=True)
    logging.getLogger().setLevel(log_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _context_processor,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
