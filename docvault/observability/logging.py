"""Logging setup for DocVault.

Console output is human readable by default and JSON on request; the log
file, when configured, is always JSON. Context bound with
``get_context_logger`` (sync id, version id, file path) travels on each
record as ``ctx_*`` attributes and is rendered by both formatters.
"""

import functools
import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

CONTEXT_PREFIX = "ctx_"

# Keyword arguments the logging module itself understands
_LOGGING_KWARGS = {"exc_info", "stack_info", "stacklevel", "extra"}

_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

NOISY_LOGGERS = ("urllib3", "apscheduler", "sentence_transformers", "uvicorn")


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Context bound to ``record``, without the ``ctx_`` prefix."""
    return {
        key[len(CONTEXT_PREFIX):]: value
        for key, value in record.__dict__.items()
        if key.startswith(CONTEXT_PREFIX)
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line; bound context goes under ``context``."""

    def __init__(self, service_name: str = "docvault"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        context = record_context(record)
        if context:
            entry["context"] = context

        # Plain extra= fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith(CONTEXT_PREFIX):
                entry.setdefault(key, value)

        if record.exc_info:
            entry["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """``time level logger: message [key=value ...]``, optionally colored by level."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        if self.use_colors and record.levelno in self.LEVEL_COLORS:
            level = f"{self.LEVEL_COLORS[record.levelno]}{level}{self.RESET}"

        line = f"{self.formatTime(record, self.datefmt)} {level} {record.name}: {record.getMessage()}"
        context = record_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", service_name: str = "docvault", log_file: Optional[str] = None,
                  use_json: bool = False, use_colors: Optional[bool] = None) -> None:
    """Replace the root handlers with DocVault's console (and file) handlers.

    Colors default to on when stdout is a terminal.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    if use_colors is None:
        use_colors = sys.stdout.isatty()

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(numeric_level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JSONFormatter(service_name) if use_json else ConsoleFormatter(use_colors))
    root.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter(service_name))
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that attaches bound and per-call context to records.

    Keyword arguments other than the ones ``logging`` understands become
    context::

        log = get_context_logger(__name__, sync_id=history.id)
        log.warning("Skipping file", path="docs/a.md")
    """

    def process(self, msg, kwargs):
        context = dict(self.extra)
        for key in [k for k in kwargs if k not in _LOGGING_KWARGS]:
            context[key] = kwargs.pop(key)
        extra = dict(kwargs.get("extra") or {})
        extra.update({f"{CONTEXT_PREFIX}{k}": v for k, v in context.items()})
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context) -> 'ContextLogger':
        return ContextLogger(self.logger, {**self.extra, **context})


def get_context_logger(name: str, **context) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), context)


def log_performance(logger_name: Optional[str] = None, threshold_ms: float = 1000.0):
    """Warn when the wrapped call takes longer than ``threshold_ms``; log failures at ERROR."""
    def decorator(func):
        log = logging.getLogger(logger_name or func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            failed = False
            try:
                return func(*args, **kwargs)
            except Exception as e:
                failed = True
                log.error(f"Function failed: {func.__name__} ({type(e).__name__})",
                          extra={"duration_ms": (time.perf_counter() - start) * 1000})
                raise
            finally:
                elapsed_ms = (time.perf_counter() - start) * 1000
                if not failed and elapsed_ms > threshold_ms:
                    log.warning(f"Slow function execution: {func.__name__} took {elapsed_ms:.1f}ms",
                                extra={"duration_ms": elapsed_ms, "threshold_ms": threshold_ms})

        return wrapper
    return decorator
