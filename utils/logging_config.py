"""
Logging configuration for rubric_eval.

Provides structured logging with multiple outputs:
- Colored console output (human-readable)
- Rotating file log (human-readable)
- JSON structured log (machine-parseable)
- Error-only log (quick problem identification)

Pipeline runs attach their run id and phase to every record emitted while
they are active (see LogContext). The context lives in a ContextVar, so two
runs interleaved on the same event loop keep separate context.
"""

import asyncio
import contextvars
import functools
import json
import logging
import logging.handlers
import sys
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_run_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "rubric_eval_run_context", default={}
)


class RunContextFilter(logging.Filter):
    """Copies the active run context onto each record as ``extra_data``."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _run_context.get()
        if context and not hasattr(record, "extra_data"):
            record.extra_data = dict(context)
        return True


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        if hasattr(record, "extra_data"):
            log_data["data"] = record.extra_data
        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for human readability."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        original = record.levelname
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    console: bool = True,
    json_logs: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        console: Enable console output
        json_logs: Enable JSON structured logs
        max_bytes: Max size per log file
        backup_count: Number of backup files to keep

    Returns:
        Root logger for the project
    """
    log_dir = log_dir or Path.home() / ".rubric_eval" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger("rubric_eval")
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()
    root_logger.filters.clear()
    context_filter = RunContextFilter()

    line_format = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    if console:
        # stderr keeps stdout free for the CLI's tables and JSON
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG)
        if sys.stderr.isatty():
            fmt: logging.Formatter = ColoredFormatter(line_format, datefmt="%H:%M:%S")
        else:
            fmt = logging.Formatter(line_format, datefmt="%H:%M:%S")
        console_handler.setFormatter(fmt)
        console_handler.addFilter(context_filter)
        root_logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "rubric_eval.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(module)s:%(lineno)d | %(message)s"
        )
    )
    file_handler.addFilter(context_filter)
    root_logger.addHandler(file_handler)

    if json_logs:
        json_handler = logging.handlers.RotatingFileHandler(
            log_dir / "rubric_eval.json.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        json_handler.setLevel(logging.DEBUG)
        json_handler.setFormatter(StructuredFormatter())
        json_handler.addFilter(context_filter)
        root_logger.addHandler(json_handler)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "rubric_eval.error.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d\n"
            "%(message)s\n---"
        )
    )
    error_handler.addFilter(context_filter)
    root_logger.addHandler(error_handler)

    return root_logger


class LogContext:
    """Context manager that tags log records with pipeline run context.

    Nested contexts merge over the enclosing one:

        with LogContext(run_id="abc"):
            with LogContext(phase="generating"):
                logger.info("...")  # data={"run_id": "abc", "phase": "generating"}
    """

    def __init__(self, **context: Any):
        self.context = context
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "LogContext":
        merged = {**_run_context.get(), **self.context}
        self._token = _run_context.set(merged)
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _run_context.reset(self._token)
            self._token = None


def current_log_context() -> Dict[str, Any]:
    """Return a copy of the active run context."""
    return dict(_run_context.get())


def log_performance(logger: Optional[logging.Logger] = None):
    """Decorator to log execution time of a function or coroutine function."""

    def decorator(func):
        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                log = logger or logging.getLogger(func.__module__)
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    elapsed = (time.perf_counter() - start) * 1000
                    log.error(f"{func.__qualname__} failed after {elapsed:.1f}ms: {e}")
                    raise
                elapsed = (time.perf_counter() - start) * 1000
                log.debug(f"{func.__qualname__} completed in {elapsed:.1f}ms")
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            log = logger or logging.getLogger(func.__module__)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                log.error(f"{func.__qualname__} failed after {elapsed:.1f}ms: {e}")
                raise
            elapsed = (time.perf_counter() - start) * 1000
            log.debug(f"{func.__qualname__} completed in {elapsed:.1f}ms")
            return result

        return wrapper

    return decorator


class DebugTimer:
    """Context manager for timing pipeline phases with optional checkpoints."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger("rubric_eval.debug")
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.checkpoints: list = []

    def __enter__(self) -> "DebugTimer":
        self.start_time = time.perf_counter()
        return self

    @property
    def elapsed_ms(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return (end - self.start_time) * 1000

    def checkpoint(self, name: str) -> None:
        elapsed = self.elapsed_ms
        self.checkpoints.append((name, elapsed))
        self.logger.debug(f"[{self.name}] {name}: {elapsed:.1f}ms")

    def __exit__(self, *args: Any) -> None:
        self.end_time = time.perf_counter()
        self.logger.debug(f"[{self.name}] Total: {self.elapsed_ms:.1f}ms")
