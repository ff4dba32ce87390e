"""Logging setup for igdnat.

Records carry two pieces of context: a correlation id tying together the log
lines of one CLI invocation or embedding-application operation, and the
gateway the operation talks to. Both live in context variables so they follow
asyncio tasks.
"""

from __future__ import annotations

import json
import logging
import logging.config
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from igdnat.exceptions import IGDNatError

if TYPE_CHECKING:
    from igdnat.models import ObservabilityConfig

PACKAGE_LOGGER = "igdnat"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
current_gateway: ContextVar[str | None] = ContextVar("current_gateway", default=None)

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "correlation_id", "gateway"}


class ContextFilter(logging.Filter):
    """Copy the correlation id and current gateway onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id.get() or "-"
        if not hasattr(record, "gateway"):
            record.gateway = current_gateway.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "gateway": getattr(record, "gateway", None),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, value) for key, value in vars(record).items() if key not in _RECORD_ATTRS
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    COLORS: ClassVar[dict[int, str]] = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET: ClassVar[str] = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        color = self.COLORS.get(record.levelno)
        if color:
            record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _console_handler(config: ObservabilityConfig) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": config.log_level.value,
        "formatter": "structured" if config.structured_logging else "console",
        "filters": ["context"],
        "stream": sys.stderr,
    }


def _file_handler(config: ObservabilityConfig) -> dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": config.log_level.value,
        "formatter": "structured" if config.structured_logging else "plain",
        "filters": ["context"],
        "filename": config.log_file,
        "maxBytes": LOG_FILE_MAX_BYTES,
        "backupCount": LOG_FILE_BACKUPS,
        "encoding": "utf-8",
    }


def build_logging_config(config: ObservabilityConfig) -> dict[str, Any]:
    """Return the ``dictConfig`` schema for ``config``."""
    line_format = "%(asctime)s %(levelname)s [%(gateway)s] %(name)s: %(message)s"
    if config.log_correlation_id:
        line_format = "%(asctime)s %(levelname)s %(correlation_id)s [%(gateway)s] %(name)s: %(message)s"

    handlers = {"console": _console_handler(config)}
    if config.log_file:
        handlers["file"] = _file_handler(config)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": ColoredFormatter,
                "format": line_format,
                "datefmt": "%H:%M:%S",
            },
            "plain": {
                "format": line_format,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "structured": {"()": StructuredFormatter},
        },
        "filters": {"context": {"()": ContextFilter}},
        "handlers": handlers,
        "loggers": {
            PACKAGE_LOGGER: {
                "level": config.log_level.value,
                "handlers": list(handlers),
                "propagate": False,
            },
        },
        # aiohttp and friends only get through when something is wrong
        "root": {"level": logging.WARNING, "handlers": ["console"]},
    }


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure the ``igdnat`` logger hierarchy from ``config``."""
    if config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(build_logging_config(config))

    if config.log_correlation_id and correlation_id.get() is None:
        set_correlation_id()


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``igdnat`` namespace."""
    if name == PACKAGE_LOGGER or name.startswith(f"{PACKAGE_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


def set_correlation_id(corr_id: str | None = None) -> str:
    """Set the correlation id for the current context, generating one if needed."""
    if corr_id is None:
        corr_id = uuid.uuid4().hex[:12]
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str | None:
    return correlation_id.get()


class LoggingContext:
    """Scope one operation against a gateway.

    Sets a fresh correlation id and the current gateway for the duration of
    the block, restoring the previous values on exit, and logs how long the
    operation took.
    """

    def __init__(self, operation: str, gateway: str | None = None):
        self.operation = operation
        self.gateway = gateway
        self.logger = get_logger("operations")
        self._tokens: tuple[Any, Any] | None = None
        self._started = 0.0

    def __enter__(self) -> LoggingContext:
        self._tokens = (
            correlation_id.set(uuid.uuid4().hex[:12]),
            current_gateway.set(self.gateway),
        )
        self._started = time.perf_counter()
        self.logger.debug("%s started", self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed = time.perf_counter() - self._started
        if exc_type is None:
            self.logger.debug("%s finished in %.3fs", self.operation, elapsed)
        else:
            self.logger.debug("%s failed after %.3fs: %s", self.operation, elapsed, exc_val)
        if self._tokens is not None:
            corr_token, gateway_token = self._tokens
            current_gateway.reset(gateway_token)
            correlation_id.reset(corr_token)
            self._tokens = None
        return False


def log_exception(logger: logging.Logger, exc: Exception, context: str = "") -> None:
    """Log ``exc`` at error level with its traceback and any error details."""
    if isinstance(exc, IGDNatError):
        logger.error("%s: %s", context, exc.message, extra={"details": exc.details}, exc_info=exc)
    else:
        logger.error("%s: %s", context, exc, exc_info=exc)
