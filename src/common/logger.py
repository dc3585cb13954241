# src/common/logger.py
"""
Structured logging for the order and delivery services.

Console output is coloured text in development and JSON in production.
Optionally every record also goes to a size-rotated file, and errors to a
separate error file. Each record carries the business code location that
emitted it plus the ``extra`` context (order ids, delivery ids, outcomes).
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from src.common.constants import TypeMsg


DEFAULT_LOGGER_NAME = "food_delivery"

_LEVELS: dict[TypeMsg, int] = {
    TypeMsg.DEBUG: logging.DEBUG,
    TypeMsg.INFO: logging.INFO,
    TypeMsg.WARNING: logging.WARNING,
    TypeMsg.ERROR: logging.ERROR,
    TypeMsg.CRITICAL: logging.CRITICAL,
}

# Libraries that are too chatty below WARNING
_QUIET_LIBRARIES = ("asyncpg", "aio_pika", "aiormq", "httpx", "httpcore", "uvicorn.access")

# File handlers are shared by every logger of the process
_file_handlers: list[logging.Handler] = []

_loggers: dict[str, logging.Logger] = {}

_LOGGING_INITIALIZED: bool = False


# =============================================================================
# FORMATTERS
# =============================================================================

def _context(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "extra_data", None) or {}


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "service": os.getenv("SERVICE_NAME", DEFAULT_LOGGER_NAME),
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        context = _context(record)
        if context:
            payload["extra"] = context

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """
    ``2024-01-15 12:00:00 [INFO] [module.function() file.py:42] message {context}``
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def _dim(self, text: str) -> str:
        return f" {self.GRAY}{text}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.GRAY)
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        context = dict(_context(record))
        location = ""
        function = context.pop("caller_function", None)
        module = context.pop("caller_module", None)
        filename = context.pop("caller_file", None)
        line = context.pop("caller_line", None)
        if function:
            location = self._dim(f"[{module}.{function}() {filename}:{line}]")

        parts = [f"{timestamp} {color}[{record.levelname}]{self.RESET}{location} {record.getMessage()}"]
        if context:
            parts.append(self._dim(json.dumps(context, ensure_ascii=False, default=str)))
        text = "".join(parts)

        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


# =============================================================================
# FILE ROTATION
# =============================================================================

def _timestamped_name(default_name: str) -> str:
    """app.log.1 -> app_2024-01-15_12-00-00.log"""
    base = Path(default_name.rsplit(".", 1)[0])
    stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    return str(base.with_name(f"{base.stem}_{stamp}{base.suffix}"))


def _rotating_file_handler(path: Path, max_bytes: int) -> RotatingFileHandler:
    """
    Writes to ``path``; once it reaches ``max_bytes`` the file is archived
    under a timestamped name and a fresh one is started. Archives are kept.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=1, encoding="utf-8")
    handler.namer = _timestamped_name
    return handler


def _build_file_handlers(options: dict[str, Any], formatter: logging.Formatter) -> list[logging.Handler]:
    if _file_handlers:
        return _file_handlers

    log_path = Path(options["file_path"])
    service_name = os.getenv("SERVICE_NAME")
    if service_name:
        log_path = log_path.with_name(f"{log_path.stem}_{service_name}{log_path.suffix}")

    main_handler = _rotating_file_handler(log_path, options["max_bytes"])
    main_handler.setFormatter(formatter)

    error_handler = _rotating_file_handler(log_path.with_name("error.log"), options["max_bytes"])
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    _file_handlers.extend([main_handler, error_handler])
    return _file_handlers


# =============================================================================
# LOGGERS
# =============================================================================

def _read_logging_settings() -> dict[str, Any]:
    """Logging options from settings, or development defaults when settings are unavailable."""
    options: dict[str, Any] = {
        "level": "DEBUG",
        "format": "colored",
        "to_file": False,
        "file_path": "logs/app.log",
        "max_bytes": 10485760,
    }
    try:
        # imported lazily so the logger stays usable while settings load
        from src.config import settings
        section = settings.logging
    except Exception:
        return options

    for key, attribute, expected in (
        ("level", "LOG_LEVEL", str),
        ("format", "LOG_FORMAT", str),
        ("to_file", "LOG_TO_FILE", bool),
        ("file_path", "LOG_FILE_PATH", str),
        ("max_bytes", "LOG_MAX_BYTES", int),
    ):
        value = getattr(section, attribute, None)
        if isinstance(value, expected):
            options[key] = value
    return options


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Returns the named logger, configuring it on first use.
    """
    if name in _loggers:
        return _loggers[name]

    options = _read_logging_settings()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, options["level"].upper(), logging.DEBUG))
    logger.propagate = False

    if not logger.handlers:
        formatter: logging.Formatter = JsonFormatter() if options["format"] == "json" else ColoredFormatter()

        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        logger.addHandler(console)

        if options["to_file"]:
            for handler in _build_file_handlers(options, formatter):
                logger.addHandler(handler)

    _loggers[name] = logger
    return logger


def setup_logging() -> None:
    """Configures the default logger and quiets third-party libraries. Idempotent."""
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED:
        return
    _LOGGING_INITIALIZED = True

    get_logger(DEFAULT_LOGGER_NAME)
    for library in _QUIET_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)


# =============================================================================
# HELPERS
# =============================================================================

def _get_caller_info() -> dict[str, Any]:
    """Location of the first frame outside this module."""
    frame = inspect.currentframe()
    try:
        while frame is not None and frame.f_globals.get("__name__") == __name__:
            frame = frame.f_back
        if frame is None:
            return {}
        return {
            "caller_function": frame.f_code.co_name,
            "caller_module": frame.f_globals.get("__name__", "unknown"),
            "caller_file": os.path.basename(frame.f_code.co_filename),
            "caller_line": frame.f_lineno,
        }
    finally:
        del frame


def _emit(
    level: int,
    message: str,
    logger_name: str,
    extra: dict[str, Any] | None,
    exc_info: bool = False,
) -> None:
    logger = get_logger(logger_name)
    if not logger.isEnabledFor(level):
        return
    logger.log(
        level,
        message,
        extra={"extra_data": {**_get_caller_info(), **(extra or {})}},
        exc_info=exc_info,
    )


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Logs ``message`` at the level named by ``type_msg``.

    Args:
        message: Message text
        type_msg: Level of the message
        logger_name: Logger name
        extra: Structured context attached to the record
    """
    _emit(_LEVELS.get(type_msg, logging.INFO), message, logger_name, extra)


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.DEBUG, message, logger_name, extra)


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.WARNING, message, logger_name, extra)


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """ERROR level; ``exc_info=True`` attaches the traceback being handled."""
    _emit(logging.ERROR, message, logger_name, extra, exc_info=exc_info)
