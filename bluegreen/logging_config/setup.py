"""Logging Setup.

One-call configuration for orchestrator logging. JSON lines suit log
shippers on deployment hosts; the console format suits an operator
running the CLI by hand.
"""

import json
import logging
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from bluegreen.logging_config.config import DEFAULT_LOGGING_CONFIG, LogFormat, LoggingConfig, LogLevel
from bluegreen.logging_config.context import get_context_dict

# Record attributes passed through ``extra=`` that end up in JSON output.
_EXTRA_FIELDS = ("duration_ms", "slot", "error_rate", "notification", "extra_data")

# Third-party loggers that log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _exception_info(formatter: logging.Formatter, record: logging.LogRecord) -> Optional[Dict[str, str]]:
    if not record.exc_info or record.exc_info[0] is None:
        return None
    exc_type, exc_value, _ = record.exc_info
    return {
        "type": exc_type.__name__,
        "message": str(exc_value),
        "traceback": formatter.formatException(record.exc_info),
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Always present: timestamp, level, logger, message, service. Caller
    location, the bound deployment context, exception details and the
    known ``extra`` fields are added when available.
    """

    def __init__(self, service_name: str = "bluegreen", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        if self.include_caller:
            entry.update(module=record.module, function=record.funcName, line=record.lineno)

        entry.update(get_context_dict())

        exception = _exception_info(self, record)
        if exception:
            entry["exception"] = exception

        entry.update(
            (key, getattr(record, key)) for key in _EXTRA_FIELDS if hasattr(record, key)
        )
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable single-line output with optional ANSI colors."""

    LEVEL_COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"

        text = f"{clock} {level} {record.name}: {record.getMessage()}"
        context = get_context_dict()
        if context:
            text += "  (" + " ".join(f"{k}={v}" for k, v in context.items()) + ")"
        if record.exc_info and record.exc_info[0] is not None:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def _apply_env_overrides(config: LoggingConfig) -> LoggingConfig:
    level = os.environ.get("BLUEGREEN_LOG_LEVEL", "").upper()
    if level in LogLevel.__members__:
        config = replace(config, level=LogLevel(level))

    fmt = os.environ.get("BLUEGREEN_LOG_FORMAT", "").lower()
    if fmt in {f.value for f in LogFormat}:
        config = replace(config, format=LogFormat(fmt))
    return config


def configure_logging(
    config: Optional[LoggingConfig] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Install a single root handler for the orchestrator.

    Args:
        config: Logging configuration. Uses defaults if not provided.
                BLUEGREEN_LOG_LEVEL and BLUEGREEN_LOG_FORMAT override it.
        stream: Output stream, stdout by default.
    """
    config = _apply_env_overrides(config or DEFAULT_LOGGING_CONFIG)
    stream = stream or sys.stdout

    if config.format == LogFormat.JSON:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=config.service_name,
            include_caller=config.include_caller,
        )
    else:
        formatter = ConsoleFormatter(use_color=stream.isatty())

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(config.level.value)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
