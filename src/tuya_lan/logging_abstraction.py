"""Logging abstraction layer for the Tuya LAN engine.

Provides dual-format logging (JSON + human-readable) with correlation ids
and structured context. Handlers are installed once on the package logger
(``tuya_lan``); every module logger propagates to it, including the plain
``logging.getLogger(__name__)`` loggers used by the codec modules.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "TuyaLogger",
    "configure_logging",
    "get_logger",
]

_configure_lock = threading.Lock()
_configured = {"done": False}


def _context_of(record: logging.LogRecord) -> Mapping[str, object] | None:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return cast("Mapping[str, object]", extra_data)
    return None


class JSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per log line."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        from tuya_lan.correlation import get_correlation_id  # noqa: PLC0415

        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }

        context = _context_of(record)
        if context:
            log_data["context"] = dict(context)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter for console output: ``time level [module:line] [corrid] > msg | k=v``."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable text."""
        from tuya_lan.correlation import get_correlation_id  # noqa: PLC0415

        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"

        formatted = super().format(record)
        context = _context_of(record)
        if context:
            formatted = f"{formatted} | " + " | ".join(f"{k}={v}" for k, v in context.items())
        return formatted


def _human_handler(human_output: str) -> logging.Handler:
    if human_output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if human_output == "stderr":
        return logging.StreamHandler(sys.stderr)
    try:
        human_path = Path(human_output)
        human_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(human_path, mode="a")
    except OSError as e:
        print(f"Warning: Failed to create human log file {human_output}: {e}", file=sys.stderr)
        return logging.StreamHandler(sys.stdout)


def configure_logging(
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
    debug: bool | None = None,
    force: bool = False,
) -> logging.Logger:
    """Install handlers on the package logger.

    Runs once per process unless ``force`` is set, in which case existing
    handlers are replaced. Arguments left as None fall back to the
    TUYA_LAN_LOG_* environment settings.

    Returns:
        The configured ``tuya_lan`` logger

    """
    from tuya_lan import const  # noqa: PLC0415

    root = logging.getLogger(const.TUYA_LAN_LOG_NAME)
    with _configure_lock:
        if _configured["done"] and not force:
            return root
        for handler in list(root.handlers):
            root.removeHandler(handler)

        log_format = log_format or const.TUYA_LAN_LOG_FORMAT
        json_file = json_file or const.TUYA_LAN_LOG_JSON_FILE
        human_output = human_output or const.TUYA_LAN_LOG_HUMAN_OUTPUT
        debug = const.TUYA_LAN_DEBUG if debug is None else debug

        level = logging.DEBUG if debug else logging.INFO
        root.setLevel(level)

        if log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(level)
                root.addHandler(json_handler)
            except OSError as e:
                print(f"Warning: Failed to create JSON log file {json_file}: {e}", file=sys.stderr)

        if log_format in ("human", "both"):
            human_handler = _human_handler(human_output)
            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(level)
            root.addHandler(human_handler)

        _configured["done"] = True
    return root


class TuyaLogger:
    """Structured logger: standard levels plus an ``extra`` context mapping.

    Context passed as ``extra`` is attached to the record as ``extra_data`` and
    rendered by both formatters.
    """

    def __init__(self, name: str) -> None:
        """Wrap the stdlib logger called ``name``."""
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        extra_payload = {"extra_data": dict(extra)} if extra else None
        self.logger.log(level, msg, *args, extra=extra_payload, stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log debug message with optional structured context."""
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log info message with optional structured context."""
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log warning message with optional structured context."""
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log error message with optional structured context."""
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log exception with traceback and optional structured context."""
        extra_payload = {"extra_data": dict(extra)} if extra else None
        self.logger.exception(msg, *args, extra=extra_payload, stacklevel=2)

    def set_level(self, level: int) -> None:
        """Set logging level."""
        self.logger.setLevel(level)

    def is_enabled_for(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)


def get_logger(name: str) -> TuyaLogger:
    """Return a TuyaLogger for ``name``, configuring package handlers on first use."""
    configure_logging()
    return TuyaLogger(name)
