from __future__ import annotations

import json
import logging
import logging.config
from pathlib import Path
from typing import Any

REQUEST_LOGGER = "gigbook.requests"

# Uvicorn's access log repeats what the request recorder already writes.
_QUIETED_LOGGERS = ("uvicorn.access",)


class JsonFormatter(logging.Formatter):
    """JSON line formatter; request log records carry their fields under `request`."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        request = getattr(record, "request", None)
        if isinstance(request, dict):
            payload["request"] = request
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_logging_config(settings) -> dict[str, Any]:
    log_level = getattr(settings, "log_level", "INFO") or "INFO"
    request_level = getattr(settings, "request_log_level", "") or log_level
    console_format = "json" if getattr(settings, "log_json", False) else "standard"

    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": console_format,
        },
    }
    log_file = getattr(settings, "log_file", "") or ""
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "json",
            "filename": log_file,
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }

    loggers: dict[str, dict[str, Any]] = {REQUEST_LOGGER: {"level": request_level}}
    for name in _QUIETED_LOGGERS:
        loggers[name] = {"level": "WARNING"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
            "json": {"()": JsonFormatter},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": log_level, "handlers": list(handlers)},
    }


_configured = False


def configure_logging(settings=None) -> None:
    """Install console and rotating JSON file logging once per process."""

    global _configured
    if _configured:
        return

    if settings is None:
        from gigbook.core.settings import get_settings

        settings = get_settings()

    config = build_logging_config(settings)
    file_handler = config["handlers"].get("file")
    if file_handler:
        Path(file_handler["filename"]).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(config)
    logging.captureWarnings(True)
    _configured = True


__all__ = ["JsonFormatter", "REQUEST_LOGGER", "build_logging_config", "configure_logging"]
