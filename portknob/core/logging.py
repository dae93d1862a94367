"""Structured ECS logging for the portknob daemon."""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from pathlib import Path
import sys

from portknob.config.schema import AppConfig


VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
VALID_LOG_FORMATS = {"text", "ecs_json"}
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _strip_empty(value: object) -> object | None:
    if isinstance(value, dict):
        cleaned = {key: _strip_empty(item) for key, item in value.items()}
        return {key: item for key, item in cleaned.items() if item is not None} or None
    if isinstance(value, list):
        cleaned_list = [_strip_empty(item) for item in value]
        return [item for item in cleaned_list if item is not None] or None
    if value in ("", None):
        return None
    return value


class ECSJsonFormatter(logging.Formatter):
    def __init__(self, service_name: str = "portknob") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).isoformat(timespec="microseconds")
        payload: dict[str, object] = {
            "@timestamp": timestamp,
            "message": record.getMessage(),
            "log": {
                "level": record.levelname.lower(),
                "logger": record.name,
            },
            "service": {
                "name": self.service_name,
            },
            "event": {
                "kind": "event",
                "category": getattr(record, "event_category", "configuration"),
                "action": getattr(record, "event_action", None),
                "outcome": getattr(record, "event_outcome", None),
            },
            "file": {
                "path": getattr(record, "config_path", None),
            },
            "portknob": {
                "payload": getattr(record, "payload", None),
            },
        }
        if record.exc_info:
            payload["error"] = {"message": self.formatException(record.exc_info)}
        cleaned = _strip_empty(payload) or {}
        return json.dumps(cleaned, separators=(",", ":"))


def _sink_handler(sink: str, file_path: str | None, formatter: logging.Formatter) -> logging.Handler:
    if sink == "file":
        log_file = Path(file_path or "logs/portknob.log")
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    *,
    sink: str = "stderr",
    file_path: str | None = None,
    force: bool = False,
) -> None:
    root = logging.getLogger("portknob")
    if getattr(root, "_portknob_configured", False) and not force:
        return
    level = level.upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"invalid log level '{level}'")
    if fmt not in VALID_LOG_FORMATS:
        raise ValueError(f"invalid log format '{fmt}'")

    formatter = ECSJsonFormatter() if fmt == "ecs_json" else logging.Formatter(TEXT_FORMAT)
    root.setLevel(level)
    for existing in list(root.handlers):
        existing.close()
    root.handlers.clear()
    root.addHandler(_sink_handler(sink, file_path, formatter))
    root.propagate = False
    setattr(root, "_portknob_configured", True)


def apply_verbosity(config: AppConfig) -> None:
    # daemon.verbose only ever raises the level; it never silences output.
    if config.daemon.verbose:
        logging.getLogger("portknob").setLevel(logging.DEBUG)


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if name.startswith("portknob"):
        # Children defer to the package logger, configured or not.
        logger.propagate = True
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(ECSJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    message: str,
    *,
    action: str,
    outcome: str = "success",
    config_path: str | None = None,
    payload: dict[str, object] | None = None,
    level: str = "INFO",
) -> None:
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        message,
        extra={
            "event_action": action,
            "event_category": "configuration",
            "event_outcome": outcome,
            "config_path": config_path,
            "payload": payload or {},
        },
    )
