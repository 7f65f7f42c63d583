"""Structured local logging and crash hook setup."""

from __future__ import annotations

import faulthandler
import json
import logging
import logging.handlers
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import config_root

_LOGGER_NAME = "hostmon"
_fault_file = None

# Values of the `event` extra. Log processors key on these, so renaming one is
# a format change.
EVENTS: dict[str, str] = {
    "logging_configured": "handlers attached to the hostmon logger",
    "fault_handler_enabled": "faulthandler writing to fault.log",
    "uncaught_exception": "sys.excepthook fired; carries crash_id",
    "thread_exception": "threading.excepthook fired; carries crash_id",
    "config_invalid": "settings file ignored, defaults in use",
    "start": "scheduler started",
    "stop": "scheduler stopped",
    "close": "scheduler and sensor connection released",
    "interval_changed": "refresh interval changed",
    "cycle_error": "provider poll raised; nothing published this cycle",
    "subscriber_error": "a snapshot callback raised",
    "sampler_error": "a sampler raised; its previous state was reused",
    "counter_reset": "cumulative counters went backwards and were re-seeded",
    "sensor_unavailable": "sensor controller could not be opened",
    "smc_open": "AppleSMC connection opened",
    "smc_close": "AppleSMC connection closed",
}


def _domain(logger_name: str) -> str | None:
    parts = logger_name.split(".")
    if len(parts) >= 3 and parts[:2] == [_LOGGER_NAME, "telemetry"]:
        return parts[2]
    if len(parts) >= 2 and parts[0] == _LOGGER_NAME:
        return parts[1]
    return None


def log_dir() -> Path:
    path = config_root() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "thread": record.threadName,
        }
        domain = _domain(record.name)
        if domain is not None:
            payload["domain"] = domain
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        if hasattr(record, "event"):
            payload["event"] = getattr(record, "event")
        if hasattr(record, "crash_id"):
            payload["crash_id"] = getattr(record, "crash_id")
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(
    keep_files: int = 7,
    console: bool = True,
    level: int = logging.INFO,
    directory: Path | None = None,
) -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(level)
    path = (directory or log_dir()) / "hostmon.log"
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        backupCount=max(2, keep_files),
        encoding="utf-8",
    )
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        logger.addHandler(stream_handler)

    logger.info("logging configured", extra={"event": "logging_configured"})
    return logger


def get_logger() -> logging.Logger:
    return logging.getLogger(_LOGGER_NAME)


def _install_fault_handler(logger: logging.Logger) -> None:
    global _fault_file
    if _fault_file is not None:
        return
    _fault_file = (log_dir() / "fault.log").open("a", encoding="utf-8")
    faulthandler.enable(file=_fault_file, all_threads=True)
    logger.info("fault handler enabled", extra={"event": "fault_handler_enabled"})


def install_crash_hooks() -> None:
    logger = get_logger()

    def _log_uncaught(exc_type, exc_value, exc_tb) -> None:
        crash_id = str(uuid.uuid4())
        logger.critical(
            f"uncaught exception crash_id={crash_id}",
            exc_info=(exc_type, exc_value, exc_tb),
            extra={"event": "uncaught_exception", "crash_id": crash_id},
        )

    def _thread_hook(args: threading.ExceptHookArgs) -> None:
        crash_id = str(uuid.uuid4())
        logger.critical(
            f"thread exception crash_id={crash_id} thread={getattr(args.thread, 'name', '?')}",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            extra={"event": "thread_exception", "crash_id": crash_id},
        )

    sys.excepthook = _log_uncaught
    threading.excepthook = _thread_hook
    _install_fault_handler(logger)
