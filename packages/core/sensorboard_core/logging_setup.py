"""Structured local logging and crash hook setup."""

from __future__ import annotations

import asyncio
import faulthandler
import json
import logging
import logging.handlers
import os
import platform
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


_LOGGER_NAME = "sensorboard"


def _config_root() -> Path:
    if platform.system() == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "Sensorboard"
    if platform.system() == "Darwin":
        return Path.home() / "Library" / "Application Support" / "Sensorboard"
    return Path.home() / ".config" / "sensorboard"


def log_dir(root: Path | None = None) -> Path:
    path = (root or _config_root()) / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        for key in ("event", "crash_id"):
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(
    keep_files: int = 7,
    console: bool = True,
    level: int = logging.INFO,
    root: Path | None = None,
) -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(level)
    path = log_dir(root) / "sensorboard.log"
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
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
        logger.addHandler(stream_handler)

    logger.info("logging configured", extra={"event": "logging_configured"})
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME)


def _log_crash(logger: logging.Logger, event: str, label: str, exc_info: Any) -> str:
    crash_id = str(uuid.uuid4())
    logger.critical(
        f"{label} crash_id={crash_id}",
        exc_info=exc_info,
        extra={"event": event, "crash_id": crash_id},
    )
    return crash_id


def install_crash_hooks(root: Path | None = None, fault_handler: bool = True) -> None:
    """Route uncaught exceptions from the main thread and worker threads to the log.

    With ``fault_handler`` set, hard crashes also dump every thread's stack to
    ``fault.log`` next to the JSON log.
    """
    logger = get_logger()

    def _log_uncaught(exc_type, exc_value, exc_tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        _log_crash(logger, "uncaught_exception", "uncaught exception", (exc_type, exc_value, exc_tb))

    def _thread_hook(args: threading.ExceptHookArgs) -> None:
        _log_crash(
            logger,
            "thread_exception",
            f"thread {getattr(args.thread, 'name', '?')} exception",
            (args.exc_type, args.exc_value, args.exc_traceback),
        )

    sys.excepthook = _log_uncaught
    threading.excepthook = _thread_hook

    if fault_handler:
        fh = (log_dir(root) / "fault.log").open("a", encoding="utf-8")
        faulthandler.enable(file=fh, all_threads=True)
        logger.info("fault handler enabled", extra={"event": "fault_handler_enabled"})


def install_loop_exception_handler(loop: asyncio.AbstractEventLoop) -> None:
    """Log exceptions the event loop could not deliver to any awaiting task."""
    logger = get_logger("loop")

    def _handle(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        message = context.get("message", "event loop error")
        exc = context.get("exception")
        if exc is None:
            logger.error(message, extra={"event": "loop_exception"})
            return
        _log_crash(logger, "loop_exception", message, (type(exc), exc, exc.__traceback__))

    loop.set_exception_handler(_handle)
