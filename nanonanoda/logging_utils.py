from __future__ import annotations

import logging
import os
import sys
import traceback
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("nanonanoda.logging")
LOG_DIR_ENV = "NANONANODA_LOG_DIR"
DEBUG_ENV = "NANONANODA_DEBUG"
_LOG_FILE = "nanonanoda.log"
_logging_configured = False
_file_logging_configured = False
_CONSOLE_FORMAT = "%(level_prefix)s %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LEVEL_PREFIXES = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[fatal]",
}


def _level_prefix(levelno: int) -> str:
    return _LEVEL_PREFIXES.get(levelno, "")


class _ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.level_prefix = _level_prefix(record.levelno)
        return super().format(record)


def get_log_dir() -> Path:
    configured = os.environ.get(LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "nanonanoda" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def configure_logging(*, force: bool = False, file_logging: bool = False) -> None:
    """Attach console (and optionally file) handlers to the ``nanonanoda`` logger."""
    global _logging_configured, _file_logging_configured

    logger = logging.getLogger("nanonanoda")

    if force:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        _logging_configured = False
        _file_logging_configured = False

    if not _logging_configured:
        logger.setLevel(logging.DEBUG)
        root_has_handlers = bool(logging.getLogger().handlers)
        if force or not root_has_handlers:
            console_handler = logging.StreamHandler(stream=sys.__stderr__)
            console_level = logging.DEBUG if os.environ.get(DEBUG_ENV) else logging.WARNING
            console_handler.setLevel(console_level)
            console_handler.setFormatter(_ConsoleFormatter(_CONSOLE_FORMAT))
            logger.addHandler(console_handler)
        # Allow test harness handlers (caplog) to capture records.
        logger.propagate = True
        _logging_configured = True

    if file_logging and not _file_logging_configured:
        try:
            log_dir = get_log_dir()
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
            logger.addHandler(file_handler)
            _file_logging_configured = True
        except OSError as exc:
            _LOGGER.warning("Failed to configure file logging: %s", exc, exc_info=True)


def log_exception(context: str, exc: BaseException) -> Path | None:
    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        path = get_log_path()
        timestamp = datetime.now().isoformat()
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{timestamp}] {context} failed: {type(exc).__name__}: {exc}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
        return path
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
