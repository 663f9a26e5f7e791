"""Logging setup for the shellmux logger tree."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path
from typing import TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
ROOT_LOGGER_NAME = "shellmux"
DEFAULT_LOG_PATH = Path("~/.config/shellmux/logs/shellmux.log")
_FALLBACK_LOG_PATH = Path(".shellmux/logs/shellmux.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"


def default_log_path() -> Path:
    try:
        return DEFAULT_LOG_PATH.expanduser().resolve()
    except RuntimeError:
        # No resolvable home directory (stripped service accounts).
        return (Path.cwd() / _FALLBACK_LOG_PATH).resolve()


def normalize_level(level: str) -> str:
    normalized = level.strip().upper()
    return "WARN" if normalized == "WARNING" else normalized


def _file_handler(log_file: str | Path, formatter: py_logging.Formatter) -> py_logging.Handler | None:
    try:
        log_path = Path(log_file).expanduser()
    except RuntimeError:
        log_path = Path(log_file)
    log_path = log_path.resolve()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = py_logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        return None
    handler.setLevel(py_logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """(Re)configure the ``shellmux`` logger; safe to call repeatedly.

    The stream handler honours ``level``; the optional file handler always
    records DEBUG so session transcripts of lifecycle events survive.
    """
    resolved = LOG_LEVELS.get(normalize_level(level), py_logging.INFO)

    logger = py_logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(min(resolved, py_logging.DEBUG) if log_file else resolved)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    formatter = py_logging.Formatter(_FORMAT)

    console = py_logging.StreamHandler(stream or sys.stderr)
    console.setLevel(resolved)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        file_handler = _file_handler(log_file, formatter)
        if file_handler is not None:
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def log_session_event(
    logger: py_logging.Logger,
    session_id: int,
    step: str,
    message: str,
    *,
    level: int = py_logging.INFO,
) -> None:
    logger.log(level, "session-event session=%s step=%s message=%s", session_id, step, message)
