"""Lightweight logging setup for the core framework.

Users can override log level with DYNTOOLS_LOG_LEVEL env var and add a file
sink with DYNTOOLS_LOG_DIR.

Client ids and header values are caller-controlled; pass them through
sanitize_for_log before they reach a log line.
"""
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def sanitize_for_log(value: Any, max_len: int = 200) -> str:
    """Return a single-line, bounded rendering of a caller-supplied value."""
    if value is None:
        return "None"
    if not isinstance(value, str):
        value = repr(value)
    cleaned = value.replace("\n", "\\n").replace("\r", "\\r").replace("\x00", "")
    if len(cleaned) > max_len:
        cleaned = cleaned[: max_len - 3] + "..."
    return cleaned


def get_logger(name: str = "dyntools") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(stream_handler)
        # Optional file handler if DYNTOOLS_LOG_DIR is set
        log_dir = os.getenv("DYNTOOLS_LOG_DIR")
        if log_dir:
            try:
                p = Path(log_dir)
                p.mkdir(parents=True, exist_ok=True)
                fh = logging.FileHandler(p / "dyntools.log", encoding="utf-8")
                fh.setFormatter(logging.Formatter(LOG_FORMAT))
                logger.addHandler(fh)
            except OSError:
                logger.warning("could not open log dir %s; logging to stream only", log_dir)
        logger.setLevel(os.getenv("DYNTOOLS_LOG_LEVEL", "INFO").upper())
        logger.propagate = False
    return logger


core_logger = get_logger("dyntools.core")

__all__ = ["get_logger", "core_logger", "sanitize_for_log", "LOG_FORMAT"]
