"""
Logging configuration for the media browser.

Three dated files live under the log directory: everything from the
``media_browser`` logger, its errors only, and scan/regeneration timings from
the non-propagating ``media_browser.performance`` logger.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

LOGGER_NAME = "media_browser"
PERFORMANCE_LOGGER_NAME = f"{LOGGER_NAME}.performance"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _dated(log_dir: Path, prefix: str) -> Path:
    return log_dir / f"{prefix}_{datetime.now(timezone.utc):%Y%m%d}.log"


def _file_handler(path: Path, formatter: logging.Formatter, level: Optional[int] = None) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(formatter)
    if level is not None:
        handler.setLevel(level)
    return handler


def setup_logging(log_dir: Path, level: int = logging.INFO) -> Dict[str, logging.Logger]:
    """Attach handlers once per process and return the ``main``/``performance`` loggers."""
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    media_logger = logging.getLogger(LOGGER_NAME)
    media_logger.setLevel(level)
    if not media_logger.handlers:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        media_logger.addHandler(console)
        media_logger.addHandler(_file_handler(_dated(log_dir, "media_browser"), formatter))
        media_logger.addHandler(_file_handler(_dated(log_dir, "errors"), formatter, logging.ERROR))

    timing_logger = logging.getLogger(PERFORMANCE_LOGGER_NAME)
    if not timing_logger.handlers:
        timing_logger.setLevel(logging.INFO)
        timing_logger.addHandler(_file_handler(_dated(log_dir, "performance"), formatter))
        timing_logger.propagate = False

    return {"main": media_logger, "performance": timing_logger}
