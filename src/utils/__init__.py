"""
Utility helpers for the media browser.
"""

from .logging_setup import setup_logging
from .media_types import classify_path, normalize_kind_filter, normalize_sort
from .scan_lock import ScanAlreadyInProgress, ScanLock
from .shutdown import ShutdownRegistry, run_with_cleanup

__all__ = [
    "setup_logging",
    "classify_path",
    "normalize_kind_filter",
    "normalize_sort",
    "ScanAlreadyInProgress",
    "ScanLock",
    "ShutdownRegistry",
    "run_with_cleanup",
]
