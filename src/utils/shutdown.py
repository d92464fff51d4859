"""
Process-exit cleanup for open providers.
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from typing import Any, Callable, List, Optional, Protocol


class Closeable(Protocol):
    def close(self) -> Any:
        ...


class ShutdownRegistry:
    """Close registered objects exactly once on interpreter exit or SIGINT/SIGTERM."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("media_browser")
        self._items: List[Closeable] = []
        self._lock = threading.Lock()
        self._installed = False
        self._previous_handlers: dict = {}

    def register(self, item: Closeable) -> Closeable:
        with self._lock:
            if item not in self._items:
                self._items.append(item)
        return item

    def unregister(self, item: Closeable) -> None:
        with self._lock:
            if item in self._items:
                self._items.remove(item)

    def install(self, signals: tuple = (signal.SIGINT, signal.SIGTERM)) -> None:
        """Hook atexit and the given signals; repeated calls are no-ops."""
        if self._installed:
            return
        atexit.register(self.close_all)
        if threading.current_thread() is threading.main_thread():
            for signum in signals:
                self._previous_handlers[signum] = signal.getsignal(signum)
                signal.signal(signum, self._handle_signal)
        else:
            self.logger.warning("Shutdown signal handlers not installed outside the main thread")
        self._installed = True

    def close_all(self) -> int:
        """Close every registered object in reverse order; returns how many were closed."""
        with self._lock:
            items = list(reversed(self._items))
            self._items.clear()
        closed = 0
        for item in items:
            try:
                item.close()
                closed += 1
            except Exception as exc:
                self.logger.error("Failed to close %r during shutdown: %s", item, exc)
        return closed

    def _handle_signal(self, signum: int, frame: Any) -> None:
        name = signal.Signals(signum).name
        self.logger.info("Received %s, shutting down", name)
        self.close_all()
        if signum == signal.SIGINT:
            raise KeyboardInterrupt
        raise SystemExit(128 + signum)


def run_with_cleanup(registry: ShutdownRegistry, func: Callable[[], int]) -> int:
    """Run ``func`` and close everything registered when it returns or raises."""
    try:
        return func()
    finally:
        registry.close_all()
