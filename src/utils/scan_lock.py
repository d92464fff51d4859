"""
Advisory scan lock shared by every process pointed at the same media root.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

DEFAULT_STALE_SECONDS = 300


class ScanAlreadyInProgress(RuntimeError):
    """Raised when another scan or thumbnail regeneration holds the lock."""


class ScanLock:
    """Marker-file lock with staleness takeover.

    The marker is JSON ``{pid, owner, timestamp, directory}``. A marker older
    than ``stale_after_seconds`` or one that cannot be parsed is removed on
    inspection and treated as absent.
    """

    def __init__(
        self,
        lock_path: Path,
        directory: Optional[Path] = None,
        owner_id: Optional[str] = None,
        stale_after_seconds: float = DEFAULT_STALE_SECONDS,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.lock_path = Path(lock_path)
        self.directory = Path(directory) if directory else self.lock_path.parent
        self.owner_id = owner_id or f"{os.getpid()}-{uuid.uuid4().hex[:8]}"
        self.stale_after_seconds = stale_after_seconds
        self.clock = clock
        self.logger = logger or logging.getLogger("media_browser")

    def is_locked(self) -> bool:
        """Report whether a live marker exists, clearing stale or corrupt ones."""
        if not self.lock_path.exists():
            return False
        try:
            payload = json.loads(self.lock_path.read_text(encoding="utf-8"))
            timestamp = float(payload["timestamp"])
        except FileNotFoundError:
            return False
        except (OSError, ValueError, KeyError, TypeError) as exc:
            self.logger.warning("Removing unreadable scan lock %s: %s", self.lock_path, exc)
            self._remove_marker()
            return False

        age = self.clock() - timestamp
        if age > self.stale_after_seconds:
            self.logger.warning(
                "Removing stale scan lock %s held by pid %s (%.0fs old)",
                self.lock_path,
                payload.get("pid"),
                age,
            )
            self._remove_marker()
            return False
        return True

    def try_acquire(self) -> bool:
        """Create the marker atomically; False when a live lock is already held."""
        if self.is_locked():
            return False
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        payload = {
            "pid": os.getpid(),
            "owner": self.owner_id,
            "timestamp": self.clock(),
            "directory": str(self.directory),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle)
        self.logger.debug("Scan lock acquired: %s", self.lock_path)
        return True

    def release(self) -> None:
        """Remove the marker if this owner still holds it."""
        try:
            payload = json.loads(self.lock_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, ValueError) as exc:
            self.logger.warning("Scan lock %s unreadable on release: %s", self.lock_path, exc)
            self._remove_marker()
            return
        if payload.get("owner") != self.owner_id:
            self.logger.warning("Scan lock %s is owned by %s, not releasing", self.lock_path, payload.get("owner"))
            return
        self._remove_marker()
        self.logger.debug("Scan lock released: %s", self.lock_path)

    @contextmanager
    def hold(self) -> Iterator["ScanLock"]:
        """Hold the lock for the duration of the block."""
        if not self.try_acquire():
            raise ScanAlreadyInProgress(f"Scan already in progress for {self.directory}")
        try:
            yield self
        finally:
            self.release()

    def _remove_marker(self) -> None:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
