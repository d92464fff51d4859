"""
Content identity for media files.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

SAMPLE_BYTES = 65536


class ContentHasher:
    """Compute sampled SHA-256 identities from size, name, head and tail bytes.

    Only the first and last ``sample_bytes`` of a file are read, so two files
    that share size, basename and both sampled windows hash identically even if
    bytes in between differ.
    """

    def __init__(self, sample_bytes: int = SAMPLE_BYTES, logger: Optional[logging.Logger] = None) -> None:
        self.sample_bytes = sample_bytes
        self.logger = logger or logging.getLogger("media_browser")

    def compute(self, path: Path | str) -> str:
        """Return the hex content id for a file, falling back to a path hash on I/O errors."""
        path = Path(path)
        try:
            return self._sampled_digest(path)
        except OSError as exc:
            self.logger.error("Failed to hash %s, falling back to path identity: %s", path, exc)
            return self.path_identity(path)

    def path_identity(self, path: Path | str) -> str:
        """Hash of the path string alone; unstable across moves."""
        return hashlib.sha256(os.fspath(path).encode("utf-8")).hexdigest()

    def _sampled_digest(self, path: Path) -> str:
        size = path.stat().st_size
        name = path.name
        if size == 0:
            return hashlib.sha256(f"empty-{name}-{size}".encode("utf-8")).hexdigest()

        hasher = hashlib.sha256()
        hasher.update(str(size).encode("utf-8"))
        hasher.update(name.encode("utf-8"))
        with path.open("rb") as handle:
            hasher.update(handle.read(min(self.sample_bytes, size)))
            if size > self.sample_bytes:
                handle.seek(size - self.sample_bytes)
                hasher.update(handle.read(self.sample_bytes))
        return hasher.hexdigest()


_default_hasher = ContentHasher()


def compute_content_id(path: Path | str) -> str:
    """Compute the content id of ``path`` with the default sample window."""
    return _default_hasher.compute(path)
