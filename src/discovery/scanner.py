"""
Directory scanning that feeds new media into the store and thumbnail renderer.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from database import MediaDatabase, MediaRecord
from utils.media_types import KIND_ALL, SORT_DATE_ADDED, SORT_RANDOM, classify_path

DEFAULT_TRUST_SAMPLE_SIZE = 5
DEFAULT_TRUST_RATIO = 0.8


class Renderer(Protocol):
    def render(self, source: Path, content_id: str) -> Optional[object]:
        ...


class DirectoryScanner:
    """Walk a media root, index unseen content and render thumbnails for it."""

    def __init__(
        self,
        store: MediaDatabase,
        renderer: Renderer,
        root: Path,
        thumbnail_dir: Path,
        logger: Optional[logging.Logger] = None,
        performance_logger: Optional[logging.Logger] = None,
        trust_sample_size: int = DEFAULT_TRUST_SAMPLE_SIZE,
        trust_ratio: float = DEFAULT_TRUST_RATIO,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.root = Path(root)
        self.thumbnail_dir = Path(thumbnail_dir)
        self.logger = logger or logging.getLogger("media_browser")
        self.performance_logger = performance_logger or logging.getLogger("media_browser.performance")
        self.trust_sample_size = int(trust_sample_size)
        self.trust_ratio = float(trust_ratio)

    def scan(self, root: Optional[Path] = None) -> list[Path]:
        """Index every supported file under ``root`` and return the paths seen."""
        root = Path(root) if root is not None else self.root
        started = time.perf_counter()
        found: list[Path] = []
        new_count = 0
        for path in self._iter_files(root):
            kind = classify_path(path)
            if kind is None:
                continue
            try:
                stat = path.stat()
            except OSError as exc:
                self.logger.warning("Skipping %s: %s", path, exc)
                continue
            try:
                if self._index_file(path, kind, stat):
                    new_count += 1
            except Exception as exc:
                self.logger.error("Failed to index %s: %s", path, exc)
            found.append(path)

        elapsed = time.perf_counter() - started
        self.logger.info("Scan of %s complete. Files=%s New=%s", root, len(found), new_count)
        self.performance_logger.info("scan root=%s files=%s new=%s seconds=%.3f", root, len(found), new_count, elapsed)
        return found

    def load_media(self, sort_by: str = SORT_DATE_ADDED, kind_filter: str = KIND_ALL) -> list[MediaRecord]:
        """Return stored media, rescanning first unless a sample of the store still resolves."""
        if not self.store_is_trusted():
            self.logger.info("Media store for %s looks out of date, scanning", self.root)
            self.scan()
        return self.store.list_media(sort_by=sort_by, kind_filter=kind_filter)

    def store_is_trusted(self) -> bool:
        """True when at least ``trust_ratio`` of a few sampled records exist on disk."""
        sample = self.store.list_media(sort_by=SORT_RANDOM)[: self.trust_sample_size]
        if not sample:
            return False
        existing = sum(1 for record in sample if os.path.exists(record.path))
        ratio = existing / len(sample)
        self.logger.debug("Store trust sample: %s/%s present", existing, len(sample))
        return ratio >= self.trust_ratio

    def regenerate_thumbnails(self) -> int:
        """Re-render thumbnails for every record whose file is still present."""
        started = time.perf_counter()
        regenerated = 0
        for record in self.store.list_media(sort_by=SORT_DATE_ADDED):
            source = Path(record.path)
            if not source.exists():
                self.logger.debug("Skipping missing file during regeneration: %s", source)
                continue
            try:
                if self._render_and_store(source, record.content_id):
                    regenerated += 1
            except Exception as exc:
                self.logger.error("Thumbnail regeneration failed for %s: %s", source, exc)
        self.performance_logger.info(
            "regenerate root=%s regenerated=%s seconds=%.3f",
            self.root,
            regenerated,
            time.perf_counter() - started,
        )
        return regenerated

    def _index_file(self, path: Path, kind: str, stat: os.stat_result) -> bool:
        content_id = self.store.hasher.compute(path)
        existing = self.store.get_by_content_id(content_id)
        if existing is not None:
            self.store.upsert_media(path, kind, thumbnail_path=existing.thumbnail_path, content_id=content_id)
            return False

        created_at = datetime.fromtimestamp(getattr(stat, "st_birthtime", None) or stat.st_mtime, tz=timezone.utc)
        self.store.insert_media(path, kind, content_id, created_at=created_at)
        try:
            self._render_and_store(path, content_id)
        except Exception as exc:
            self.logger.warning("Thumbnail generation failed for %s: %s", path, exc)
        return True

    def _render_and_store(self, source: Path, content_id: str) -> bool:
        result = self.renderer.render(source, content_id)
        if result is None:
            return False
        self.store.update_thumbnail(
            content_id,
            str(getattr(result, "path", result)),
            getattr(result, "width", None),
            getattr(result, "height", None),
        )
        return True

    def _iter_files(self, root: Path):
        """Yield files under ``root``, skipping the thumbnail directory."""
        thumbnail_dir = os.path.normcase(os.path.abspath(self.thumbnail_dir))

        def on_error(error: OSError) -> None:
            self.logger.warning("Cannot read directory %s: %s", error.filename, error)

        for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=on_error):
            dirnames[:] = [
                name
                for name in dirnames
                if os.path.normcase(os.path.abspath(os.path.join(dirpath, name))) != thumbnail_dir
            ]
            for filename in filenames:
                yield Path(dirpath) / filename
