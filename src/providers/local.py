"""
Local filesystem provider backed by the media store, scanner and scan lock.
"""

from __future__ import annotations

import hashlib
import logging
import mimetypes
import random
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from config import AppConfig, ensure_directories
from database import (
    DEFAULT_TAG_COLOR,
    MaintenanceResult,
    MediaDatabase,
    MediaNotFound,
    MediaRecord,
    MediaStats,
    Tag,
)
from discovery import DEFAULT_TRUST_RATIO, DEFAULT_TRUST_SAMPLE_SIZE, DirectoryScanner
from thumbnails import DEFAULT_QUALITY, DEFAULT_SIZE, ThumbnailRenderer
from utils.media_types import (
    KIND_ALL,
    SORT_DATE_ADDED,
    SORT_DATE_CREATED,
    SORT_RANDOM,
    classify_path,
    normalize_kind_filter,
    normalize_sort,
)
from utils.scan_lock import DEFAULT_STALE_SECONDS, ScanAlreadyInProgress, ScanLock

from .base import Capabilities, MediaPayload, MediaSourceProvider, ProviderResult, ProviderType

CHUNK_SIZE = 64 * 1024


def store_paths(root: Path) -> Dict[str, Path]:
    """Store, lock and thumbnail locations derived from the md5 of the resolved root."""
    digest = hashlib.md5(str(root).encode("utf-8")).hexdigest()
    return {
        "database": root / f".{digest}_media.db",
        "lock": root / f".{digest}_scan.lock",
        "thumbnails": root / f".{digest}_thumbnails",
    }


def iter_file(path: Path, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


class LocalMediaProvider(MediaSourceProvider):
    """Serve one directory tree through a per-root SQLite store."""

    provider_type = ProviderType.LOCAL

    def __init__(
        self,
        directory: Path | str,
        config: Optional[AppConfig] = None,
        renderer: Optional[Any] = None,
        clock: Optional[Callable[[], datetime]] = None,
        lock_clock: Optional[Callable[[], float]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__()
        self.config = config or AppConfig.empty()
        self.logger = logger or logging.getLogger("media_browser")
        self.root = Path(directory).expanduser().resolve()
        paths = store_paths(self.root)
        self.db_path = paths["database"]
        self.lock_path = paths["lock"]
        self.thumbnail_dir = paths["thumbnails"]
        self.retention_days = int(self.config.get("local", "retention_days", default=30))

        self.store = MediaDatabase(self.db_path, clock=clock, logger=self.logger)
        self.renderer = renderer or ThumbnailRenderer(
            self.thumbnail_dir,
            size=int(self.config.get("local", "thumbnail_size", default=DEFAULT_SIZE)),
            quality=int(self.config.get("local", "thumbnail_quality", default=DEFAULT_QUALITY)),
            logger=self.logger,
        )
        self.scanner = DirectoryScanner(
            self.store,
            self.renderer,
            self.root,
            self.thumbnail_dir,
            logger=self.logger,
            trust_sample_size=int(
                self.config.get("scan", "trust_sample_size", default=DEFAULT_TRUST_SAMPLE_SIZE)
            ),
            trust_ratio=float(self.config.get("scan", "trust_ratio", default=DEFAULT_TRUST_RATIO)),
        )
        lock_kwargs: Dict[str, Any] = {}
        if lock_clock is not None:
            lock_kwargs["clock"] = lock_clock
        self.scan_lock = ScanLock(
            self.lock_path,
            directory=self.root,
            stale_after_seconds=float(
                self.config.get("scan", "lock_stale_seconds", default=DEFAULT_STALE_SECONDS)
            ),
            logger=self.logger,
            **lock_kwargs,
        )

    # ----- configuration -----

    @classmethod
    def config_schema(cls) -> Dict[str, Any]:
        return {
            "description": "Browse images and videos stored under a local directory",
            "example": "media-browser --provider local -d /path/to/media stats",
            "required_args": {"directory": "Media root directory"},
            "optional_args": {},
        }

    @classmethod
    def validate_config(cls, options: Dict[str, Any]) -> ProviderResult:
        directory = options.get("directory")
        if not directory:
            return ProviderResult.failed("Directory path is required for the local provider")
        path = Path(directory).expanduser()
        if not path.exists():
            return ProviderResult.failed(f"Directory does not exist: {path}")
        if not path.is_dir():
            return ProviderResult.failed(f"Path is not a directory: {path}")
        return ProviderResult.ok(directory=str(path.resolve()))

    # ----- lifecycle -----

    def initialize(self) -> ProviderResult:
        if not self.root.is_dir():
            return ProviderResult.failed(f"Directory does not exist: {self.root}")
        try:
            self.store.initialize()
            ensure_directories([self.thumbnail_dir])
        except (sqlite3.Error, OSError) as exc:
            self.logger.error("Failed to initialize local provider for %s: %s", self.root, exc)
            return ProviderResult.failed(str(exc))
        self._initialized = True
        self.logger.info("Local provider initialized. Directory=%s Store=%s", self.root, self.db_path.name)

        if not self.scanner.store_is_trusted():
            try:
                with self.scan_lock.hold():
                    self.scanner.scan()
            except ScanAlreadyInProgress:
                self.logger.warning("Initial scan skipped, another scan holds %s", self.lock_path)
        return ProviderResult.ok(directory=str(self.root), media_count=self.store.get_stats().total)

    def test_connection(self) -> ProviderResult:
        if not self._initialized:
            return ProviderResult.failed("Provider not initialized")
        if not self.root.is_dir():
            return ProviderResult.failed(f"Directory is not accessible: {self.root}")
        try:
            stats = self.store.get_stats()
            version = self.store.get_version()
        except sqlite3.Error as exc:
            return ProviderResult.failed(str(exc))
        return ProviderResult.ok(directory=str(self.root), stats=stats.to_dict(), db_version=version)

    def close(self) -> None:
        self.store.close()
        self.scan_lock.release()
        self._initialized = False
        self.logger.info("Local provider closed: %s", self.root)

    # ----- queries -----

    def get_all_media(self, kind_filter: str = KIND_ALL, sort_by: str = SORT_RANDOM) -> List[MediaRecord]:
        self._ensure_initialized()
        records = self.store.list_media(sort_by=sort_by, kind_filter=kind_filter)
        self.logger.debug("Media retrieved kind=%s sort=%s count=%s", kind_filter, sort_by, len(records))
        return records

    def get_media_by_tags(
        self,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
        kind_filter: str = KIND_ALL,
        sort_by: str = SORT_RANDOM,
    ) -> List[MediaRecord]:
        self._ensure_initialized()
        include = list(include or ())
        exclude = list(exclude or ())
        if not include and not exclude:
            return self.get_all_media(kind_filter, sort_by)
        records = self.store.list_by_tags(include, exclude, kind_filter)
        return _apply_sort(records, sort_by)

    def get_media_by_general_filter(
        self, text: str, kind_filter: str = KIND_ALL, sort_by: str = SORT_RANDOM
    ) -> List[MediaRecord]:
        self._ensure_initialized()
        if not text:
            return self.get_all_media(kind_filter, sort_by)
        kind = normalize_kind_filter(kind_filter)
        records = [
            record
            for record in self.store.get_by_path_substring(text)
            if kind == KIND_ALL or record.kind == kind
        ]
        return _apply_sort(records, sort_by)

    def get_stats(self) -> MediaStats:
        self._ensure_initialized()
        return self.store.get_stats()

    # ----- tags -----

    def get_all_tags(self) -> List[Tag]:
        self._ensure_initialized()
        return self.store.list_tags()

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        self._ensure_initialized()
        return self.store.create_tag(name, color or DEFAULT_TAG_COLOR)

    def update_tag(self, tag_id: int, name: str, color: Optional[str] = None) -> Tag:
        self._ensure_initialized()
        return self.store.update_tag(tag_id, name, color)

    def delete_tag(self, tag_id: int) -> int:
        self._ensure_initialized()
        return self.store.delete_tag(tag_id)

    def get_media_tags(self, content_id: str) -> List[Tag]:
        self._ensure_initialized()
        return self.store.get_tags_for_media(content_id)

    def add_tag_to_media(self, content_id: str, tag_id: int) -> bool:
        self._ensure_initialized()
        return self.store.add_tag_to_media(content_id, tag_id)

    def remove_tag_from_media(self, content_id: str, tag_id: int) -> bool:
        self._ensure_initialized()
        return self.store.remove_tag_from_media(content_id, tag_id)

    # ----- maintenance -----

    def rescan_directory(self) -> List[Path]:
        """Scan the root and run store maintenance while holding the scan lock."""
        self._ensure_initialized()
        with self.scan_lock.hold():
            self.logger.info("Rescan started: %s", self.root)
            paths = self.scanner.scan()
            self.store.run_maintenance(self.retention_days)
        return paths

    def run_maintenance(self) -> MaintenanceResult:
        """Store cleanup and compaction on its own, guarded like a rescan."""
        self._ensure_initialized()
        with self.scan_lock.hold():
            return self.store.run_maintenance(self.retention_days)

    def regenerate_thumbnails(self) -> int:
        self._ensure_initialized()
        with self.scan_lock.hold():
            count = self.scanner.regenerate_thumbnails()
        self.logger.info("Regenerated %s thumbnails under %s", count, self.root)
        return count

    def get_file_hash_for_path(self, path: Path | str) -> str:
        self._ensure_initialized()
        return self.store.get_file_hash_for_path(path)

    # ----- serving -----

    def serve_media(self, ref: str) -> MediaPayload:
        """Stream a media file by content id or by a path inside the root."""
        self._ensure_initialized()
        record = self.store.get_by_content_id(ref)
        path = Path(record.path if record else ref)
        if not path.is_absolute():
            path = self.root / path
        path = path.resolve()
        if not _is_within(path, self.root) or not path.is_file() or classify_path(path) is None:
            raise MediaNotFound(f"File not found: {ref}")
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return MediaPayload(stream=iter_file(path), content_type=content_type, content_length=path.stat().st_size)

    def serve_thumbnail(self, content_id: str) -> MediaPayload:
        self._ensure_initialized()
        record = self.store.get_by_content_id(content_id)
        candidate = Path(record.thumbnail_path) if record and record.thumbnail_path else None
        if candidate is None or not candidate.is_file():
            candidate = self.thumbnail_dir / f"{content_id}.webp"
        if not candidate.is_file():
            raise MediaNotFound(f"Thumbnail not found: {content_id}")
        return MediaPayload(stream=iter_file(candidate), content_type="image/webp", content_length=candidate.stat().st_size)

    # ----- presentation -----

    def get_capabilities(self) -> Capabilities:
        return Capabilities(
            can_rescan=True,
            can_regenerate_thumbnails=True,
            can_manage_tags=True,
            can_get_file_hash_for_path=True,
            supports_local_files=True,
            supports_remote_files=False,
        )

    def compute_display_name(self, record: Optional[MediaRecord], context: Optional[str] = None) -> str:
        if context:
            name = Path(str(context).rstrip("/\\")).name
            if name:
                return name
        if record is not None:
            parent = Path(record.path).parent.name
            if parent:
                return parent
        return self.root.name or str(self.root)

    def get_media_info(self, record: MediaRecord) -> Dict[str, Any]:
        info = super().get_media_info(record)
        fields = [
            {"label": "Path", "value": record.path, "type": "path"},
            {"label": "Hash", "value": record.content_id, "type": "hash"},
        ]
        if record.thumbnail_width and record.thumbnail_height:
            fields.append(
                {
                    "label": "Thumbnail",
                    "value": f"{record.thumbnail_width} x {record.thumbnail_height}",
                    "type": "text",
                }
            )
        info["sections"].append({"title": "File Info", "fields": fields})
        return info


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def _apply_sort(records: List[MediaRecord], sort_by: str) -> List[MediaRecord]:
    sort_by = normalize_sort(sort_by)
    if sort_by == SORT_DATE_ADDED:
        return sorted(records, key=lambda item: item.added_at or "", reverse=True)
    if sort_by == SORT_DATE_CREATED:
        return sorted(records, key=lambda item: item.created_at or "", reverse=True)
    shuffled = list(records)
    random.shuffle(shuffled)
    return shuffled
