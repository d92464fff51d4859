"""
SQLite access layer for media records, tags and their associations.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

from hashing import ContentHasher
from utils.media_types import (
    KIND_ALL,
    KIND_IMAGE,
    KIND_VIDEO,
    SORT_DATE_ADDED,
    SORT_DATE_CREATED,
    normalize_kind_filter,
    normalize_sort,
)

from .schema import apply_schema, connect

DEFAULT_TAG_COLOR = "#3B82F6"
DEFAULT_RETENTION_DAYS = 30


class StoreNotInitialized(RuntimeError):
    """Raised when the store is used before initialize() or after close()."""


class DuplicateTag(ValueError):
    """Raised when a tag name is already taken."""


class TagNotFound(LookupError):
    """Raised when a tag id does not exist."""


class MediaNotFound(LookupError):
    """Raised when a media record or file cannot be located."""


@dataclass(frozen=True)
class MediaRecord:
    """One media item keyed by its content id."""

    content_id: str
    path: str
    display_name: str
    byte_size: int
    kind: str
    thumbnail_path: Optional[str] = None
    added_at: Optional[str] = None
    created_at: Optional[str] = None
    modified_at: Optional[str] = None
    last_seen_at: Optional[str] = None
    thumbnail_width: Optional[int] = None
    thumbnail_height: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Tag:
    """User-defined label, optionally annotated with its usage count."""

    id: int
    name: str
    color: str
    created_at: Optional[str]
    usage_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MediaStats:
    total: int
    images: int
    videos: int
    total_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UpsertResult:
    """Result of inserting or refreshing a media record."""

    record: MediaRecord
    is_new: bool


@dataclass(frozen=True)
class MaintenanceResult:
    """Counts removed by a maintenance pass."""

    removed_stale: int
    removed_missing: int
    removed_tags: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _birth_time(stat: os.stat_result) -> datetime:
    timestamp = getattr(stat, "st_birthtime", None) or stat.st_mtime
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class MediaDatabase:
    """Own the media store connection and every query against it.

    Lifecycle is Uninitialized -> Initialized -> Closed; every data operation
    requires the Initialized state. One connection is shared by all threads and
    serialized through a re-entrant lock.
    """

    def __init__(
        self,
        db_path: Path,
        hasher: Optional[ContentHasher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.db_path = Path(db_path)
        self.logger = logger or logging.getLogger("media_browser")
        self.hasher = hasher or ContentHasher(logger=self.logger)
        self.clock = clock or _utc_now
        self._conn: Optional[sqlite3.Connection] = None
        self._closed = False
        self._lock = threading.RLock()

    # ----- lifecycle -----

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    def initialize(self) -> None:
        """Open or create the store and apply the schema."""
        with self._lock:
            if self._closed:
                raise StoreNotInitialized(f"Media store {self.db_path} has been closed")
            if self._conn is not None:
                return
            conn = connect(self.db_path)
            try:
                apply_schema(conn)
            except sqlite3.Error:
                conn.close()
                self.logger.exception("Failed to initialize media store %s", self.db_path)
                raise
            self._conn = conn
        self.logger.info("Media store ready at %s (version %s)", self.db_path, self.get_version())

    def close(self) -> None:
        """Close the connection; the store cannot be reopened afterwards."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                self.logger.info("Media store closed: %s", self.db_path)
            self._closed = True

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreNotInitialized("Database not initialized")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _now(self) -> str:
        return _format_timestamp(self.clock())

    # ----- media records -----

    def upsert_media(
        self,
        path: Path | str,
        kind: str,
        thumbnail_path: Optional[str] = None,
        content_id: Optional[str] = None,
    ) -> UpsertResult:
        """Insert a record or refresh the one sharing its content id.

        On conflict the path, name, thumbnail and last-seen time are always
        overwritten; ``date_modified`` only moves when the byte size changed.
        """
        self._require()
        path = Path(path)
        stat = path.stat()
        content_id = content_id or self.hasher.compute(path)
        now = self._now()
        with self._transaction() as conn:
            existed = conn.execute(
                "SELECT 1 FROM media_files WHERE file_hash = ? LIMIT 1", (content_id,)
            ).fetchone() is not None
            conn.execute(
                """
                INSERT INTO media_files (
                    file_hash, file_path, filename, file_size, media_type, thumbnail_path,
                    date_added, date_created, date_modified, last_seen
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(file_hash) DO UPDATE SET
                    file_path = excluded.file_path,
                    filename = excluded.filename,
                    thumbnail_path = excluded.thumbnail_path,
                    last_seen = excluded.last_seen,
                    date_modified = CASE
                        WHEN media_files.file_size != excluded.file_size THEN excluded.last_seen
                        ELSE media_files.date_modified
                    END,
                    file_size = excluded.file_size
                """,
                (
                    content_id,
                    str(path),
                    path.name,
                    stat.st_size,
                    kind,
                    thumbnail_path,
                    now,
                    _format_timestamp(_birth_time(stat)),
                    now,
                    now,
                ),
            )
        record = self.get_by_content_id(content_id)
        if record is None:
            raise MediaNotFound(f"Media vanished after upsert: {content_id}")
        return UpsertResult(record=record, is_new=not existed)

    def insert_media(
        self,
        path: Path | str,
        kind: str,
        content_id: str,
        thumbnail_path: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> MediaRecord:
        """Strict insert for a content id known to be new; raises IntegrityError otherwise."""
        self._require()
        path = Path(path)
        stat = path.stat()
        now = self._now()
        created = _format_timestamp(created_at) if created_at is not None else now
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO media_files (
                        file_hash, file_path, filename, file_size, media_type, thumbnail_path,
                        date_added, date_created, date_modified, last_seen
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (content_id, str(path), path.name, stat.st_size, kind, thumbnail_path, now, created, now, now),
                )
        except sqlite3.IntegrityError:
            self.logger.error("Failed to insert media file %s: content id %s exists", path, content_id)
            raise
        return MediaRecord(
            content_id=content_id,
            path=str(path),
            display_name=path.name,
            byte_size=stat.st_size,
            kind=kind,
            thumbnail_path=thumbnail_path,
            added_at=now,
            created_at=created,
            modified_at=now,
            last_seen_at=now,
        )

    def get_by_content_id(self, content_id: str) -> Optional[MediaRecord]:
        with self._lock:
            row = self._require().execute(
                "SELECT * FROM media_files WHERE file_hash = ?", (content_id,)
            ).fetchone()
        return _row_to_media(row) if row else None

    def get_by_path(self, path: Path | str) -> Optional[MediaRecord]:
        with self._lock:
            row = self._require().execute(
                "SELECT * FROM media_files WHERE file_path = ?", (str(path),)
            ).fetchone()
        return _row_to_media(row) if row else None

    def get_by_path_substring(self, text: str) -> list[MediaRecord]:
        """Case-sensitive infix match against the stored path."""
        with self._lock:
            rows = self._require().execute(
                "SELECT * FROM media_files WHERE instr(file_path, ?) > 0 ORDER BY date_added DESC, id DESC",
                (text,),
            ).fetchall()
        return [_row_to_media(row) for row in rows]

    def get_file_hash_for_path(self, path: Path | str) -> str:
        """Stored content id for ``path``, computing one when the path is unknown."""
        record = self.get_by_path(path)
        if record is not None:
            return record.content_id
        return self.hasher.compute(path)

    def list_media(self, sort_by: str = "random", kind_filter: str = KIND_ALL) -> list[MediaRecord]:
        """List records filtered by kind in random, created or added order."""
        sort_by = normalize_sort(sort_by)
        kind = normalize_kind_filter(kind_filter)
        if sort_by == SORT_DATE_CREATED:
            order_by = "ORDER BY date_created DESC, id DESC"
        elif sort_by == SORT_DATE_ADDED:
            order_by = "ORDER BY date_added DESC, id DESC"
        else:
            order_by = "ORDER BY RANDOM()"
        query = "SELECT * FROM media_files"
        params: tuple = ()
        if kind != KIND_ALL:
            query += " WHERE media_type = ?"
            params = (kind,)
        with self._lock:
            rows = self._require().execute(f"{query} {order_by}", params).fetchall()
        return [_row_to_media(row) for row in rows]

    def list_by_tags(
        self,
        include_names: Iterable[str] = (),
        exclude_names: Iterable[str] = (),
        kind_filter: str = KIND_ALL,
    ) -> list[MediaRecord]:
        """Media carrying every included tag and none of the excluded ones, newest first."""
        include = _unique_names(include_names)
        exclude = _unique_names(exclude_names)
        kind = normalize_kind_filter(kind_filter)

        query = "SELECT mf.* FROM media_files mf"
        clauses: list[str] = []
        params: list[Any] = []
        if include:
            query += (
                " JOIN media_tags mt_include ON mf.file_hash = mt_include.file_hash"
                " JOIN tags t_include ON mt_include.tag_id = t_include.id"
            )
        if kind != KIND_ALL:
            clauses.append("mf.media_type = ?")
            params.append(kind)
        if include:
            clauses.append(f"t_include.name IN ({_placeholders(include)})")
            params.extend(include)
        if exclude:
            clauses.append(
                f"""
                mf.file_hash NOT IN (
                    SELECT mt_exclude.file_hash
                    FROM media_tags mt_exclude
                    JOIN tags t_exclude ON mt_exclude.tag_id = t_exclude.id
                    WHERE t_exclude.name IN ({_placeholders(exclude)})
                )
                """
            )
            params.extend(exclude)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        if include:
            query += " GROUP BY mf.id HAVING COUNT(DISTINCT t_include.id) = ?"
            params.append(len(include))
        query += " ORDER BY mf.date_added DESC, mf.id DESC"

        self.logger.debug("Tag filter include=%s exclude=%s kind=%s", include, exclude, kind)
        with self._lock:
            rows = self._require().execute(query, tuple(params)).fetchall()
        return [_row_to_media(row) for row in rows]

    def update_thumbnail(
        self,
        content_id: str,
        thumbnail_path: Optional[str],
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> bool:
        """Store a thumbnail location (and its size when known) for a record."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE media_files
                SET thumbnail_path = ?, thumbnail_width = ?, thumbnail_height = ?
                WHERE file_hash = ?
                """,
                (thumbnail_path, width, height, content_id),
            )
        return cursor.rowcount > 0

    def get_stats(self) -> MediaStats:
        with self._lock:
            row = self._require().execute(
                """
                SELECT
                    COUNT(*),
                    SUM(CASE WHEN media_type = ? THEN 1 ELSE 0 END),
                    SUM(CASE WHEN media_type = ? THEN 1 ELSE 0 END),
                    SUM(file_size)
                FROM media_files
                """,
                (KIND_IMAGE, KIND_VIDEO),
            ).fetchone()
        return MediaStats(
            total=int(row[0] or 0),
            images=int(row[1] or 0),
            videos=int(row[2] or 0),
            total_size=int(row[3] or 0),
        )

    def get_version(self) -> str:
        with self._lock:
            row = self._require().execute(
                "SELECT value FROM database_metadata WHERE key = 'version'"
            ).fetchone()
        return str(row[0]) if row else "unknown"

    # ----- tags -----

    def create_tag(self, name: str, color: str = DEFAULT_TAG_COLOR) -> Tag:
        """Create a tag; raises DuplicateTag when the name is taken."""
        name = _clean_tag_name(name)
        color = color or DEFAULT_TAG_COLOR
        now = self._now()
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO tags (name, color, created_at) VALUES (?, ?, ?)",
                    (name, color, now),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateTag(f"Tag already exists: {name}") from exc
        self.logger.info("Tag created: %s", name)
        return Tag(id=int(cursor.lastrowid), name=name, color=color, created_at=now)

    def update_tag(self, tag_id: int, name: str, color: Optional[str] = None) -> Tag:
        """Rename and recolor a tag; keeps the old color when none is given."""
        name = _clean_tag_name(name)
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "UPDATE tags SET name = ?, color = COALESCE(?, color) WHERE id = ?",
                    (name, color, int(tag_id)),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateTag(f"Tag name already exists: {name}") from exc
        if cursor.rowcount == 0:
            raise TagNotFound(f"Tag not found: {tag_id}")
        tag = self.get_tag(int(tag_id))
        if tag is None:
            raise TagNotFound(f"Tag not found: {tag_id}")
        return tag

    def delete_tag(self, tag_id: int) -> int:
        """Delete a tag and, through the cascade, all of its associations."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM tags WHERE id = ?", (int(tag_id),))
        if cursor.rowcount == 0:
            raise TagNotFound(f"Tag not found: {tag_id}")
        self.logger.info("Tag deleted: %s", tag_id)
        return cursor.rowcount

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        with self._lock:
            row = self._require().execute("SELECT * FROM tags WHERE id = ?", (int(tag_id),)).fetchone()
        return _row_to_tag(row) if row else None

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        with self._lock:
            row = self._require().execute("SELECT * FROM tags WHERE name = ?", (name.strip(),)).fetchone()
        return _row_to_tag(row) if row else None

    def list_tags(self) -> list[Tag]:
        """All tags with their association counts, ordered by name."""
        with self._lock:
            rows = self._require().execute(
                """
                SELECT t.*, COUNT(mt.tag_id) AS usage_count
                FROM tags t
                LEFT JOIN media_tags mt ON t.id = mt.tag_id
                GROUP BY t.id
                ORDER BY t.name
                """
            ).fetchall()
        return [_row_to_tag(row) for row in rows]

    def get_tags_for_media(self, content_id: str) -> list[Tag]:
        with self._lock:
            rows = self._require().execute(
                """
                SELECT t.* FROM tags t
                JOIN media_tags mt ON t.id = mt.tag_id
                WHERE mt.file_hash = ?
                ORDER BY mt.created_at, mt.id
                """,
                (content_id,),
            ).fetchall()
        return [_row_to_tag(row) for row in rows]

    def add_tag_to_media(self, content_id: str, tag_id: int) -> bool:
        """Associate a tag with a record; False when the pair already exists."""
        with self._transaction() as conn:
            if conn.execute("SELECT 1 FROM tags WHERE id = ?", (int(tag_id),)).fetchone() is None:
                raise TagNotFound(f"Tag not found: {tag_id}")
            if conn.execute("SELECT 1 FROM media_files WHERE file_hash = ?", (content_id,)).fetchone() is None:
                raise MediaNotFound(f"Media not found: {content_id}")
            cursor = conn.execute(
                """
                INSERT INTO media_tags (file_hash, tag_id, created_at) VALUES (?, ?, ?)
                ON CONFLICT(file_hash, tag_id) DO NOTHING
                """,
                (content_id, int(tag_id), self._now()),
            )
        return cursor.rowcount > 0

    def remove_tag_from_media(self, content_id: str, tag_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM media_tags WHERE file_hash = ? AND tag_id = ?",
                (content_id, int(tag_id)),
            )
        return cursor.rowcount > 0

    # ----- maintenance -----

    def remove_stale_by_age(self, max_age_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete records whose last-seen time predates the retention window."""
        cutoff = _format_timestamp(self.clock() - timedelta(days=max_age_days))
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM media_files WHERE last_seen < ?", (cutoff,))
        removed = cursor.rowcount
        if removed:
            self.logger.info("Removed %s records not seen for %s days", removed, max_age_days)
        return removed

    def remove_missing_from_disk(self) -> int:
        """Delete, in one transaction, every record whose path no longer exists."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT file_hash, file_path FROM media_files").fetchall()
            missing = [(row["file_hash"],) for row in rows if not os.path.exists(row["file_path"])]
            if missing:
                conn.executemany("DELETE FROM media_files WHERE file_hash = ?", missing)
        for (content_id,) in missing:
            self.logger.debug("Removed record for missing file %s", content_id)
        if missing:
            self.logger.info("Removed %s records for files missing from disk", len(missing))
        return len(missing)

    def remove_unused_tags(self) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM tags WHERE id NOT IN (SELECT DISTINCT tag_id FROM media_tags)"
            )
        if cursor.rowcount:
            self.logger.info("Removed %s unused tags", cursor.rowcount)
        return cursor.rowcount

    def run_maintenance(self, max_age_days: int = DEFAULT_RETENTION_DAYS) -> MaintenanceResult:
        """Run every cleanup step, then optimize and vacuum the store."""
        with self._lock:
            result = MaintenanceResult(
                removed_stale=self.remove_stale_by_age(max_age_days),
                removed_missing=self.remove_missing_from_disk(),
                removed_tags=self.remove_unused_tags(),
            )
            conn = self._require()
            conn.execute("PRAGMA optimize")
            conn.execute("VACUUM")
        self.logger.info(
            "Maintenance completed. Stale=%s Missing=%s Tags=%s",
            result.removed_stale,
            result.removed_missing,
            result.removed_tags,
        )
        return result


def _row_to_media(row: sqlite3.Row) -> MediaRecord:
    return MediaRecord(
        content_id=str(row["file_hash"]),
        path=str(row["file_path"]),
        display_name=str(row["filename"]),
        byte_size=int(row["file_size"]) if row["file_size"] is not None else 0,
        kind=str(row["media_type"]),
        thumbnail_path=str(row["thumbnail_path"]) if row["thumbnail_path"] else None,
        added_at=row["date_added"],
        created_at=row["date_created"],
        modified_at=row["date_modified"],
        last_seen_at=row["last_seen"],
        thumbnail_width=row["thumbnail_width"],
        thumbnail_height=row["thumbnail_height"],
    )


def _row_to_tag(row: sqlite3.Row) -> Tag:
    keys = row.keys()
    return Tag(
        id=int(row["id"]),
        name=str(row["name"]),
        color=str(row["color"]) if row["color"] else DEFAULT_TAG_COLOR,
        created_at=row["created_at"],
        usage_count=int(row["usage_count"]) if "usage_count" in keys else None,
    )


def _clean_tag_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("Tag name must not be empty")
    return cleaned


def _unique_names(names: Iterable[str]) -> list[str]:
    cleaned = (name.strip() for name in names or () if name and name.strip())
    return list(dict.fromkeys(cleaned))


def _placeholders(values: list[Any]) -> str:
    return ",".join("?" for _ in values)
