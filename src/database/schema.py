"""
Database schema definitions for the media store.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = "1.3.0"


def connect(db_path: Path) -> sqlite3.Connection:
    """Open a SQLite connection with WAL and in-memory temp tables enabled."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def apply_schema(conn: sqlite3.Connection) -> None:
    """Create media, tag and association tables and record the schema version."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS media_files (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            file_hash TEXT UNIQUE NOT NULL,
            file_path TEXT NOT NULL,
            filename TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            media_type TEXT NOT NULL CHECK (media_type IN ('image', 'video')),
            thumbnail_path TEXT,
            date_added TIMESTAMP NOT NULL,
            date_created TIMESTAMP,
            date_modified TIMESTAMP NOT NULL,
            last_seen TIMESTAMP NOT NULL
        )
        """
    )
    _ensure_column(conn, "media_files", "thumbnail_width", "INTEGER")
    _ensure_column(conn, "media_files", "thumbnail_height", "INTEGER")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tags (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            color TEXT NOT NULL DEFAULT '#3B82F6',
            created_at TIMESTAMP NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS media_tags (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            file_hash TEXT NOT NULL,
            tag_id INTEGER NOT NULL,
            created_at TIMESTAMP NOT NULL,
            FOREIGN KEY (file_hash) REFERENCES media_files (file_hash) ON DELETE CASCADE,
            FOREIGN KEY (tag_id) REFERENCES tags (id) ON DELETE CASCADE,
            UNIQUE (file_hash, tag_id)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS database_metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_media_files_hash ON media_files(file_hash)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_media_files_path ON media_files(file_path)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_media_files_type ON media_files(media_type)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_media_files_last_seen ON media_files(last_seen)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_media_tags_file_hash ON media_tags(file_hash)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_media_tags_tag_id ON media_tags(tag_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tags_name ON tags(name)")
    conn.execute(
        """
        INSERT INTO database_metadata (key, value, updated_at)
        VALUES ('version', ?, CURRENT_TIMESTAMP)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (SCHEMA_VERSION,),
    )
    conn.execute(
        "INSERT OR IGNORE INTO database_metadata (key, value) VALUES ('created_at', datetime('now'))"
    )
    conn.commit()


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    """Ensure a column exists on a SQLite table."""
    cursor = conn.execute(f"PRAGMA table_info({table})")
    existing = {row[1] for row in cursor.fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
