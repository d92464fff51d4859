"""
Database package for schema creation and persistence helpers.
"""

from .manager import (
    DEFAULT_TAG_COLOR,
    DuplicateTag,
    MaintenanceResult,
    MediaDatabase,
    MediaNotFound,
    MediaRecord,
    MediaStats,
    StoreNotInitialized,
    Tag,
    TagNotFound,
    UpsertResult,
)
from .schema import SCHEMA_VERSION, apply_schema, connect

__all__ = [
    "DEFAULT_TAG_COLOR",
    "DuplicateTag",
    "MaintenanceResult",
    "MediaDatabase",
    "MediaNotFound",
    "MediaRecord",
    "MediaStats",
    "SCHEMA_VERSION",
    "StoreNotInitialized",
    "Tag",
    "TagNotFound",
    "UpsertResult",
    "apply_schema",
    "connect",
]
