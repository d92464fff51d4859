"""
Media kind classification, filters and sort keys shared by the store and providers.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

KIND_IMAGE = "image"
KIND_VIDEO = "video"
KIND_ALL = "all"

SORT_RANDOM = "random"
SORT_DATE_CREATED = "date_created"
SORT_DATE_ADDED = "date_added"
SORT_KEYS = (SORT_RANDOM, SORT_DATE_CREATED, SORT_DATE_ADDED)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".webm", ".mov", ".avi", ".mkv", ".ogg"})

_KIND_ALIASES = {
    "all": KIND_ALL,
    "image": KIND_IMAGE,
    "images": KIND_IMAGE,
    "photos": KIND_IMAGE,
    "video": KIND_VIDEO,
    "videos": KIND_VIDEO,
}


def classify_path(path: Path | str) -> Optional[str]:
    """Return ``image``, ``video`` or None for unsupported extensions."""
    suffix = Path(path).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return KIND_IMAGE
    if suffix in VIDEO_EXTENSIONS:
        return KIND_VIDEO
    return None


def normalize_kind_filter(value: Optional[str]) -> str:
    """Map user-facing kind filters (``photos``, ``videos`` ...) onto stored kinds."""
    if not value:
        return KIND_ALL
    try:
        return _KIND_ALIASES[value.strip().lower()]
    except KeyError:
        raise ValueError(f"Unsupported media kind filter: {value}") from None


def normalize_sort(value: Optional[str]) -> str:
    """Unknown sort keys fall back to random order."""
    if value in SORT_KEYS:
        return str(value)
    return SORT_RANDOM
