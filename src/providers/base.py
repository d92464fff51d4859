"""
Base classes and data structures for media source providers.

Every provider implements MediaSourceProvider so callers can browse, tag and
serve media without knowing whether it lives on local disk or a remote catalog.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from database import MaintenanceResult, MediaNotFound, MediaRecord, MediaStats, Tag
from utils.media_types import KIND_ALL, SORT_RANDOM

__all__ = [
    "Capabilities",
    "MediaNotFound",
    "MediaPayload",
    "MediaSourceProvider",
    "ProviderNotInitialized",
    "ProviderResult",
    "ProviderType",
    "UnsupportedOperation",
    "format_duration",
    "format_file_size",
]


class ProviderType(Enum):
    """Supported media source kinds."""
    LOCAL = "local"
    REMOTE = "remote"


class UnsupportedOperation(NotImplementedError):
    """Raised when a provider lacks the requested capability."""

    def __init__(self, provider: str, operation: str) -> None:
        self.provider = provider
        self.operation = operation
        super().__init__(f"{operation} is not supported by the {provider} provider")


class ProviderNotInitialized(RuntimeError):
    """Raised when a provider is used before initialize() succeeded or after close()."""


@dataclass(frozen=True)
class Capabilities:
    can_rescan: bool
    can_regenerate_thumbnails: bool
    can_manage_tags: bool
    can_get_file_hash_for_path: bool
    supports_local_files: bool
    supports_remote_files: bool

    def as_dict(self) -> Dict[str, bool]:
        return asdict(self)


@dataclass
class ProviderResult:
    """Outcome of initialize/test_connection/validate_config."""
    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "ProviderResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str, **data: Any) -> "ProviderResult":
        return cls(success=False, error=error, data=data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MediaPayload:
    """Byte stream plus content type handed to whatever serves the response."""
    stream: Iterator[bytes]
    content_type: str
    content_length: Optional[int] = None


def format_file_size(size: Optional[int]) -> str:
    if not size:
        return "0 B"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            break
        value /= 1024
    if unit == "B":
        return f"{int(value)} B"
    return f"{value:.1f} {unit}"


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return ""
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class MediaSourceProvider(ABC):
    """
    Abstract base class for media sources.

    Optional operations (rescan, thumbnail regeneration, path hashing, tag
    update/delete) raise UnsupportedOperation unless a subclass provides them.
    All calls are synchronous and safe to issue from worker threads.
    """

    provider_type: ProviderType

    def __init__(self) -> None:
        self._initialized = False

    @property
    def name(self) -> str:
        return self.provider_type.value

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise ProviderNotInitialized(f"{self.name} provider is not initialized")

    def _unsupported(self, operation: str) -> UnsupportedOperation:
        return UnsupportedOperation(self.name, operation)

    # ----- configuration -----

    @classmethod
    @abstractmethod
    def config_schema(cls) -> Dict[str, Any]:
        """Describe constructor options: description, example, required and optional args."""

    @classmethod
    @abstractmethod
    def validate_config(cls, options: Dict[str, Any]) -> ProviderResult:
        """Check options and return constructor arguments in ``data`` on success."""

    # ----- lifecycle -----

    @abstractmethod
    def initialize(self) -> ProviderResult:
        ...

    @abstractmethod
    def test_connection(self) -> ProviderResult:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    # ----- queries -----

    @abstractmethod
    def get_all_media(self, kind_filter: str = KIND_ALL, sort_by: str = SORT_RANDOM) -> List[MediaRecord]:
        ...

    @abstractmethod
    def get_media_by_tags(
        self,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
        kind_filter: str = KIND_ALL,
        sort_by: str = SORT_RANDOM,
    ) -> List[MediaRecord]:
        ...

    @abstractmethod
    def get_media_by_general_filter(
        self, text: str, kind_filter: str = KIND_ALL, sort_by: str = SORT_RANDOM
    ) -> List[MediaRecord]:
        ...

    @abstractmethod
    def get_stats(self) -> MediaStats:
        ...

    # ----- tags -----

    @abstractmethod
    def get_all_tags(self) -> List[Tag]:
        ...

    @abstractmethod
    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        ...

    def update_tag(self, tag_id: int, name: str, color: Optional[str] = None) -> Tag:
        raise self._unsupported("update_tag")

    def delete_tag(self, tag_id: int) -> int:
        raise self._unsupported("delete_tag")

    @abstractmethod
    def get_media_tags(self, content_id: str) -> List[Tag]:
        ...

    @abstractmethod
    def add_tag_to_media(self, content_id: str, tag_id: int) -> bool:
        ...

    @abstractmethod
    def remove_tag_from_media(self, content_id: str, tag_id: int) -> bool:
        ...

    def add_tag_to_media_by_name(self, content_id: str, name: str, color: Optional[str] = None) -> bool:
        """Tag media by name, creating the tag first when no tag matches case-insensitively."""
        wanted = name.strip().lower()
        tag = next((item for item in self.get_all_tags() if item.name.lower() == wanted), None)
        if tag is None:
            tag = self.create_tag(name.strip(), color)
        return self.add_tag_to_media(content_id, tag.id)

    # ----- optional maintenance -----

    def rescan_directory(self) -> List[Path]:
        raise self._unsupported("rescan_directory")

    def regenerate_thumbnails(self) -> int:
        raise self._unsupported("regenerate_thumbnails")

    def get_file_hash_for_path(self, path: Path | str) -> str:
        raise self._unsupported("get_file_hash_for_path")

    def run_maintenance(self) -> MaintenanceResult:
        raise self._unsupported("run_maintenance")

    # ----- serving -----

    @abstractmethod
    def serve_media(self, ref: str) -> MediaPayload:
        ...

    @abstractmethod
    def serve_thumbnail(self, content_id: str) -> MediaPayload:
        ...

    # ----- presentation -----

    @abstractmethod
    def get_capabilities(self) -> Capabilities:
        ...

    @abstractmethod
    def compute_display_name(self, record: Optional[MediaRecord], context: Optional[str] = None) -> str:
        ...

    def get_ui_config(self) -> Dict[str, Any]:
        caps = self.get_capabilities()
        actions = []
        if caps.can_rescan:
            actions.append("rescan")
        if caps.can_regenerate_thumbnails:
            actions.append("regenerate_thumbnails")
        if caps.can_manage_tags:
            actions.append("manage_tags")
        return {
            "provider": self.name,
            "show_directory_input": caps.supports_local_files,
            "show_connection_status": caps.supports_remote_files,
            "show_rescan_button": caps.can_rescan,
            "show_regenerate_thumbnails_button": caps.can_regenerate_thumbnails,
            "show_tag_manager": caps.can_manage_tags,
            "available_actions": actions,
        }

    def get_media_info(self, record: MediaRecord) -> Dict[str, Any]:
        fields = [
            _field("Filename", record.display_name),
            _field("Type", record.kind.capitalize()),
        ]
        if record.width and record.height:
            fields.append(_field("Resolution", f"{record.width} x {record.height}"))
        fields.append(_field("File Size", format_file_size(record.byte_size)))
        if record.duration:
            fields.append(_field("Duration", format_duration(record.duration)))
        if record.added_at:
            fields.append(_field("Date Added", record.added_at, "date"))
        if record.created_at:
            fields.append(_field("Date Created", record.created_at, "date"))
        return {"sections": [{"title": "General", "fields": fields}]}


def _field(label: str, value: Any, kind: str = "text") -> Dict[str, Any]:
    return {"label": label, "value": value, "type": kind}
