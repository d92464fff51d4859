"""
Remote catalog provider speaking GraphQL over HTTP.

Images and scene markers from the catalog are unified into MediaRecord; marker
content ids carry a ``remote_marker_`` prefix and image ids ``remote_`` so the
remote id can always be recovered.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from config import AppConfig
from database import DEFAULT_TAG_COLOR, DuplicateTag, MediaNotFound, MediaRecord, MediaStats, Tag
from utils.media_types import (
    KIND_ALL,
    KIND_IMAGE,
    KIND_VIDEO,
    SORT_DATE_ADDED,
    SORT_DATE_CREATED,
    SORT_RANDOM,
    normalize_kind_filter,
    normalize_sort,
)

from .base import (
    Capabilities,
    MediaPayload,
    MediaSourceProvider,
    ProviderResult,
    ProviderType,
    format_duration,
)

IMAGE_PREFIX = "remote_"
MARKER_PREFIX = "remote_marker_"
DEFAULT_CACHE_SECONDS = 300
DEFAULT_PER_PAGE = 10000
DEFAULT_TIMEOUT_SECONDS = 30
CHUNK_SIZE = 64 * 1024

_SORT_MAP = {SORT_DATE_ADDED: "created_at", SORT_DATE_CREATED: "date"}

VERSION_QUERY = "query { version { version } }"

FIND_IMAGES_QUERY = """
query FindImages($filter: FindFilterType, $image_filter: ImageFilterType) {
  findImages(filter: $filter, image_filter: $image_filter) {
    count
    images {
      id title code date rating100 organized o_counter created_at updated_at
      paths { thumbnail preview image }
      visual_files {
        ... on ImageFile { id path size mod_time width height fingerprints { type value } }
        ... on VideoFile { id path size mod_time duration video_codec audio_codec width height frame_rate bit_rate fingerprints { type value } }
      }
      tags { id name }
      studio { id name }
      performers { id name }
    }
  }
}
"""

FIND_MARKERS_QUERY = """
query FindMarkers($filter: FindFilterType, $scene_marker_filter: SceneMarkerFilterType) {
  findSceneMarkers(filter: $filter, scene_marker_filter: $scene_marker_filter) {
    count
    scene_markers {
      id title seconds end_seconds created_at updated_at
      stream preview screenshot
      scene {
        id title date code
        files { path duration width height size }
        studio { id name }
        performers { id name }
        tags { id name }
      }
      primary_tag { id name }
      tags { id name }
    }
  }
}
"""

FIND_TAGS_QUERY = """
query FindTags($filter: FindFilterType) {
  findTags(filter: $filter) { count tags { id name image_count } }
}
"""

FIND_IMAGE_TAGS_QUERY = """
query FindImage($id: ID!) {
  findImage(id: $id) { id tags { id name } }
}
"""

FIND_MARKER_TAGS_QUERY = """
query FindSceneMarker($id: ID!) {
  findSceneMarkers(ids: [$id]) {
    scene_markers { id primary_tag { id name } tags { id name } }
  }
}
"""

TAG_CREATE_MUTATION = """
mutation TagCreate($input: TagCreateInput!) {
  tagCreate(input: $input) { id name image_count }
}
"""

IMAGE_UPDATE_MUTATION = """
mutation ImageUpdate($input: ImageUpdateInput!) {
  imageUpdate(input: $input) { id tags { id name } }
}
"""

MARKER_UPDATE_MUTATION = """
mutation SceneMarkerUpdate($input: SceneMarkerUpdateInput!) {
  sceneMarkerUpdate(input: $input) { id primary_tag { id name } tags { id name } }
}
"""


class RemoteCatalogError(RuntimeError):
    """Transport, HTTP or GraphQL failure talking to the remote catalog."""


class GraphQLClient:
    """Thin requests-based GraphQL transport with optional API key header."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger("media_browser")

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.api_key:
            headers["ApiKey"] = self.api_key
        return headers

    def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST a query and return its ``data`` object."""
        try:
            response = self.session.post(
                self.url,
                json={"query": query, "variables": variables or {}},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            self.logger.error("GraphQL request failed: %s", exc)
            raise RemoteCatalogError(f"Request to {self.url} failed: {exc}") from exc
        if response.status_code >= 300:
            raise RemoteCatalogError(f"HTTP error! status: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteCatalogError("Remote server returned invalid JSON") from exc
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            messages = ", ".join(str(error.get("message", error)) for error in errors)
            self.logger.error("GraphQL error for %s...: %s", query.strip()[:60], messages)
            raise RemoteCatalogError(f"GraphQL error: {messages}")
        return (payload or {}).get("data") or {}

    def fetch(self, url: str, label: str = "Media") -> MediaPayload:
        """GET a remote file and expose its body as a chunk iterator."""
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise RemoteCatalogError(f"Failed to fetch {label.lower()}: {exc}") from exc
        if response.status_code >= 300:
            response.close()
            self.logger.error("Server returned %s for %s %s", response.status_code, label.lower(), url)
            raise MediaNotFound(f"{label} not found on server")
        length = response.headers.get("Content-Length")
        return MediaPayload(
            stream=_iter_response(response),
            content_type=response.headers.get("Content-Type", "application/octet-stream"),
            content_length=int(length) if length and length.isdigit() else None,
        )

    def close(self) -> None:
        self.session.close()


def _iter_response(response: requests.Response) -> Iterator[bytes]:
    try:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if chunk:
                yield chunk
    finally:
        response.close()


def parse_content_id(content_id: str) -> Optional[Tuple[str, str]]:
    """Return ``(kind, remote_id)`` for a remote content id, or None."""
    if not isinstance(content_id, str):
        return None
    if content_id.startswith(MARKER_PREFIX):
        remote_id = content_id[len(MARKER_PREFIX):]
        return ("marker", remote_id) if remote_id else None
    if content_id.startswith(IMAGE_PREFIX):
        remote_id = content_id[len(IMAGE_PREFIX):]
        return ("image", remote_id) if remote_id else None
    return None


def image_to_record(image: Dict[str, Any], seen_at: str) -> MediaRecord:
    visual = (image.get("visual_files") or [{}])[0] or {}
    remote_id = str(image["id"])
    filename = visual.get("path") or image.get("title") or f"Image {remote_id}"
    is_gif = ".gif" in filename.lower()
    is_video = not is_gif and visual.get("duration") is not None
    paths = image.get("paths") or {}
    return MediaRecord(
        content_id=f"{IMAGE_PREFIX}{remote_id}",
        path=paths.get("image") or visual.get("path") or f"remote://image/{remote_id}",
        display_name=filename,
        byte_size=int(visual.get("size") or 0),
        kind=KIND_VIDEO if is_video else KIND_IMAGE,
        thumbnail_path=paths.get("thumbnail"),
        added_at=image.get("created_at"),
        created_at=image.get("date") or image.get("created_at"),
        modified_at=image.get("updated_at"),
        last_seen_at=seen_at,
        width=visual.get("width"),
        height=visual.get("height"),
        duration=visual.get("duration"),
        extra={
            "remote_id": remote_id,
            "remote_type": "image",
            "paths": paths,
            "code": image.get("code"),
            "studio": image.get("studio"),
            "performers": image.get("performers") or [],
            "tags": image.get("tags") or [],
            "visual_files": image.get("visual_files") or [],
            "rating": image.get("rating100"),
            "organized": image.get("organized"),
            "o_counter": image.get("o_counter"),
        },
    )


def marker_to_record(marker: Dict[str, Any], seen_at: str) -> MediaRecord:
    scene = marker.get("scene") or {}
    scene_file = (scene.get("files") or [{}])[0] or {}
    remote_id = str(marker["id"])
    start = marker.get("seconds")
    end = marker.get("end_seconds")
    return MediaRecord(
        content_id=f"{MARKER_PREFIX}{remote_id}",
        path=marker.get("stream") or "",
        display_name=marker.get("title") or f"Marker {remote_id}",
        byte_size=int(scene_file.get("size") or 0),
        kind=KIND_VIDEO,
        thumbnail_path=marker.get("screenshot"),
        added_at=marker.get("created_at"),
        created_at=scene.get("date") or marker.get("created_at"),
        modified_at=marker.get("updated_at"),
        last_seen_at=seen_at,
        width=scene_file.get("width"),
        height=scene_file.get("height"),
        duration=(end - (start or 0)) if end else None,
        extra={
            "remote_id": remote_id,
            "remote_type": "marker",
            "marker_start": start,
            "marker_end": end,
            "scene_id": scene.get("id"),
            "scene_title": scene.get("title"),
            "scene_code": scene.get("code"),
            "scene_studio": scene.get("studio"),
            "scene_performers": scene.get("performers") or [],
            "scene_tags": scene.get("tags") or [],
            "scene_files": scene.get("files") or [],
            "primary_tag": marker.get("primary_tag"),
            "tags": marker.get("tags") or [],
        },
    )


def search_text(record: MediaRecord) -> str:
    """Lowercase haystack of every searchable field of a remote record."""
    extra = record.extra
    paths = extra.get("paths") or {}
    parts: List[Any] = [
        record.path,
        record.display_name,
        record.content_id,
        extra.get("code"),
        extra.get("remote_id"),
        (extra.get("studio") or {}).get("name"),
        extra.get("scene_title"),
        extra.get("scene_code"),
        extra.get("scene_id"),
        (extra.get("scene_studio") or {}).get("name"),
        (extra.get("primary_tag") or {}).get("name"),
        paths.get("image"),
        paths.get("thumbnail"),
        paths.get("preview"),
    ]
    for key, field_name in (
        ("performers", "name"),
        ("tags", "name"),
        ("visual_files", "path"),
        ("scene_performers", "name"),
        ("scene_tags", "name"),
        ("scene_files", "path"),
    ):
        for entry in extra.get(key) or []:
            if isinstance(entry, dict) and entry.get(field_name):
                parts.append(entry[field_name])
    return "\n".join(str(part) for part in parts if part).lower()


def _truncate(value: str, limit: int = 30) -> str:
    return value[:27] + "..." if len(value) > limit else value


def _names(entries: Iterable[Dict[str, Any]]) -> List[str]:
    return [entry["name"] for entry in entries or [] if entry.get("name")]


def _tag_from_remote(tag: Dict[str, Any]) -> Tag:
    return Tag(
        id=int(tag["id"]),
        name=str(tag["name"]),
        color=DEFAULT_TAG_COLOR,
        created_at=None,
        usage_count=int(tag["image_count"]) if tag.get("image_count") is not None else None,
    )


class RemoteMediaProvider(MediaSourceProvider):
    """Browse a remote GraphQL catalog through a short-lived in-memory cache."""

    provider_type = ProviderType.REMOTE

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        config: Optional[AppConfig] = None,
        client: Optional[GraphQLClient] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__()
        self.config = config or AppConfig.empty()
        self.logger = logger or logging.getLogger("media_browser")
        self.url = url
        self.api_key = api_key
        self.cache_seconds = float(self.config.get("remote", "cache_seconds", default=DEFAULT_CACHE_SECONDS))
        self.per_page = int(self.config.get("remote", "per_page", default=DEFAULT_PER_PAGE))
        self.client = client or GraphQLClient(
            url,
            api_key,
            timeout=float(self.config.get("remote", "timeout_seconds", default=DEFAULT_TIMEOUT_SECONDS)),
            logger=self.logger,
        )
        self.clock = clock
        self._executor: Optional[ThreadPoolExecutor] = None
        self._cache_lock = threading.RLock()
        self._media_cache: List[MediaRecord] = []
        self._media_fetched_at: Optional[float] = None
        self._tags_cache: Optional[List[Tag]] = None
        self._tags_fetched_at: Optional[float] = None
        self._thumbnail_map: Dict[str, str] = {}

    # ----- configuration -----

    @classmethod
    def config_schema(cls) -> Dict[str, Any]:
        return {
            "description": "Browse images and scene markers from a remote GraphQL catalog",
            "example": "media-browser --provider remote --remote-url http://host:9999/graphql --remote-api-key KEY stats",
            "required_args": {"url": "GraphQL endpoint URL (env MEDIA_REMOTE_URL)"},
            "optional_args": {"api_key": "API key sent as the ApiKey header (env MEDIA_REMOTE_API_KEY)"},
        }

    @classmethod
    def validate_config(cls, options: Dict[str, Any]) -> ProviderResult:
        url = options.get("url")
        if not url:
            return ProviderResult.failed("Server URL is required for the remote provider")
        parsed = urlparse(str(url))
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return ProviderResult.failed(f"Invalid URL format: {url}")
        return ProviderResult.ok(url=str(url), api_key=options.get("api_key") or None)

    # ----- lifecycle -----

    def initialize(self) -> ProviderResult:
        result = self.test_connection()
        if not result.success:
            return ProviderResult.failed(f"Failed to connect to remote server: {result.error}")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="remote-fetch")
        self._initialized = True
        self.logger.info("Remote provider initialized. Url=%s Auth=%s", self.url, bool(self.api_key))
        return ProviderResult.ok(version=result.data.get("version"), url=self.url)

    def test_connection(self) -> ProviderResult:
        try:
            data = self.client.execute(VERSION_QUERY)
        except RemoteCatalogError as exc:
            self.logger.error("Remote server connection failed: %s", exc)
            return ProviderResult.failed(str(exc))
        version = (data.get("version") or {}).get("version")
        if not version:
            return ProviderResult.failed("Invalid response from remote server")
        return ProviderResult.ok(version=version, url=self.url)

    def close(self) -> None:
        self._initialized = False
        self.invalidate_cache()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.client.close()
        self.logger.info("Remote provider closed")

    def invalidate_cache(self) -> None:
        with self._cache_lock:
            self._media_cache = []
            self._media_fetched_at = None
            self._tags_cache = None
            self._tags_fetched_at = None
            self._thumbnail_map.clear()

    def _fresh(self, fetched_at: Optional[float]) -> bool:
        return fetched_at is not None and self.clock() - fetched_at < self.cache_seconds

    # ----- fetching -----

    def _fetch_media(
        self,
        sort_by: str,
        image_filter: Optional[Dict[str, Any]] = None,
        marker_filter: Optional[Dict[str, Any]] = None,
    ) -> List[MediaRecord]:
        find_filter = {
            "per_page": self.per_page,
            "sort": _SORT_MAP.get(sort_by, "random"),
            "direction": "DESC",
        }
        image_vars = {"filter": find_filter, "image_filter": image_filter or {}}
        marker_vars = {"filter": find_filter, "scene_marker_filter": marker_filter or {}}
        if self._executor is not None:
            images_future = self._executor.submit(self.client.execute, FIND_IMAGES_QUERY, image_vars)
            markers_future = self._executor.submit(self.client.execute, FIND_MARKERS_QUERY, marker_vars)
            images_data = images_future.result()
            markers_data = markers_future.result()
        else:
            images_data = self.client.execute(FIND_IMAGES_QUERY, image_vars)
            markers_data = self.client.execute(FIND_MARKERS_QUERY, marker_vars)

        images = (images_data.get("findImages") or {}).get("images") or []
        markers = (markers_data.get("findSceneMarkers") or {}).get("scene_markers") or []
        seen_at = datetime.now(timezone.utc).isoformat()
        media = [image_to_record(image, seen_at) for image in images]
        media.extend(marker_to_record(marker, seen_at) for marker in markers)
        self.logger.info("Media fetched from remote. Images=%s Markers=%s", len(images), len(markers))
        return media

    def _filter_and_sort(self, media: List[MediaRecord], kind_filter: str, sort_by: str) -> List[MediaRecord]:
        kind = normalize_kind_filter(kind_filter)
        filtered = [item for item in media if kind == KIND_ALL or item.kind == kind]
        sort_by = normalize_sort(sort_by)
        if sort_by == SORT_DATE_ADDED:
            return sorted(filtered, key=lambda item: item.added_at or "", reverse=True)
        if sort_by == SORT_DATE_CREATED:
            return sorted(filtered, key=lambda item: item.created_at or "", reverse=True)
        random.shuffle(filtered)
        return filtered

    def _resolve_tag_ids(self, names: Iterable[str], tags: List[Tag]) -> Tuple[List[str], List[str]]:
        by_name = {tag.name.lower(): str(tag.id) for tag in tags}
        resolved: List[str] = []
        missing: List[str] = []
        for name in names:
            tag_id = by_name.get(name.strip().lower())
            if tag_id is None:
                missing.append(name)
            elif tag_id not in resolved:
                resolved.append(tag_id)
        return resolved, missing

    # ----- queries -----

    def get_all_media(self, kind_filter: str = KIND_ALL, sort_by: str = SORT_RANDOM) -> List[MediaRecord]:
        self._ensure_initialized()
        with self._cache_lock:
            if self._fresh(self._media_fetched_at):
                return self._filter_and_sort(list(self._media_cache), kind_filter, sort_by)
        self.logger.info("Fetching media from remote server kind=%s sort=%s", kind_filter, sort_by)
        media = self._fetch_media(normalize_sort(sort_by))
        with self._cache_lock:
            self._media_cache = media
            self._media_fetched_at = self.clock()
            self._thumbnail_map = {item.content_id: item.thumbnail_path for item in media if item.thumbnail_path}
        return self._filter_and_sort(list(media), kind_filter, sort_by)

    def get_media_by_tags(
        self,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
        kind_filter: str = KIND_ALL,
        sort_by: str = SORT_RANDOM,
    ) -> List[MediaRecord]:
        self._ensure_initialized()
        include = [name for name in include or () if name and name.strip()]
        exclude = [name for name in exclude or () if name and name.strip()]
        if not include and not exclude:
            return self.get_all_media(kind_filter, sort_by)

        tags = self.get_all_tags()
        include_ids, missing = self._resolve_tag_ids(include, tags)
        if missing:
            self.logger.info("Unknown include tags %s, no remote media can match", missing)
            return []
        exclude_ids, _ = self._resolve_tag_ids(exclude, tags)

        tag_filter: Dict[str, Any] = {}
        if include_ids:
            tag_filter["value"] = include_ids
            tag_filter["modifier"] = "INCLUDES_ALL"
        if exclude_ids:
            tag_filter["excludes"] = exclude_ids
        image_filter = {"tags": tag_filter} if tag_filter else {}
        marker_filter = {"tags": dict(tag_filter)} if tag_filter else {}
        media = self._fetch_media(normalize_sort(sort_by), image_filter, marker_filter)
        self.logger.info("Tag filtering completed include=%s exclude=%s count=%s", include, exclude, len(media))
        return self._filter_and_sort(media, kind_filter, sort_by)

    def get_media_by_general_filter(
        self, text: str, kind_filter: str = KIND_ALL, sort_by: str = SORT_RANDOM
    ) -> List[MediaRecord]:
        media = self.get_all_media(kind_filter, sort_by)
        term = (text or "").lower()
        if not term:
            return media
        return [item for item in media if term in search_text(item)]

    def get_stats(self) -> MediaStats:
        media = self.get_all_media(KIND_ALL, SORT_DATE_ADDED)
        images = sum(1 for item in media if item.kind == KIND_IMAGE)
        return MediaStats(
            total=len(media),
            images=images,
            videos=len(media) - images,
            total_size=sum(item.byte_size or 0 for item in media),
        )

    # ----- tags -----

    def get_all_tags(self) -> List[Tag]:
        self._ensure_initialized()
        with self._cache_lock:
            if self._tags_cache is not None and self._fresh(self._tags_fetched_at):
                return list(self._tags_cache)
        data = self.client.execute(
            FIND_TAGS_QUERY, {"filter": {"per_page": self.per_page, "sort": "name", "direction": "ASC"}}
        )
        tags = [_tag_from_remote(tag) for tag in (data.get("findTags") or {}).get("tags") or []]
        with self._cache_lock:
            self._tags_cache = tags
            self._tags_fetched_at = self.clock()
        return list(tags)

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        self._ensure_initialized()
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValueError("Tag name must not be empty")
        try:
            data = self.client.execute(TAG_CREATE_MUTATION, {"input": {"name": cleaned}})
        except RemoteCatalogError as exc:
            message = str(exc).lower()
            if "already exists" in message or "duplicate" in message:
                raise DuplicateTag(f"Tag already exists: {cleaned}") from exc
            raise
        created = data.get("tagCreate") or {}
        tag = Tag(
            id=int(created["id"]),
            name=str(created.get("name") or cleaned),
            color=color or DEFAULT_TAG_COLOR,
            created_at=datetime.now(timezone.utc).isoformat(),
            usage_count=int(created.get("image_count") or 0),
        )
        self.invalidate_cache()
        self.logger.info("Tag created on remote server: %s (%s)", tag.name, tag.id)
        return tag

    def _marker_tags(self, marker_id: str) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        data = self.client.execute(FIND_MARKER_TAGS_QUERY, {"id": marker_id})
        markers = (data.get("findSceneMarkers") or {}).get("scene_markers") or []
        if not markers:
            raise MediaNotFound(f"Marker not found: {marker_id}")
        marker = markers[0]
        return marker.get("primary_tag"), marker.get("tags") or []

    def get_media_tags(self, content_id: str) -> List[Tag]:
        """Tags of one remote item; a marker's primary tag comes first."""
        self._ensure_initialized()
        parsed = parse_content_id(content_id)
        if parsed is None:
            self.logger.warning("Cannot derive a remote id from %s", content_id)
            return []
        kind, remote_id = parsed
        if kind == "marker":
            try:
                primary, extra_tags = self._marker_tags(remote_id)
            except MediaNotFound:
                return []
            remote_tags = ([primary] if primary else []) + extra_tags
        else:
            data = self.client.execute(FIND_IMAGE_TAGS_QUERY, {"id": remote_id})
            image = data.get("findImage")
            if not image:
                return []
            remote_tags = image.get("tags") or []
        return [_tag_from_remote(tag) for tag in remote_tags]

    def add_tag_to_media(self, content_id: str, tag_id: int) -> bool:
        self._ensure_initialized()
        parsed = parse_content_id(content_id)
        if parsed is None:
            self.logger.warning("Cannot derive a remote id from %s, tag not added", content_id)
            return False
        kind, remote_id = parsed
        current_ids = [str(tag.id) for tag in self.get_media_tags(content_id)]
        if str(tag_id) in current_ids:
            return False
        if kind == "marker":
            _, extra_tags = self._marker_tags(remote_id)
            tag_ids = [str(tag["id"]) for tag in extra_tags] + [str(tag_id)]
            self.client.execute(MARKER_UPDATE_MUTATION, {"input": {"id": remote_id, "tag_ids": tag_ids}})
        else:
            self.client.execute(
                IMAGE_UPDATE_MUTATION, {"input": {"id": remote_id, "tag_ids": current_ids + [str(tag_id)]}}
            )
        self.invalidate_cache()
        self.logger.info("Tag %s added to %s", tag_id, content_id)
        return True

    def remove_tag_from_media(self, content_id: str, tag_id: int) -> bool:
        self._ensure_initialized()
        parsed = parse_content_id(content_id)
        if parsed is None:
            self.logger.warning("Cannot derive a remote id from %s, tag not removed", content_id)
            return False
        kind, remote_id = parsed
        current_ids = [str(tag.id) for tag in self.get_media_tags(content_id)]
        if str(tag_id) not in current_ids:
            return False
        if kind == "marker":
            primary, extra_tags = self._marker_tags(remote_id)
            if primary and str(primary.get("id")) == str(tag_id):
                raise RemoteCatalogError("Cannot remove primary tag from marker")
            tag_ids = [str(tag["id"]) for tag in extra_tags if str(tag["id"]) != str(tag_id)]
            self.client.execute(MARKER_UPDATE_MUTATION, {"input": {"id": remote_id, "tag_ids": tag_ids}})
        else:
            tag_ids = [value for value in current_ids if value != str(tag_id)]
            self.client.execute(IMAGE_UPDATE_MUTATION, {"input": {"id": remote_id, "tag_ids": tag_ids}})
        self.invalidate_cache()
        self.logger.info("Tag %s removed from %s", tag_id, content_id)
        return True

    # ----- serving -----

    def serve_media(self, ref: str) -> MediaPayload:
        """Proxy a remote stream; ``ref`` is an http(s) URL or a cached content id."""
        self._ensure_initialized()
        url = ref
        if not ref.startswith("http"):
            record = self._cached_record(ref)
            if record is None:
                self.get_all_media(KIND_ALL, SORT_DATE_ADDED)
                record = self._cached_record(ref)
            if record is None or not record.path.startswith("http"):
                raise MediaNotFound(f"Invalid media path for remote provider: {ref}")
            url = record.path
        return self.client.fetch(url, label="Media")

    def _cached_record(self, content_id: str) -> Optional[MediaRecord]:
        with self._cache_lock:
            return next((item for item in self._media_cache if item.content_id == content_id), None)

    def serve_thumbnail(self, content_id: str) -> MediaPayload:
        self._ensure_initialized()
        with self._cache_lock:
            url = self._thumbnail_map.get(content_id)
            cache_stale = not self._fresh(self._media_fetched_at)
        if url is None and cache_stale:
            self.get_all_media(KIND_ALL, SORT_DATE_ADDED)
            with self._cache_lock:
                url = self._thumbnail_map.get(content_id)
        if url is None:
            raise MediaNotFound(f"Thumbnail not found: {content_id}")
        return self.client.fetch(url, label="Thumbnail")

    # ----- presentation -----

    def get_capabilities(self) -> Capabilities:
        return Capabilities(
            can_rescan=False,
            can_regenerate_thumbnails=False,
            can_manage_tags=False,
            can_get_file_hash_for_path=False,
            supports_local_files=False,
            supports_remote_files=True,
        )

    def get_ui_config(self) -> Dict[str, Any]:
        config = super().get_ui_config()
        config["directory_label"] = "Server"
        return config

    def compute_display_name(self, record: Optional[MediaRecord], context: Optional[str] = None) -> str:
        if record is None:
            return ""
        extra = record.extra
        if extra.get("remote_type") == "marker":
            performers = _names(extra.get("scene_performers") or [])
            if performers:
                return _truncate(", ".join(performers))
            if extra.get("scene_title"):
                return _truncate(str(extra["scene_title"]))
            studio = (extra.get("scene_studio") or {}).get("name")
            if studio:
                return str(studio)
        else:
            performers = _names(extra.get("performers") or [])
            if performers:
                return _truncate(", ".join(performers))
            parts = (record.display_name or "").split("/")
            if len(parts) >= 2 and parts[-2]:
                return parts[-2]
            if extra.get("remote_id"):
                return f"Image #{extra['remote_id']}"
        return "Remote Server"

    def get_media_info(self, record: MediaRecord) -> Dict[str, Any]:
        info = super().get_media_info(record)
        sections = info["sections"]
        extra = record.extra
        is_marker = extra.get("remote_type") == "marker"

        source = []
        if (extra.get("studio") or {}).get("name"):
            source.append(_text("Studio", extra["studio"]["name"]))
        if extra.get("code"):
            source.append(_text("Code", extra["code"]))
        if extra.get("rating"):
            source.append({"label": "Rating", "value": extra["rating"], "type": "rating"})
        if source:
            sections.append({"title": "Source", "fields": source})

        people = _names(extra.get("scene_performers" if is_marker else "performers") or [])
        if people:
            sections.append({"title": "People", "fields": [{"label": "People", "value": people, "type": "tags"}]})

        tag_names = _names(extra.get("tags") or [])
        if tag_names:
            sections.append({"title": "Tags", "fields": [{"label": "Tags", "value": tag_names, "type": "tags"}]})

        visual = (extra.get("visual_files") or [None])[0]
        if visual:
            details = []
            if visual.get("video_codec"):
                details.append(_text("Video Codec", visual["video_codec"]))
            if visual.get("audio_codec"):
                details.append(_text("Audio Codec", visual["audio_codec"]))
            if visual.get("frame_rate"):
                details.append(_text("Frame Rate", f"{visual['frame_rate']} fps"))
            if visual.get("bit_rate"):
                details.append(_text("Bit Rate", f"{visual['bit_rate'] / 1_000_000:.1f} Mbps"))
            if visual.get("path"):
                details.append(_text("File Path", visual["path"]))
            for fingerprint in visual.get("fingerprints") or []:
                details.append(_text(str(fingerprint.get("type", "")).upper(), fingerprint.get("value")))
            if details:
                sections.append({"title": "File Details", "fields": details})

        if is_marker:
            scene = []
            if extra.get("scene_title"):
                scene.append(_text("Scene Title", extra["scene_title"]))
            if extra.get("scene_code"):
                scene.append(_text("Scene Code", extra["scene_code"]))
            if (extra.get("scene_studio") or {}).get("name"):
                scene.append(_text("Scene Studio", extra["scene_studio"]["name"]))
            if extra.get("marker_start") is not None:
                scene.append(_text("Marker Start", format_duration(extra["marker_start"])))
            if extra.get("marker_end") is not None:
                scene.append(_text("Marker End", format_duration(extra["marker_end"])))
            if (extra.get("primary_tag") or {}).get("name"):
                scene.append(_text("Primary Tag", extra["primary_tag"]["name"]))
            scene_file = (extra.get("scene_files") or [None])[0]
            if scene_file and scene_file.get("duration"):
                scene.append(_text("Scene Duration", format_duration(scene_file["duration"])))
            if scene_file and scene_file.get("path"):
                scene.append(_text("Scene File", scene_file["path"]))
            if scene:
                sections.append({"title": "Scene Info", "fields": scene})
            scene_tags = _names(extra.get("scene_tags") or [])
            if scene_tags:
                sections.append(
                    {"title": "Scene Tags", "fields": [{"label": "Tags", "value": scene_tags, "type": "tags"}]}
                )
        return info


def _text(label: str, value: Any) -> Dict[str, Any]:
    return {"label": label, "value": value, "type": "text"}
