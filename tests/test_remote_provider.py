import copy
from typing import Any, Dict, List, Optional

import pytest

from database import DuplicateTag, MediaNotFound
from providers import MediaPayload, RemoteMediaProvider, UnsupportedOperation
from providers.remote import (
    GraphQLClient,
    RemoteCatalogError,
    image_to_record,
    parse_content_id,
)

IMAGES = [
    {
        "id": "11",
        "title": "Sunset",
        "created_at": "2024-03-01T10:00:00Z",
        "date": "2023-07-01",
        "paths": {"image": "http://catalog/image/11", "thumbnail": "http://catalog/image/11/thumb"},
        "visual_files": [{"path": "/lib/trips/sunset.jpg", "size": 2048, "width": 800, "height": 600}],
        "tags": [{"id": "1", "name": "Beach"}],
        "performers": [{"id": "5", "name": "Alice Example"}],
        "studio": {"id": "9", "name": "Coastline"},
    },
    {
        "id": "12",
        "created_at": "2024-03-02T10:00:00Z",
        "paths": {"image": "http://catalog/image/12", "thumbnail": "http://catalog/image/12/thumb"},
        "visual_files": [{"path": "/lib/anim/loop.gif", "size": 512, "duration": 2.5}],
        "tags": [],
        "performers": [],
    },
    {
        "id": "13",
        "created_at": "2024-03-03T10:00:00Z",
        "paths": {"image": "http://catalog/image/13", "thumbnail": "http://catalog/image/13/thumb"},
        "visual_files": [
            {"path": "/lib/clips/surf.mp4", "size": 4096, "duration": 12.0, "video_codec": "h264"}
        ],
        "tags": [{"id": "1", "name": "Beach"}, {"id": "2", "name": "night"}],
        "performers": [],
    },
]

MARKERS = [
    {
        "id": "21",
        "title": "Wave",
        "seconds": 30.0,
        "end_seconds": 45.0,
        "created_at": "2024-02-01T00:00:00Z",
        "stream": "http://catalog/scene/7/stream",
        "screenshot": "http://catalog/marker/21/shot",
        "scene": {
            "id": "7",
            "title": "Big Surf Day",
            "files": [{"path": "/lib/scenes/day.mp4", "size": 9000, "duration": 600}],
            "performers": [],
            "tags": [{"id": "3", "name": "ocean"}],
        },
        "primary_tag": {"id": "3", "name": "ocean"},
        "tags": [{"id": "1", "name": "Beach"}],
    }
]

TAGS = [
    {"id": "1", "name": "Beach", "image_count": 2},
    {"id": "2", "name": "night", "image_count": 1},
    {"id": "3", "name": "ocean", "image_count": 0},
]


class FakeCatalog:
    """In-memory stand-in for the GraphQL client used by the remote provider."""

    def __init__(self, fail_version: bool = False) -> None:
        self.images = copy.deepcopy(IMAGES)
        self.markers = copy.deepcopy(MARKERS)
        self.tags = copy.deepcopy(TAGS)
        self.fail_version = fail_version
        self.calls: List[tuple[str, Dict[str, Any]]] = []
        self.fetched: List[str] = []
        self.closed = False

    def _tag(self, tag_id: str) -> Dict[str, Any]:
        return next({"id": tag["id"], "name": tag["name"]} for tag in self.tags if tag["id"] == tag_id)

    def _matches(self, item: Dict[str, Any], criteria: Optional[Dict[str, Any]]) -> bool:
        tag_criterion = (criteria or {}).get("tags")
        if not tag_criterion:
            return True
        ids = {tag["id"] for tag in item.get("tags", [])}
        if item.get("primary_tag"):
            ids.add(item["primary_tag"]["id"])
        required = set(tag_criterion.get("value", []))
        excluded = set(tag_criterion.get("excludes", []))
        return required <= ids and not ids & excluded

    def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        variables = variables or {}
        self.calls.append((query, variables))
        if "version {" in query:
            if self.fail_version:
                raise RemoteCatalogError("HTTP error! status: 502")
            return {"version": {"version": "v0.26.2"}}
        if "findImages(" in query:
            images = [i for i in self.images if self._matches(i, variables.get("image_filter"))]
            return {"findImages": {"count": len(images), "images": copy.deepcopy(images)}}
        if "findSceneMarkers(filter" in query:
            markers = [m for m in self.markers if self._matches(m, variables.get("scene_marker_filter"))]
            return {"findSceneMarkers": {"count": len(markers), "scene_markers": copy.deepcopy(markers)}}
        if "findSceneMarkers(ids" in query:
            found = [m for m in self.markers if m["id"] == variables["id"]]
            return {"findSceneMarkers": {"scene_markers": copy.deepcopy(found)}}
        if "findImage(" in query:
            image = next((i for i in self.images if i["id"] == variables["id"]), None)
            return {"findImage": copy.deepcopy(image)}
        if "findTags(" in query:
            return {"findTags": {"count": len(self.tags), "tags": copy.deepcopy(self.tags)}}
        if "tagCreate(" in query:
            name = variables["input"]["name"]
            if any(tag["name"].lower() == name.lower() for tag in self.tags):
                raise RemoteCatalogError(f"GraphQL error: tag with name '{name}' already exists")
            tag = {"id": str(len(self.tags) + 1), "name": name, "image_count": 0}
            self.tags.append(tag)
            return {"tagCreate": dict(tag)}
        if "imageUpdate(" in query:
            image = next(i for i in self.images if i["id"] == variables["input"]["id"])
            image["tags"] = [self._tag(tag_id) for tag_id in variables["input"]["tag_ids"]]
            return {"imageUpdate": {"id": image["id"], "tags": image["tags"]}}
        if "sceneMarkerUpdate(" in query:
            marker = next(m for m in self.markers if m["id"] == variables["input"]["id"])
            marker["tags"] = [self._tag(tag_id) for tag_id in variables["input"]["tag_ids"]]
            return {"sceneMarkerUpdate": {"id": marker["id"], "tags": marker["tags"]}}
        raise AssertionError(f"unexpected query: {query}")

    def fetch(self, url: str, label: str = "Media") -> MediaPayload:
        self.fetched.append(url)
        return MediaPayload(stream=iter([b"bytes"]), content_type="image/jpeg", content_length=5)

    def close(self) -> None:
        self.closed = True

    def count(self, marker: str) -> int:
        return sum(1 for query, _ in self.calls if marker in query)

    def last_variables(self, marker: str) -> Dict[str, Any]:
        return [variables for query, variables in self.calls if marker in query][-1]


class FakeClock:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider(catalog: FakeCatalog, clock: FakeClock):
    remote = RemoteMediaProvider("http://catalog/graphql", "secret", client=catalog, clock=clock)
    assert remote.initialize().success
    yield remote
    remote.close()


def by_id(records) -> Dict[str, Any]:
    return {record.content_id: record for record in records}


def test_initialize_reports_connection_failure() -> None:
    remote = RemoteMediaProvider("http://catalog/graphql", client=FakeCatalog(fail_version=True))

    result = remote.initialize()

    assert result.success is False
    assert "502" in result.error
    assert remote.is_initialized is False


def test_images_and_markers_unify_into_records(provider: RemoteMediaProvider) -> None:
    records = by_id(provider.get_all_media(sort_by="date_added"))

    assert set(records) == {"remote_11", "remote_12", "remote_13", "remote_marker_21"}
    assert records["remote_11"].kind == "image"
    assert records["remote_12"].kind == "image"
    assert records["remote_13"].kind == "video"
    marker = records["remote_marker_21"]
    assert marker.kind == "video"
    assert marker.duration == 15.0
    assert marker.path == "http://catalog/scene/7/stream"
    assert marker.extra["primary_tag"]["name"] == "ocean"
    assert parse_content_id("remote_marker_21") == ("marker", "21")
    assert parse_content_id("remote_11") == ("image", "11")
    assert parse_content_id("abc123") is None


def test_sorting_and_kind_filter(provider: RemoteMediaProvider) -> None:
    added = [record.content_id for record in provider.get_all_media(sort_by="date_added")]
    assert added == ["remote_13", "remote_12", "remote_11", "remote_marker_21"]

    videos = provider.get_all_media(kind_filter="videos")
    assert {record.content_id for record in videos} == {"remote_13", "remote_marker_21"}


def test_media_cache_expires(provider: RemoteMediaProvider, catalog: FakeCatalog, clock: FakeClock) -> None:
    provider.get_all_media()
    provider.get_all_media(kind_filter="photos")
    assert catalog.count("findImages(") == 1

    clock.value += 301
    provider.get_all_media()
    assert catalog.count("findImages(") == 2


def test_empty_catalog_is_cached(catalog: FakeCatalog, clock: FakeClock) -> None:
    catalog.images = []
    catalog.markers = []
    remote = RemoteMediaProvider("http://catalog/graphql", client=catalog, clock=clock)
    assert remote.initialize().success

    assert remote.get_all_media() == []
    assert remote.get_all_media() == []
    assert catalog.count("findImages(") == 1


def test_tag_filter_is_pushed_to_server(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    records = provider.get_media_by_tags(["beach"], ["Night"])

    expected = {"value": ["1"], "modifier": "INCLUDES_ALL", "excludes": ["2"]}
    assert catalog.last_variables("findImages(")["image_filter"] == {"tags": expected}
    assert catalog.last_variables("findSceneMarkers(filter")["scene_marker_filter"] == {"tags": expected}
    assert {record.content_id for record in records} == {"remote_11", "remote_marker_21"}


def test_exclude_only_tag_filter(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    records = provider.get_media_by_tags([], ["night"])

    assert catalog.last_variables("findImages(")["image_filter"] == {"tags": {"excludes": ["2"]}}
    assert catalog.last_variables("findSceneMarkers(filter")["scene_marker_filter"] == {"tags": {"excludes": ["2"]}}
    assert {record.content_id for record in records} == {"remote_11", "remote_12", "remote_marker_21"}


def test_unknown_excludes_alone_send_empty_filter(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    records = provider.get_media_by_tags([], ["missing"])

    assert catalog.last_variables("findImages(")["image_filter"] == {}
    assert catalog.last_variables("findSceneMarkers(filter")["scene_marker_filter"] == {}
    assert len(records) == 4


def test_primary_tag_matches_marker(provider: RemoteMediaProvider) -> None:
    records = provider.get_media_by_tags(["ocean"])

    assert [record.content_id for record in records] == ["remote_marker_21"]


def test_unknown_include_tag_matches_nothing(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    assert provider.get_media_by_tags(["does-not-exist"]) == []
    assert catalog.count("findImages(") == 0


def test_unknown_exclude_tag_is_ignored(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    records = provider.get_media_by_tags(["ocean"], ["missing"])

    assert catalog.last_variables("findImages(")["image_filter"] == {
        "tags": {"value": ["3"], "modifier": "INCLUDES_ALL"}
    }
    assert [record.content_id for record in records] == ["remote_marker_21"]


def test_general_filter_searches_related_fields(provider: RemoteMediaProvider) -> None:
    assert [r.content_id for r in provider.get_media_by_general_filter("alice")] == ["remote_11"]
    assert [r.content_id for r in provider.get_media_by_general_filter("BIG SURF")] == ["remote_marker_21"]
    assert {r.content_id for r in provider.get_media_by_general_filter("surf")} == {"remote_13", "remote_marker_21"}
    assert len(provider.get_media_by_general_filter("")) == 4


def test_stats_cover_all_media(provider: RemoteMediaProvider) -> None:
    stats = provider.get_stats()

    assert (stats.total, stats.images, stats.videos) == (4, 2, 2)
    assert stats.total_size == 2048 + 512 + 4096 + 9000


def test_tagging_an_image_invalidates_cache(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    provider.get_all_media()
    tags = provider.get_all_tags()
    assert [tag.name for tag in tags] == ["Beach", "night", "ocean"]
    assert tags[0].usage_count == 2

    assert provider.add_tag_to_media("remote_12", 2) is True
    assert catalog.last_variables("imageUpdate(")["input"] == {"id": "12", "tag_ids": ["2"]}
    assert provider.add_tag_to_media("remote_12", 2) is False
    assert [tag.name for tag in provider.get_media_tags("remote_12")] == ["night"]

    provider.get_all_media()
    assert catalog.count("findImages(") == 2

    assert provider.remove_tag_from_media("remote_12", 2) is True
    assert provider.remove_tag_from_media("remote_12", 2) is False
    assert provider.add_tag_to_media("local-hash", 2) is False


def test_marker_primary_tag_cannot_be_removed(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    assert [tag.name for tag in provider.get_media_tags("remote_marker_21")] == ["ocean", "Beach"]

    with pytest.raises(RemoteCatalogError):
        provider.remove_tag_from_media("remote_marker_21", 3)

    assert provider.add_tag_to_media("remote_marker_21", 2) is True
    assert catalog.last_variables("sceneMarkerUpdate(")["input"] == {"id": "21", "tag_ids": ["1", "2"]}
    assert provider.remove_tag_from_media("remote_marker_21", 1) is True
    assert catalog.last_variables("sceneMarkerUpdate(")["input"] == {"id": "21", "tag_ids": ["2"]}


def test_create_tag_and_duplicates(provider: RemoteMediaProvider) -> None:
    tag = provider.create_tag("sunrise", "#FFAA00")
    assert (tag.id, tag.name, tag.color) == (4, "sunrise", "#FFAA00")
    assert "sunrise" in [item.name for item in provider.get_all_tags()]

    with pytest.raises(DuplicateTag):
        provider.create_tag("beach")
    with pytest.raises(ValueError):
        provider.create_tag("   ")


def test_add_tag_by_name_creates_missing_tag(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    assert provider.add_tag_to_media_by_name("remote_11", "BEACH") is False
    assert provider.add_tag_to_media_by_name("remote_11", "golden hour") is True
    assert catalog.count("tagCreate(") == 1


def test_local_only_operations_are_unsupported(provider: RemoteMediaProvider) -> None:
    for call in (
        lambda: provider.update_tag(1, "renamed"),
        lambda: provider.delete_tag(1),
        provider.rescan_directory,
        provider.regenerate_thumbnails,
        lambda: provider.get_file_hash_for_path("/lib/trips/sunset.jpg"),
    ):
        with pytest.raises(UnsupportedOperation) as excinfo:
            call()
        assert excinfo.value.provider == "remote"


def test_serving_uses_cached_urls(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    provider.serve_thumbnail("remote_marker_21")
    assert catalog.fetched == ["http://catalog/marker/21/shot"]

    provider.serve_media("remote_11")
    provider.serve_media("http://catalog/direct.mp4")
    assert catalog.fetched[1:] == ["http://catalog/image/11", "http://catalog/direct.mp4"]

    with pytest.raises(MediaNotFound):
        provider.serve_thumbnail("remote_999")
    with pytest.raises(MediaNotFound):
        provider.serve_media("remote_999")


def test_serving_after_tag_change_refetches(provider: RemoteMediaProvider, catalog: FakeCatalog) -> None:
    provider.serve_media("remote_11")
    assert provider.add_tag_to_media("remote_11", 2) is True

    provider.serve_media("remote_11")
    provider.serve_thumbnail("remote_11")

    assert catalog.fetched == [
        "http://catalog/image/11",
        "http://catalog/image/11",
        "http://catalog/image/11/thumb",
    ]


def test_display_names(provider: RemoteMediaProvider) -> None:
    records = by_id(provider.get_all_media())

    assert provider.compute_display_name(records["remote_11"]) == "Alice Example"
    assert provider.compute_display_name(records["remote_12"]) == "anim"
    assert provider.compute_display_name(records["remote_marker_21"]) == "Big Surf Day"
    bare = image_to_record({"id": "99"}, "2024-01-01T00:00:00+00:00")
    assert provider.compute_display_name(bare) == "Image #99"

    crowded = image_to_record(
        {"id": "7", "performers": [{"name": "Performer Number One"}, {"name": "Performer Two"}]},
        "2024-01-01T00:00:00+00:00",
    )
    name = provider.compute_display_name(crowded)
    assert len(name) == 30 and name.endswith("...")


def test_media_info_sections(provider: RemoteMediaProvider) -> None:
    records = by_id(provider.get_all_media())

    image_titles = [s["title"] for s in provider.get_media_info(records["remote_11"])["sections"]]
    assert image_titles == ["General", "Source", "People", "Tags", "File Details"]

    marker_info = provider.get_media_info(records["remote_marker_21"])
    titles = [s["title"] for s in marker_info["sections"]]
    assert titles == ["General", "Tags", "Scene Info", "Scene Tags"]
    scene = {field["label"]: field["value"] for field in marker_info["sections"][2]["fields"]}
    assert scene["Marker Start"] == "0:30"
    assert scene["Primary Tag"] == "ocean"


def test_ui_config_and_capabilities(provider: RemoteMediaProvider) -> None:
    ui = provider.get_ui_config()

    assert ui["directory_label"] == "Server"
    assert ui["show_connection_status"] is True
    assert ui["available_actions"] == []


def test_close_releases_client(catalog: FakeCatalog) -> None:
    remote = RemoteMediaProvider("http://catalog/graphql", client=catalog)
    remote.initialize()
    remote.close()

    assert catalog.closed is True
    assert remote.is_initialized is False


def test_validate_config() -> None:
    assert RemoteMediaProvider.validate_config({}).success is False
    assert RemoteMediaProvider.validate_config({"url": "catalog:9999"}).success is False

    result = RemoteMediaProvider.validate_config({"url": "https://catalog:9999/graphql", "api_key": ""})
    assert result.success
    assert result.data == {"url": "https://catalog:9999/graphql", "api_key": None}


class FakeResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self.payload = payload

    def json(self) -> Any:
        return self.payload


class FakeSession:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.posts: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.posts.append({"url": url, **kwargs})
        return self.response

    def close(self) -> None:
        pass


def test_graphql_client_sends_api_key_and_returns_data() -> None:
    session = FakeSession(FakeResponse(200, {"data": {"version": {"version": "v1"}}}))
    client = GraphQLClient("http://catalog/graphql", "secret", timeout=5, session=session)

    assert client.execute("query { version { version } }") == {"version": {"version": "v1"}}
    sent = session.posts[0]
    assert sent["headers"] == {"ApiKey": "secret"}
    assert sent["json"]["variables"] == {}
    assert sent["timeout"] == 5


def test_graphql_client_raises_on_errors() -> None:
    errors = GraphQLClient(
        "http://catalog/graphql", session=FakeSession(FakeResponse(200, {"errors": [{"message": "bad field"}]}))
    )
    with pytest.raises(RemoteCatalogError, match="bad field"):
        errors.execute("query { nope }")

    status = GraphQLClient("http://catalog/graphql", session=FakeSession(FakeResponse(401, {})))
    with pytest.raises(RemoteCatalogError, match="401"):
        status.execute("query { version { version } }")
