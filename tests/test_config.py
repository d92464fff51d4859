from pathlib import Path

import pytest

from config import AppConfig, locate_config


def test_config_resolves_paths(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("paths:\n  logs: \"logs\"\n", encoding="utf-8")

    config = AppConfig.load(config_path)
    logs_path = config.resolve_path("paths", "logs")

    assert logs_path == config_path.parent / "logs"
    assert config.get("missing", default=123) == 123


def test_config_env_path_and_missing_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("local:\n  thumbnail_size: 128\n", encoding="utf-8")
    monkeypatch.setenv("MEDIA_BROWSER_CONFIG", str(config_path))

    config = AppConfig.load()
    assert config.get("local", "thumbnail_size") == 128

    with pytest.raises(FileNotFoundError):
        AppConfig.load(tmp_path / "absent.yaml")


def test_config_overrides_skip_none_and_keep_existing(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("local:\n  directory: /media\n  retention_days: 10\n", encoding="utf-8")
    config = AppConfig.load(config_path)

    merged = config.with_overrides({"local": {"directory": None}, "provider": {"type": "remote"}})

    assert merged.get("local", "directory") == "/media"
    assert merged.get("local", "retention_days") == 10
    assert merged.get("provider", "type") == "remote"
    assert config.get("provider", "type") is None


def test_remote_settings_fall_back_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEDIA_REMOTE_URL", "http://catalog.local/graphql")
    monkeypatch.setenv("MEDIA_REMOTE_API_KEY", "secret")
    config = AppConfig.empty(tmp_path)

    assert config.remote_url() == "http://catalog.local/graphql"
    assert config.remote_api_key() == "secret"

    explicit = config.with_overrides({"remote": {"url": "https://other/graphql"}})
    assert explicit.remote_url() == "https://other/graphql"


def test_locate_config_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("MEDIA_BROWSER_CONFIG", raising=False)
    assert locate_config() == tmp_path.resolve() / "config.yaml"

    monkeypatch.setenv("MEDIA_BROWSER_CONFIG", "conf/env.yaml")
    assert locate_config() == tmp_path.resolve() / "conf" / "env.yaml"
    assert locate_config(Path("/etc/media.yaml")) == Path("/etc/media.yaml")


def test_non_mapping_config_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        AppConfig.load(config_path)
