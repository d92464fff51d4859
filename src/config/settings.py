"""
Configuration loader and helpers for the media browser.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable

import yaml

DEFAULT_CONFIG_PATH = Path("config.yaml")
ENV_CONFIG_PATH = "MEDIA_BROWSER_CONFIG"
ENV_REMOTE_URL = "MEDIA_REMOTE_URL"
ENV_REMOTE_API_KEY = "MEDIA_REMOTE_API_KEY"


@dataclass(frozen=True)
class AppConfig:
    """Container for raw configuration data and path helpers."""

    root_dir: Path
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path | None = None) -> "AppConfig":
        """Parse the YAML file found by ``locate_config`` and anchor relative paths beside it."""
        config_path = locate_config(path)
        if not config_path.is_file():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Config root must be a mapping: {config_path}")
        return cls(root_dir=config_path.parent, raw=data)

    @classmethod
    def empty(cls, root_dir: Path | None = None) -> "AppConfig":
        """Return a configuration where every lookup falls back to its default."""
        return cls(root_dir=(root_dir or Path.cwd()).resolve(), raw={})

    def get(self, *keys: str, default: Any = None) -> Any:
        """Retrieve nested configuration values with an optional default."""
        node: Any = self.raw
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def resolve_path(self, *keys: str, default: str | None = None) -> Path:
        """Resolve a path from configuration keys to an absolute Path."""
        value = self.get(*keys, default=default)
        if value is None:
            raise KeyError(f"Missing config path for {'.'.join(keys)}")
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = (self.root_dir / path).resolve()
        return path

    def with_overrides(self, overrides: Dict[str, Dict[str, Any]]) -> "AppConfig":
        """Return a copy with section values replaced, skipping None values."""
        merged: Dict[str, Any] = {key: dict(value) if isinstance(value, dict) else value
                                  for key, value in self.raw.items()}
        for section, values in overrides.items():
            target = merged.get(section)
            if not isinstance(target, dict):
                target = {}
            for key, value in values.items():
                if value is not None:
                    target[key] = value
            merged[section] = target
        return AppConfig(root_dir=self.root_dir, raw=merged)

    def remote_url(self) -> str | None:
        """Remote catalog endpoint, preferring the config file over the environment."""
        return self.get("remote", "url") or os.environ.get(ENV_REMOTE_URL)

    def remote_api_key(self) -> str | None:
        return self.get("remote", "api_key") or os.environ.get(ENV_REMOTE_API_KEY)


def ensure_directories(paths: Iterable[Path]) -> None:
    """Create directories if they do not already exist."""
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


def locate_config(path: Path | None = None) -> Path:
    """Explicit path first, then ``$MEDIA_BROWSER_CONFIG``, then ``./config.yaml``."""
    if path is None:
        path = Path(os.environ.get(ENV_CONFIG_PATH) or DEFAULT_CONFIG_PATH)
    path = Path(path).expanduser()
    return path if path.is_absolute() else (Path.cwd() / path).resolve()
