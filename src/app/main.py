"""
Command line entry point for browsing, tagging and maintaining a media source.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from config import AppConfig
from config.settings import ENV_CONFIG_PATH, locate_config
from database import DuplicateTag, MediaNotFound, TagNotFound
from providers import (
    MediaSourceProvider,
    ProviderFactory,
    ProviderSetupError,
    RemoteCatalogError,
    UnsupportedOperation,
)
from utils import ScanAlreadyInProgress, ShutdownRegistry, run_with_cleanup, setup_logging
from utils.media_types import KIND_ALL, SORT_KEYS, SORT_RANDOM

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SETUP = 2
EXIT_SCAN_BUSY = 3
EXIT_UNSUPPORTED = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="media-browser", description="Index, tag and browse a local or remote media collection."
    )
    parser.add_argument("--config", default=None, help="Config YAML path (default: $MEDIA_BROWSER_CONFIG or ./config.yaml)")
    parser.add_argument("--provider", choices=["local", "remote"], default=None, help="Media source type")
    parser.add_argument("-d", "--directory", default=None, help="Media root for the local provider")
    parser.add_argument("--remote-url", default=None, help="GraphQL endpoint for the remote provider")
    parser.add_argument("--remote-api-key", default=None, help="API key for the remote provider")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("stats", help="Show media counts and provider capabilities")
    commands.add_parser("rescan", help="Rescan the media root and run maintenance")
    commands.add_parser("regenerate-thumbnails", help="Re-render every thumbnail")
    commands.add_parser("maintenance", help="Remove stale records and unused tags, then compact")

    tags = commands.add_parser("tags", help="List tags or create one")
    tags.add_argument("--create", default=None, metavar="NAME", help="Create a tag with this name")
    tags.add_argument("--color", default=None, help="Color for a created tag")

    tag = commands.add_parser("tag", help="Tag a media item by name, creating the tag if needed")
    tag.add_argument("content_id")
    tag.add_argument("name")

    untag = commands.add_parser("untag", help="Remove a tag from a media item")
    untag.add_argument("content_id")
    untag.add_argument("tag_id", type=int)

    listing = commands.add_parser("list", help="List media records")
    listing.add_argument("--kind", default=KIND_ALL, help="all, image/photos or video/videos")
    listing.add_argument("--sort", default=SORT_RANDOM, choices=list(SORT_KEYS))
    listing.add_argument("--include", action="append", default=[], metavar="TAG", help="Require this tag")
    listing.add_argument("--exclude", action="append", default=[], metavar="TAG", help="Reject this tag")
    listing.add_argument("--filter", default=None, help="Substring to match")
    listing.add_argument("--limit", type=int, default=None, help="Maximum number of records")
    return parser


def load_config(path_value: Optional[str]) -> AppConfig:
    """Load an explicit or env-named config; fall back to defaults when ./config.yaml is absent."""
    if path_value or os.environ.get(ENV_CONFIG_PATH):
        return AppConfig.load(Path(path_value) if path_value else None)
    located = locate_config()
    return AppConfig.load(located) if located.is_file() else AppConfig.empty()


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_command(provider: MediaSourceProvider, args: argparse.Namespace) -> Any:
    command = args.command
    if command == "stats":
        return {
            "provider": provider.name,
            "stats": provider.get_stats().to_dict(),
            "capabilities": provider.get_capabilities().as_dict(),
        }
    if command == "rescan":
        paths = provider.rescan_directory()
        return {"files": len(paths), "stats": provider.get_stats().to_dict()}
    if command == "regenerate-thumbnails":
        return {"regenerated": provider.regenerate_thumbnails()}
    if command == "maintenance":
        return provider.run_maintenance().to_dict()
    if command == "tags":
        if args.create:
            return provider.create_tag(args.create, args.color).to_dict()
        return [tag.to_dict() for tag in provider.get_all_tags()]
    if command == "tag":
        return {"added": provider.add_tag_to_media_by_name(args.content_id, args.name)}
    if command == "untag":
        return {"removed": provider.remove_tag_from_media(args.content_id, args.tag_id)}
    if command == "list":
        if args.filter:
            records = provider.get_media_by_general_filter(args.filter, args.kind, args.sort)
        else:
            records = provider.get_media_by_tags(args.include, args.exclude, args.kind, args.sort)
        if args.limit is not None:
            records = records[: max(args.limit, 0)]
        return [
            dict(record.to_dict(), label=provider.compute_display_name(record)) for record in records
        ]
    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_SETUP
    config = config.with_overrides(
        {
            "provider": {"type": args.provider},
            "local": {"directory": args.directory},
            "remote": {"url": args.remote_url, "api_key": args.remote_api_key},
        }
    )
    loggers = setup_logging(
        config.resolve_path("paths", "logs", default="logs"),
        level=logging.DEBUG if args.verbose else logging.INFO,
    )
    logger = loggers["main"]

    registry = ShutdownRegistry(logger)
    registry.install()
    factory = ProviderFactory(logger)
    try:
        provider_type = config.get("provider", "type", default="local")
        provider = factory.create(provider_type, factory.options_from_config(config), config=config, shutdown=registry)
    except ProviderSetupError as exc:
        logger.error("Provider setup failed: %s", exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_SETUP

    def _run() -> int:
        try:
            _emit(run_command(provider, args))
        except ScanAlreadyInProgress as exc:
            logger.warning("%s", exc)
            print(f"ERROR: {exc}", file=sys.stderr)
            return EXIT_SCAN_BUSY
        except UnsupportedOperation as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return EXIT_UNSUPPORTED
        except (DuplicateTag, TagNotFound, MediaNotFound, RemoteCatalogError, ValueError) as exc:
            logger.error("%s failed: %s", args.command, exc)
            print(f"ERROR: {exc}", file=sys.stderr)
            return EXIT_FAILED
        return EXIT_OK

    return run_with_cleanup(registry, _run)


if __name__ == "__main__":
    raise SystemExit(main())
