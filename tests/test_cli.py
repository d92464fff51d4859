import json
import logging
from pathlib import Path

import pytest
from PIL import Image

from app import main as cli
from utils import ScanLock
from providers.local import store_paths


@pytest.fixture
def quiet_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    logger = logging.getLogger("media_browser.cli_test")
    monkeypatch.setattr(cli, "setup_logging", lambda log_dir, level: {"main": logger, "performance": logger})
    monkeypatch.setattr(cli.ShutdownRegistry, "install", lambda self: None)
    monkeypatch.delenv("MEDIA_BROWSER_CONFIG", raising=False)


@pytest.fixture
def library(tmp_path: Path) -> Path:
    root = tmp_path / "library"
    (root / "album").mkdir(parents=True)
    Image.new("RGB", (120, 80), color=(10, 20, 30)).save(root / "album" / "a.jpg")
    Image.new("RGB", (80, 120), color=(30, 20, 10)).save(root / "album" / "b.png")
    return root


def run(capsys: pytest.CaptureFixture, *argv: str):
    code = cli.main(list(argv))
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


def test_stats_for_local_directory(quiet_cli, library: Path, capsys) -> None:
    code, payload = run(capsys, "-d", str(library), "stats")

    assert code == cli.EXIT_OK
    assert payload["provider"] == "local"
    assert payload["stats"]["total"] == 2
    assert payload["capabilities"]["can_rescan"] is True


def test_tag_then_list_by_tag(quiet_cli, library: Path, capsys) -> None:
    _, records = run(capsys, "-d", str(library), "list", "--sort", "date_added")
    target = next(record for record in records if record["path"].endswith("a.jpg"))
    assert target["label"] == "album"

    code, payload = run(capsys, "-d", str(library), "tag", target["content_id"], "keeper")
    assert code == cli.EXIT_OK
    assert payload == {"added": True}

    _, tagged = run(capsys, "-d", str(library), "list", "--include", "keeper")
    assert [record["content_id"] for record in tagged] == [target["content_id"]]

    _, tags = run(capsys, "-d", str(library), "tags")
    assert [tag["name"] for tag in tags] == ["keeper"]


def test_limit_and_filter(quiet_cli, library: Path, capsys) -> None:
    _, limited = run(capsys, "-d", str(library), "list", "--limit", "1")
    assert len(limited) == 1

    _, filtered = run(capsys, "-d", str(library), "list", "--filter", "b.png")
    assert [Path(record["path"]).name for record in filtered] == ["b.png"]


def test_missing_directory_is_setup_error(quiet_cli, tmp_path: Path, capsys) -> None:
    code = cli.main(["-d", str(tmp_path / "absent"), "stats"])

    assert code == cli.EXIT_SETUP
    assert "does not exist" in capsys.readouterr().err


def test_rescan_reports_busy_lock(quiet_cli, library: Path, capsys) -> None:
    run(capsys, "-d", str(library), "stats")
    other = ScanLock(store_paths(library.resolve())["lock"], owner_id="elsewhere")
    assert other.try_acquire()

    code = cli.main(["-d", str(library), "rescan"])

    assert code == cli.EXIT_SCAN_BUSY
    other.release()


def test_unknown_media_for_untag_is_harmless(quiet_cli, library: Path, capsys) -> None:
    code, payload = run(capsys, "-d", str(library), "untag", "missing-id", "1")

    assert code == cli.EXIT_OK
    assert payload == {"removed": False}


def test_config_file_supplies_directory(quiet_cli, library: Path, tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"local:\n  directory: {library}\npaths:\n  logs: logs\n", encoding="utf-8")

    code, payload = run(capsys, "--config", str(config_path), "stats")

    assert code == cli.EXIT_OK
    assert payload["stats"]["images"] == 2
