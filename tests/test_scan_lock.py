import json
from pathlib import Path

import pytest

from utils import ScanAlreadyInProgress, ScanLock


class FakeTime:
    def __init__(self, value: float = 1_000_000.0) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value


def test_lock_is_exclusive_between_owners(tmp_path: Path) -> None:
    lock_path = tmp_path / ".scan.lock"
    first = ScanLock(lock_path, owner_id="one")
    second = ScanLock(lock_path, owner_id="two")

    assert first.try_acquire() is True
    assert second.try_acquire() is False
    assert second.is_locked() is True

    second.release()
    assert lock_path.exists()

    first.release()
    assert not lock_path.exists()
    assert second.try_acquire() is True
    second.release()


def test_lock_marker_records_owner_and_directory(tmp_path: Path) -> None:
    lock_path = tmp_path / ".scan.lock"
    lock = ScanLock(lock_path, directory=tmp_path / "media", owner_id="me", clock=FakeTime(42.0))
    lock.try_acquire()

    payload = json.loads(lock_path.read_text(encoding="utf-8"))
    assert payload["owner"] == "me"
    assert payload["timestamp"] == 42.0
    assert payload["directory"] == str(tmp_path / "media")
    assert isinstance(payload["pid"], int)
    lock.release()


def test_stale_lock_is_taken_over(tmp_path: Path) -> None:
    lock_path = tmp_path / ".scan.lock"
    clock = FakeTime()
    crashed = ScanLock(lock_path, owner_id="crashed", clock=clock)
    assert crashed.try_acquire() is True

    clock.value += 301
    successor = ScanLock(lock_path, owner_id="next", clock=clock)
    assert successor.is_locked() is False
    assert not lock_path.exists()
    assert successor.try_acquire() is True
    successor.release()


def test_corrupt_lock_is_removed(tmp_path: Path) -> None:
    lock_path = tmp_path / ".scan.lock"
    lock_path.write_text("{not json", encoding="utf-8")
    lock = ScanLock(lock_path)

    assert lock.is_locked() is False
    assert not lock_path.exists()


def test_hold_releases_on_error_and_reports_contention(tmp_path: Path) -> None:
    lock_path = tmp_path / ".scan.lock"
    lock = ScanLock(lock_path, owner_id="worker")

    with pytest.raises(RuntimeError, match="boom"):
        with lock.hold():
            assert lock_path.exists()
            raise RuntimeError("boom")
    assert not lock_path.exists()

    other = ScanLock(lock_path, owner_id="other")
    with other.hold():
        with pytest.raises(ScanAlreadyInProgress):
            with lock.hold():
                pass
    assert not lock_path.exists()
