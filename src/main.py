"""
Script entry point: ``python src/main.py <command>``.

Installs crash diagnostics before handing over to the CLI so that hard faults
and uncaught exceptions (including those on worker threads) leave a traceback
under ``$MEDIA_BROWSER_CRASH_DIR`` (default ``logs``).
"""

import faulthandler
import os
import sys
import threading
import traceback
from datetime import datetime, timezone
from pathlib import Path

from app.main import main

CRASH_DIR_ENV = "MEDIA_BROWSER_CRASH_DIR"


def _install_crash_log(crash_dir: Path) -> Path:
    crash_dir.mkdir(parents=True, exist_ok=True)
    crash_log = crash_dir / f"media_browser_crash_{datetime.now(timezone.utc):%Y%m%d}.log"
    # faulthandler writes to the raw fd, so the stream stays open for the process lifetime.
    faulthandler.enable(file=crash_log.open("a", encoding="utf-8"), all_threads=True)

    def record(exc_type, exc, tb, origin: str) -> None:
        with crash_log.open("a", encoding="utf-8") as handle:
            handle.write(f"\n{datetime.now(timezone.utc).isoformat()} Unhandled exception in {origin}\n")
            traceback.print_exception(exc_type, exc, tb, file=handle)

    def main_hook(exc_type, exc, tb):
        record(exc_type, exc, tb, "main thread")
        sys.__excepthook__(exc_type, exc, tb)

    def thread_hook(args):
        name = args.thread.name if args.thread is not None else "unknown thread"
        record(args.exc_type, args.exc_value, args.exc_traceback, name)
        threading.__excepthook__(args)

    sys.excepthook = main_hook
    threading.excepthook = thread_hook
    return crash_log


if __name__ == "__main__":
    _install_crash_log(Path(os.environ.get(CRASH_DIR_ENV, "logs")))
    raise SystemExit(main())
