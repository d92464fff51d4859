"""
Thumbnail rendering for images (Pillow) and videos (ffmpeg first frame).
"""

from __future__ import annotations

import io
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from utils.media_types import KIND_VIDEO, classify_path

DEFAULT_SIZE = 250
DEFAULT_QUALITY = 80
VIDEO_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class ThumbnailResult:
    """Rendered thumbnail location and pixel size."""

    path: Path
    width: int
    height: int


class ThumbnailRenderer:
    """Render ``<thumbnail_dir>/<content_id>.webp`` previews, returning None on failure."""

    def __init__(
        self,
        thumbnail_dir: Path,
        size: int = DEFAULT_SIZE,
        quality: int = DEFAULT_QUALITY,
        ffmpeg_binary: str = "ffmpeg",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.thumbnail_dir = Path(thumbnail_dir)
        self.size = int(size)
        self.quality = int(quality)
        self.ffmpeg_binary = ffmpeg_binary
        self.logger = logger or logging.getLogger("media_browser")

    def output_path(self, content_id: str) -> Path:
        return self.thumbnail_dir / f"{content_id}.webp"

    def render(self, source: Path | str, content_id: str) -> Optional[ThumbnailResult]:
        source = Path(source)
        self.thumbnail_dir.mkdir(parents=True, exist_ok=True)
        if classify_path(source) == KIND_VIDEO:
            return self._render_video(source, content_id)
        return self._render_image(source, content_id)

    def _render_image(self, source: Path, content_id: str) -> Optional[ThumbnailResult]:
        try:
            with Image.open(source) as img:
                img.seek(0)
                return self._save(img, content_id)
        except (OSError, UnidentifiedImageError, ValueError) as exc:
            self.logger.warning("Image thumbnail failed for %s: %s", source, exc)
            return None

    def _render_video(self, source: Path, content_id: str) -> Optional[ThumbnailResult]:
        if shutil.which(self.ffmpeg_binary) is None:
            self.logger.warning("ffmpeg not available; skipping video thumbnail for %s", source)
            return None
        try:
            result = subprocess.run(
                [
                    self.ffmpeg_binary,
                    "-v",
                    "error",
                    "-i",
                    str(source),
                    "-frames:v",
                    "1",
                    "-f",
                    "image2pipe",
                    "-vcodec",
                    "png",
                    "-",
                ],
                capture_output=True,
                check=False,
                timeout=VIDEO_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            self.logger.warning("Video thumbnail failed for %s: %s", source, exc)
            return None
        if result.returncode != 0 or not result.stdout:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            self.logger.warning("ffmpeg could not extract a frame from %s: %s", source, stderr or "no output")
            return None
        try:
            with Image.open(io.BytesIO(result.stdout)) as frame:
                return self._save(frame, content_id)
        except (OSError, UnidentifiedImageError, ValueError) as exc:
            self.logger.warning("Video frame decode failed for %s: %s", source, exc)
            return None

    def _save(self, img: Image.Image, content_id: str) -> ThumbnailResult:
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        else:
            img = img.copy()
        # thumbnail() keeps aspect ratio and never enlarges.
        img.thumbnail((self.size, self.size))
        output = self.output_path(content_id)
        img.save(output, format="WEBP", quality=self.quality)
        width, height = img.size
        return ThumbnailResult(path=output, width=int(width), height=int(height))
