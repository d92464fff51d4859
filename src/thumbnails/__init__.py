"""
Thumbnail rendering package.
"""

from .renderer import DEFAULT_QUALITY, DEFAULT_SIZE, ThumbnailRenderer, ThumbnailResult

__all__ = ["DEFAULT_QUALITY", "DEFAULT_SIZE", "ThumbnailRenderer", "ThumbnailResult"]
