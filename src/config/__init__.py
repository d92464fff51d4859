"""
Configuration package for the media browser.
"""

from .settings import AppConfig, ensure_directories, locate_config

__all__ = ["AppConfig", "ensure_directories", "locate_config"]
