"""
Media discovery package.
"""

from .scanner import DEFAULT_TRUST_RATIO, DEFAULT_TRUST_SAMPLE_SIZE, DirectoryScanner

__all__ = ["DEFAULT_TRUST_RATIO", "DEFAULT_TRUST_SAMPLE_SIZE", "DirectoryScanner"]
