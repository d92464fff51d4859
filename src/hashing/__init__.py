"""
Content identity helpers.
"""

from .hasher import SAMPLE_BYTES, ContentHasher, compute_content_id

__all__ = ["SAMPLE_BYTES", "ContentHasher", "compute_content_id"]
