"""Shared utilities for transitjax.

Provides bounds-checked views over caller-owned array buffers.
"""

from transitjax.utils._buffers import FlatView, output_view, require_common_dtype

__all__ = [
    "FlatView",
    "output_view",
    "require_common_dtype",
]
