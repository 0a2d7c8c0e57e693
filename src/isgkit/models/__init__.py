from __future__ import annotations

from isgkit.models.cache import CacheEntry, CacheManifest, InvalidationResult
from isgkit.models.page import FrontMatter, NavNode, PageModel

__all__ = [
    # cache
    "CacheEntry",
    "CacheManifest",
    "InvalidationResult",
    # pages
    "PageModel",
    "FrontMatter",
    "NavNode",
]
