"""Per-build state container.

A BuildSession is created once per build, after the build lock is taken and
the manifest is loaded, and handed to the planner. It owns the file-hash
memo, so nothing about one build leaks into the next.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from isgkit.hashing import FileHashCache

if TYPE_CHECKING:
    from isgkit.config import Settings
    from isgkit.models.cache import CacheManifest


@dataclass
class BuildSession:
    """Holds everything a build's rebuild decisions read and write."""

    settings: Settings
    manifest: CacheManifest
    hash_cache: FileHashCache = field(default_factory=FileHashCache)
    # Single reference instant for every decision of the build
    build_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    # Digest of the current navigation tree, if the orchestrator supplied one
    navigation_hash: str | None = None
