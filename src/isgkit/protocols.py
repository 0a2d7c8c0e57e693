"""Protocol interfaces for swappable components.

The decision engine references these protocols, not the concrete
implementations, so tests can count or fake file hashing without touching
the filesystem.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from pathlib import Path


class FileHasher(Protocol):
    """Per-build source of dependency file digests."""

    def get(self, path: str | Path) -> str | None: ...

    def clear(self) -> None: ...
