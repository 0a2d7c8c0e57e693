"""Content-addressed hashing for cache invalidation.

Every digest is ``"sha256-" + hexdigest``. Front matter is serialised as
canonical JSON (object keys sorted at every depth, array order kept, non-string
keys tagged with their type) so that semantically equal metadata always hashes
equally.
"""

from __future__ import annotations

import hashlib
import json
import threading
from collections.abc import Mapping
from datetime import date, datetime
from pathlib import Path, PurePath
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from isgkit.models.page import NavNode

HASH_PREFIX = "sha256-"


def _sha256_prefixed(*parts: str | bytes) -> str:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8") if isinstance(part, str) else part)
    return HASH_PREFIX + digest.hexdigest()


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, set | frozenset):
        return sorted(value, key=repr)
    if isinstance(value, PurePath):
        return value.as_posix()
    if isinstance(value, bytes):
        return value.hex()
    return repr(value)


def _canonical_key(key: Any) -> str:
    return f"{type(key).__name__}:{key}"


def _canonicalize(value: Any) -> Any:
    """Give every mapping string keys, tagging them with their type when any is not a string."""
    if isinstance(value, Mapping):
        if all(isinstance(key, str) for key in value):
            return {key: _canonicalize(item) for key, item in value.items()}
        return {_canonical_key(key): _canonicalize(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_canonicalize(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(
        _canonicalize(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def content_hash(content: str, front_matter: Mapping[str, Any]) -> str:
    """Digest of a page's raw content and its front matter."""
    return _sha256_prefixed(content, canonical_json(dict(front_matter)))


def file_hash(path: str | Path) -> str | None:
    """Digest of a file's bytes, or ``None`` if the file does not exist.

    Any other ``OSError`` (permissions, a directory in place of a file)
    propagates to the caller.
    """
    try:
        data = Path(path).read_bytes()
    except FileNotFoundError:
        return None
    return _sha256_prefixed(data)


def inputs_hash(content_digest: str, dep_digests: Iterable[str]) -> str:
    """Combine a content digest with dependency digests, independent of their order."""
    return _sha256_prefixed(content_digest, *sorted(dep_digests))


def navigation_hash(nodes: Sequence[NavNode]) -> str:
    """Digest of the navigation tree shape (titles, URLs and nesting)."""
    return _sha256_prefixed(canonical_json([_nav_shape(node) for node in nodes]))


def _nav_shape(node: NavNode) -> list[Any]:
    return [node.title, node.url, [_nav_shape(child) for child in node.children]]


def normalise_path(path: str | Path) -> str:
    """Cache key for a file path: forward slashes, case preserved."""
    return str(path).replace("\\", "/")


class FileHashCache:
    """Per-build memo of ``file_hash`` results.

    Owned by a single build and cleared at its start. Safe to share between
    worker threads: a path is hashed once even when several pages ask for it
    at the same time. Missing files are memoised as ``None``; read errors are
    not memoised.
    """

    def __init__(self) -> None:
        self._hashes: dict[str, str | None] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, path: str | Path) -> str | None:
        key = normalise_path(path)
        with self._lock:
            if key in self._hashes:
                return self._hashes[key]
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                if key in self._hashes:
                    return self._hashes[key]
            digest = file_hash(path)
            with self._lock:
                self._hashes[key] = digest
            return digest

    def clear(self) -> None:
        with self._lock:
            self._hashes.clear()
            self._key_locks.clear()

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str | Path):
            return False
        with self._lock:
            return normalise_path(path) in self._hashes

    def __len__(self) -> int:
        with self._lock:
            return len(self._hashes)
