"""Cache manifest persistence.

The manifest is one JSON document under the cache directory. Loading never
raises: a missing file is a cold start, and an unreadable, corrupt or
wrongly shaped file is logged and treated the same way. Individual entries
that fail validation are dropped. Saving replaces the file atomically.
"""

from __future__ import annotations

import json
import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from isgkit.config import MANIFEST_FILENAME
from isgkit.models.cache import CacheEntry, CacheManifest

log = structlog.get_logger()


def manifest_path(cache_dir: str | Path) -> Path:
    return Path(cache_dir) / MANIFEST_FILENAME


def create_empty_manifest() -> CacheManifest:
    return CacheManifest()


def load_cache_manifest(cache_dir: str | Path) -> CacheManifest | None:
    """Load the manifest from ``cache_dir``, or ``None`` when there is nothing usable."""
    path = manifest_path(cache_dir)

    try:
        raw_text = path.read_text(encoding="utf-8")
    except (FileNotFoundError, NotADirectoryError):
        log.debug("cache_manifest_missing", path=str(path))
        return None
    except (OSError, UnicodeDecodeError):
        log.warning("cache_manifest_unreadable", path=str(path), exc_info=True)
        return None

    if not raw_text.strip():
        log.warning("cache_manifest_invalid", reason="empty", path=str(path))
        return None

    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        log.warning("cache_manifest_invalid", reason="invalid_json", path=str(path), error=str(exc))
        return None

    if not isinstance(data, dict):
        log.warning("cache_manifest_invalid", reason="not_an_object", path=str(path))
        return None

    raw_entries = data.get("entries")
    if not isinstance(raw_entries, dict):
        log.warning("cache_manifest_invalid", reason="entries_not_an_object", path=str(path))
        return None

    entries: dict[str, CacheEntry] = {}
    for output_path, raw_entry in raw_entries.items():
        entry = parse_cache_entry(raw_entry, output_path)
        if entry is not None:
            entries[output_path] = entry

    dropped = len(raw_entries) - len(entries)
    if dropped:
        log.warning("cache_manifest_entries_dropped", count=dropped, path=str(path))

    navigation_hash = data.get("navigationHash")
    if navigation_hash is not None and not isinstance(navigation_hash, str):
        log.warning("cache_manifest_navigation_hash_invalid", path=str(path))
        navigation_hash = None

    log.debug("cache_manifest_loaded", entries=len(entries), path=str(path))
    return CacheManifest(entries=entries, navigation_hash=navigation_hash)


def parse_cache_entry(raw: Any, output_path: str) -> CacheEntry | None:
    """Validate one raw manifest entry. Returns ``None`` (and logs) when it is unusable."""
    if isinstance(raw, CacheEntry):
        # Re-check instances too; they may have been built or mutated unvalidated
        raw = raw.model_dump(by_alias=True)
    if not isinstance(raw, dict):
        log.warning("cache_entry_invalid", path=output_path, reason="not_an_object")
        return None
    try:
        return CacheEntry.model_validate(raw)
    except ValidationError as exc:
        log.warning(
            "cache_entry_invalid",
            path=output_path,
            reason="schema",
            errors=[
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            ],
        )
        return None


def save_cache_manifest(cache_dir: str | Path, manifest: CacheManifest) -> None:
    """Persist the whole manifest with atomic replace semantics."""
    path = manifest_path(cache_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(manifest.to_json_dict(), indent=2, ensure_ascii=False).encode("utf-8")
    tmp_path = path.with_suffix(path.suffix + ".tmp")

    try:
        _write_bytes_fsync(tmp_path, payload)
        os.replace(tmp_path, path)
        _fsync_directory(path.parent)
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)

    log.debug("cache_manifest_saved", entries=len(manifest.entries), path=str(path))


def _write_bytes_fsync(path: Path, data: bytes) -> None:
    with path.open("wb") as file_obj:
        file_obj.write(data)
        file_obj.flush()
        os.fsync(file_obj.fileno())


def _fsync_directory(path: Path) -> None:
    if sys.platform == "win32":
        return  # Windows does not support fsync on directory handles
    directory_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(directory_fd)
    finally:
        os.close(directory_fd)
