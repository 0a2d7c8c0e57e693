"""Manual cache invalidation.

Query grammar: whitespace-separated terms, quoted with ``'`` or ``"`` to keep
spaces. A term is either a bare substring or ``type:value``:

  tag:<name>     entry carries exactly this tag
  path:<prefix>  output path equals or starts with the value
  glob:<pattern> output path matches (``*`` within a segment, ``**`` across
                 segments, ``?``, ``[...]``)
  <text>         text appears in any tag or in the output path

Terms are OR-combined. An empty query clears the whole manifest. Unknown
term types never match.
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from isgkit.config import Settings
from isgkit.lock import build_lock
from isgkit.manifest import load_cache_manifest, save_cache_manifest
from isgkit.models.cache import InvalidationResult

if TYPE_CHECKING:
    from isgkit.models.cache import CacheEntry, CacheManifest

log = structlog.get_logger()


def parse_invalidation_query(query: str) -> list[str]:
    """Split a query into terms, honouring single and double quotes.

    ``'"tag:my tag" path:/posts'`` -> ``["tag:my tag", "path:/posts"]``
    """
    terms: list[str] = []
    current: list[str] = []
    quote: str | None = None

    for char in query:
        if char in "\"'":
            if quote is None:
                quote = char
                continue
            if char == quote:
                quote = None
                continue
            current.append(char)
        elif char.isspace() and quote is None:
            if "".join(current).strip():
                terms.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    if "".join(current).strip():
        terms.append("".join(current).strip())

    return terms


def matches_invalidation_term(entry: CacheEntry, path: str, term: str) -> bool:
    """True when the cache entry stored under ``path`` matches one query term."""
    if ":" not in term:
        return any(term in tag for tag in entry.tags) or term in path

    term_type, _, value = term.partition(":")
    if not term_type or not value:
        return False

    match term_type.lower():
        case "tag":
            return value in entry.tags
        case "path":
            return path.startswith(value)
        case "glob":
            return matches_glob(path, value)
        case _:
            log.warning("invalidation_unknown_term_type", term_type=term_type, term=term)
            return False


def matches_glob(path: str, pattern: str) -> bool:
    try:
        regex = _compile_glob(pattern)
    except re.error:
        log.warning("invalidation_invalid_glob", pattern=pattern)
        return False
    return regex.fullmatch(path) is not None


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    i = 0
    length = len(pattern)
    while i < length:
        char = pattern[i]
        if char == "*":
            if pattern.startswith("**", i):
                at_segment_start = i == 0 or pattern[i - 1] == "/"
                i += 2
                if at_segment_start and i < length and pattern[i] == "/":
                    # "**/" -> zero or more whole segments
                    parts.append("(?:[^/]*/)*")
                    i += 1
                elif at_segment_start and i == length and parts:
                    # trailing "/**" -> the directory itself or anything below it
                    parts[-1] = parts[-1].removesuffix("/")
                    parts.append("(?:/.*)?")
                else:
                    parts.append(".*")
                continue
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "[":
            end = pattern.find("]", i + 2 if pattern[i + 1 : i + 2] in ("!", "^") else i + 1)
            if end == -1:
                parts.append(re.escape(char))
            else:
                body = pattern[i + 1 : end]
                negate = body[:1] in ("!", "^")
                if negate:
                    body = body[1:]
                body = body.replace("\\", "\\\\")
                parts.append(f"[{'^' if negate else ''}{body}]")
                i = end
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts))


def invalidate_manifest(manifest: CacheManifest, query: str | None = None) -> InvalidationResult:
    """Remove matching entries from an in-memory manifest."""
    if query is None or not query.strip():
        invalidated_paths = list(manifest.entries)
        manifest.entries.clear()
        return InvalidationResult(
            invalidated_count=len(invalidated_paths),
            invalidated_paths=invalidated_paths,
            cleared_all=True,
        )

    terms = parse_invalidation_query(query.strip())
    invalidated_paths = [
        path
        for path, entry in manifest.entries.items()
        if any(matches_invalidation_term(entry, path, term) for term in terms)
    ]
    for path in invalidated_paths:
        del manifest.entries[path]

    return InvalidationResult(
        invalidated_count=len(invalidated_paths),
        invalidated_paths=invalidated_paths,
        cleared_all=False,
    )


def invalidate(
    query: str | None = None,
    *,
    cache_dir: str | Path | None = None,
    settings: Settings | None = None,
) -> InvalidationResult:
    """Invalidate entries of the on-disk manifest, under the build lock.

    ``cache_dir`` defaults to the configured cache directory.
    """
    if settings is None:
        settings = Settings()
    directory = Path(cache_dir) if cache_dir is not None else settings.cache_dir

    with build_lock(directory, settings=settings.lock):
        manifest = load_cache_manifest(directory)
        if manifest is None:
            log.info("invalidation_skipped", reason="no_manifest", cache_dir=str(directory))
            return InvalidationResult(invalidated_count=0, invalidated_paths=[], cleared_all=False)

        result = invalidate_manifest(manifest, query)
        save_cache_manifest(directory, manifest)

    log.info(
        "cache_invalidated",
        query=query,
        invalidated=result.invalidated_count,
        cleared_all=result.cleared_all,
    )
    return result
