"""Rebuild decisions and cache-entry bookkeeping.

``evaluate_rebuild`` is the staleness oracle. Checks run in a fixed order and
the first match wins:

  1. no prior entry                          -> rebuild
  2. prior entry fails validation            -> rebuild
  3. a dependency is missing or unreadable   -> rebuild
  4. inputs hash differs                     -> rebuild
  5. entry is frozen (past its age cap)      -> keep
  6. ``now >= rendered_at + ttl``            -> rebuild, else keep

Any unexpected fault while checking yields "rebuild": a caching problem must
never preserve stale output. Circular template dependencies and invalid ISG
configuration are build defects and propagate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from isgkit.deps import collect_dependencies
from isgkit.errors import CircularDependencyError, ISGConfigurationError
from isgkit.hashing import content_hash, file_hash, inputs_hash
from isgkit.manifest import parse_cache_entry
from isgkit.models.cache import CacheEntry
from isgkit.ttl import (
    as_utc,
    compute_effective_ttl,
    format_timestamp,
    is_frozen,
    next_rebuild_at,
)
from isgkit.validation import validate_page_overrides

if TYPE_CHECKING:
    from collections.abc import Mapping

    from isgkit.config import Settings
    from isgkit.models.page import PageModel
    from isgkit.protocols import FileHasher

log = structlog.get_logger()


class RebuildReason(StrEnum):
    NO_CACHE_ENTRY = "no_cache_entry"
    INVALID_CACHE_ENTRY = "invalid_cache_entry"
    DEPENDENCY_ERROR = "dependency_error"
    INPUTS_CHANGED = "inputs_changed"
    FROZEN = "frozen"
    TTL_EXPIRED = "ttl_expired"
    FRESH = "fresh"
    INTERNAL_ERROR = "internal_error"
    ISG_DISABLED = "isg_disabled"
    NAVIGATION_CHANGED = "navigation_changed"
    FORCED = "forced"


@dataclass(frozen=True)
class RebuildDecision:
    rebuild: bool
    reason: RebuildReason


@dataclass
class PageInputs:
    """Current rendering inputs of a page."""

    inputs_hash: str
    deps: list[str]
    # Dependencies that could not be hashed or scanned for includes
    dependency_errors: list[str] = field(default_factory=list)


def output_path_for(page: PageModel) -> str:
    """Manifest key for a page: ``/`` -> ``/index.html``, ``/a/`` -> ``/a/index.html``."""
    if page.url == "/":
        return "/index.html"
    if page.url.endswith("/"):
        return f"{page.url}index.html"
    return f"{page.url}.html"


def compute_page_inputs(
    page: PageModel,
    settings: Settings,
    *,
    hash_cache: FileHasher | None = None,
) -> PageInputs:
    """Hash a page's content and all of its template dependencies."""
    content_digest = content_hash(page.content, page.front_matter)
    dependency_set = collect_dependencies(page, settings)
    deps = dependency_set.paths

    dep_digests: list[str] = []
    dependency_errors: list[str] = list(dependency_set.unreadable)
    for dep in deps:
        try:
            digest = hash_cache.get(dep) if hash_cache is not None else file_hash(dep)
        except OSError:
            log.warning("dependency_hash_failed", url=page.url, dependency=dep, exc_info=True)
            dependency_errors.append(dep)
            continue
        if digest is None:
            dependency_errors.append(dep)
        else:
            dep_digests.append(digest)

    return PageInputs(
        inputs_hash=inputs_hash(content_digest, dep_digests),
        deps=deps,
        dependency_errors=dependency_errors,
    )


def evaluate_rebuild(
    page: PageModel,
    entry: CacheEntry | Mapping[str, Any] | None,
    settings: Settings,
    now: datetime,
    *,
    hash_cache: FileHasher | None = None,
) -> RebuildDecision:
    """Decide whether ``page`` must be re-rendered, and why."""
    if not settings.isg.enabled:
        return RebuildDecision(True, RebuildReason.ISG_DISABLED)

    if entry is None:
        return RebuildDecision(True, RebuildReason.NO_CACHE_ENTRY)

    now = as_utc(now)
    output_path = output_path_for(page)

    try:
        cached = parse_cache_entry(entry, output_path)
        if cached is None:
            log.warning("rebuild_forced", reason="corrupted_cache_entry", url=page.url)
            return RebuildDecision(True, RebuildReason.INVALID_CACHE_ENTRY)

        inputs = compute_page_inputs(page, settings, hash_cache=hash_cache)
        if inputs.dependency_errors:
            log.warning(
                "rebuild_forced",
                reason="dependency_error",
                url=page.url,
                dependencies=inputs.dependency_errors,
            )
            return RebuildDecision(True, RebuildReason.DEPENDENCY_ERROR)

        if inputs.inputs_hash != cached.inputs_hash:
            return RebuildDecision(True, RebuildReason.INPUTS_CHANGED)

        if is_frozen(cached, now):
            return RebuildDecision(False, RebuildReason.FROZEN)

        rebuild_at = next_rebuild_at(cached, now)
        if rebuild_at is None:
            return RebuildDecision(False, RebuildReason.FROZEN)
        if now >= rebuild_at:
            return RebuildDecision(True, RebuildReason.TTL_EXPIRED)
        return RebuildDecision(False, RebuildReason.FRESH)
    except (CircularDependencyError, ISGConfigurationError):
        raise
    except Exception:
        log.warning("rebuild_check_failed", url=page.url, path=output_path, exc_info=True)
        return RebuildDecision(True, RebuildReason.INTERNAL_ERROR)


def should_rebuild_page(
    page: PageModel,
    entry: CacheEntry | Mapping[str, Any] | None,
    settings: Settings,
    now: datetime,
    *,
    hash_cache: FileHasher | None = None,
) -> bool:
    """True when ``page`` must be rendered again."""
    return evaluate_rebuild(page, entry, settings, now, hash_cache=hash_cache).rebuild


def create_cache_entry(
    page: PageModel,
    settings: Settings,
    rendered_at: datetime,
    *,
    hash_cache: FileHasher | None = None,
) -> CacheEntry:
    """Build the cache entry for a page that was just rendered.

    Raises ``ISGConfigurationError`` when the page's front-matter overrides
    are invalid.
    """
    validate_page_overrides(page.front_matter, page.source_path, settings.isg)
    rendered_at = as_utc(rendered_at)

    inputs = compute_page_inputs(page, settings, hash_cache=hash_cache)
    if inputs.dependency_errors:
        log.debug(
            "cache_entry_incomplete_dependencies",
            url=page.url,
            dependencies=inputs.dependency_errors,
        )

    meta = page.meta
    max_age_cap_days = (
        meta.max_age_cap_days
        if meta.max_age_cap_days is not None
        else settings.isg.max_age_cap_days
    )

    return CacheEntry(
        path=output_path_for(page),
        inputs_hash=inputs.inputs_hash,
        deps=inputs.deps,
        tags=list(meta.tags),
        published_at=format_timestamp(meta.published_at) if meta.published_at else None,
        rendered_at=format_timestamp(rendered_at),
        ttl_seconds=compute_effective_ttl(page, settings.isg, rendered_at),
        max_age_cap_days=max_age_cap_days,
    )


def update_cache_entry(
    prior: CacheEntry,
    page: PageModel,
    settings: Settings,
    rendered_at: datetime,
    *,
    hash_cache: FileHasher | None = None,
) -> CacheEntry:
    """Rebuild an entry after re-rendering, keeping the prior publish date if none is given."""
    entry = create_cache_entry(page, settings, rendered_at, hash_cache=hash_cache)
    if entry.published_at is None and prior.published_at is not None:
        entry = entry.model_copy(update={"published_at": prior.published_at})
    return entry

