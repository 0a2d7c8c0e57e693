"""Incremental build driver.

Runs one build cycle under the build lock:

  1. load the manifest (or start empty)
  2. decide, concurrently, which pages are stale
  3. render the stale pages through the caller's ``render`` callback
  4. record fresh cache entries and persist the manifest atomically

If ``render`` raises, the manifest is left untouched on disk and the lock is
released; the next build re-evaluates every page from the previous state.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from isgkit.builder import RebuildReason
from isgkit.config import Settings
from isgkit.hashing import navigation_hash
from isgkit.lock import BuildLock
from isgkit.manifest import create_empty_manifest, load_cache_manifest, save_cache_manifest
from isgkit.models.page import NavNode, PageModel
from isgkit.planner import plan_rebuilds, record_renders
from isgkit.state import BuildSession

log = structlog.get_logger()

RenderFn = Callable[[PageModel], Awaitable[None] | None]


@dataclass
class BuildResult:
    rendered: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    reasons: dict[str, RebuildReason] = field(default_factory=dict)
    navigation_changed: bool = False

    @property
    def total(self) -> int:
        return len(self.rendered) + len(self.cached)


async def run_incremental_build(
    pages: Sequence[PageModel],
    settings: Settings,
    render: RenderFn,
    *,
    navigation: Sequence[NavNode] | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> BuildResult:
    """Render only the stale pages of ``pages`` and update the manifest."""
    cache_dir = settings.cache_dir
    lock = BuildLock(cache_dir, settings=settings.lock)
    await asyncio.to_thread(lock.acquire)
    try:
        manifest = load_cache_manifest(cache_dir) or create_empty_manifest()
        session = BuildSession(
            settings=settings,
            manifest=manifest,
            build_time=now or datetime.now(UTC),
            navigation_hash=navigation_hash(navigation) if navigation is not None else None,
        )
        session.hash_cache.clear()

        plan = await plan_rebuilds(session, pages, force=force)
        result = BuildResult(navigation_changed=plan.navigation_changed)

        for verdict in plan.verdicts:
            result.reasons[verdict.output_path] = verdict.decision.reason
            if not verdict.rebuild:
                result.cached.append(verdict.output_path)
                continue
            outcome = render(verdict.page)
            if inspect.isawaitable(outcome):
                await outcome
            result.rendered.append(verdict.output_path)

        record_renders(session, plan.stale)
        save_cache_manifest(cache_dir, manifest)
    finally:
        lock.release()

    log.info(
        "build_complete",
        rendered=len(result.rendered),
        cached=len(result.cached),
        navigation_changed=result.navigation_changed,
    )
    return result
