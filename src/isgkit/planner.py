"""Batch rebuild planning.

Staleness checks only read the manifest, so they run concurrently in worker
threads. The manifest is mutated afterwards, by ``record_renders``, once
every decision of the batch is known.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from isgkit.builder import (
    RebuildDecision,
    RebuildReason,
    create_cache_entry,
    evaluate_rebuild,
    output_path_for,
    update_cache_entry,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from isgkit.models.cache import CacheManifest
    from isgkit.models.page import PageModel
    from isgkit.state import BuildSession

log = structlog.get_logger()


@dataclass(frozen=True)
class PageVerdict:
    page: PageModel
    output_path: str
    decision: RebuildDecision

    @property
    def rebuild(self) -> bool:
        return self.decision.rebuild


@dataclass
class RebuildPlan:
    verdicts: list[PageVerdict]
    navigation_changed: bool = False

    @property
    def stale(self) -> list[PageModel]:
        return [verdict.page for verdict in self.verdicts if verdict.rebuild]

    @property
    def cached(self) -> list[PageModel]:
        return [verdict.page for verdict in self.verdicts if not verdict.rebuild]


def navigation_changed(manifest: CacheManifest, current_hash: str | None) -> bool:
    """True when the navigation tree differs from the one the cached pages saw.

    A manifest without a recorded hash but with entries counts as changed:
    there is no way to tell what those pages were rendered with.
    """
    if current_hash is None or not manifest.entries:
        return False
    return manifest.navigation_hash != current_hash


async def plan_rebuilds(
    session: BuildSession,
    pages: Sequence[PageModel],
    *,
    force: bool = False,
) -> RebuildPlan:
    """Decide, for every page, whether it must be rendered in this build."""
    nav_changed = navigation_changed(session.manifest, session.navigation_hash)

    if force or nav_changed:
        reason = RebuildReason.FORCED if force else RebuildReason.NAVIGATION_CHANGED
        if nav_changed:
            log.info("navigation_changed", pages=len(pages))
        verdicts = [
            PageVerdict(page, output_path_for(page), RebuildDecision(True, reason))
            for page in pages
        ]
        return RebuildPlan(verdicts=verdicts, navigation_changed=nav_changed)

    semaphore = asyncio.Semaphore(max(1, session.settings.cache.hash_workers))
    entries = session.manifest.entries

    async def _check(page: PageModel) -> PageVerdict:
        output_path = output_path_for(page)
        async with semaphore:
            decision = await asyncio.to_thread(
                evaluate_rebuild,
                page,
                entries.get(output_path),
                session.settings,
                session.build_time,
                hash_cache=session.hash_cache,
            )
        log.debug("page_checked", url=page.url, rebuild=decision.rebuild, reason=decision.reason)
        return PageVerdict(page, output_path, decision)

    # Worker threads cannot be cancelled; let every check finish before raising
    results = await asyncio.gather(*(_check(page) for page in pages), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    plan = RebuildPlan(verdicts=list(results))
    log.info("rebuild_planned", pages=len(pages), stale=len(plan.stale), cached=len(plan.cached))
    return plan


def record_renders(session: BuildSession, rendered: Sequence[PageModel]) -> None:
    """Write fresh cache entries for pages rendered in this build."""
    entries = session.manifest.entries
    for page in rendered:
        output_path = output_path_for(page)
        prior = entries.get(output_path)
        if prior is not None:
            entries[output_path] = update_cache_entry(
                prior, page, session.settings, session.build_time, hash_cache=session.hash_cache
            )
        else:
            entries[output_path] = create_cache_entry(
                page, session.settings, session.build_time, hash_cache=session.hash_cache
            )

    if session.navigation_hash is not None:
        session.manifest.navigation_hash = session.navigation_hash
