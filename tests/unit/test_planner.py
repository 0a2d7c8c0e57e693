"""Unit tests for isgkit.planner."""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from isgkit.builder import RebuildDecision, RebuildReason, create_cache_entry
from isgkit.config import Settings
from isgkit.errors import CircularDependencyError
from isgkit.hashing import navigation_hash
from isgkit.manifest import create_empty_manifest
from isgkit.models.cache import CacheManifest
from isgkit.models.page import NavNode
from isgkit.planner import navigation_changed, plan_rebuilds, record_renders
from isgkit.state import BuildSession

NAV = [NavNode(title="Blog", url="/blog/")]


def _session(settings: Settings, manifest: CacheManifest, now: datetime, **kwargs) -> BuildSession:
    return BuildSession(settings=settings, manifest=manifest, build_time=now, **kwargs)


@pytest.fixture()
def pages(make_page) -> list:
    return [make_page(f"/blog/post-{i}") for i in range(6)]


class TestNavigationChanged:
    def test_no_current_hash(self) -> None:
        assert not navigation_changed(create_empty_manifest(), None)

    def test_empty_manifest(self) -> None:
        assert not navigation_changed(create_empty_manifest(), "sha256-nav")

    def test_differs(self, make_page, settings: Settings, build_time: datetime) -> None:
        manifest = create_empty_manifest()
        manifest.entries["/a.html"] = create_cache_entry(make_page("/a"), settings, build_time)
        manifest.navigation_hash = "sha256-old"
        assert navigation_changed(manifest, "sha256-new")
        assert not navigation_changed(manifest, "sha256-old")


class TestPlanRebuilds:
    async def test_cold_cache_rebuilds_everything(
        self, pages: list, settings: Settings, build_time: datetime
    ) -> None:
        plan = await plan_rebuilds(_session(settings, create_empty_manifest(), build_time), pages)
        assert len(plan.stale) == len(pages)
        assert plan.cached == []
        assert {v.decision.reason for v in plan.verdicts} == {RebuildReason.NO_CACHE_ENTRY}

    async def test_verdicts_keep_page_order(
        self, pages: list, settings: Settings, build_time: datetime
    ) -> None:
        plan = await plan_rebuilds(_session(settings, create_empty_manifest(), build_time), pages)
        assert [v.page.url for v in plan.verdicts] == [page.url for page in pages]
        assert plan.verdicts[0].output_path == "/blog/post-0.html"

    async def test_only_changed_pages_rebuild(
        self, pages: list, make_page, settings: Settings, build_time: datetime
    ) -> None:
        session = _session(settings, create_empty_manifest(), build_time)
        record_renders(session, pages)

        edited = [*pages[:-1], make_page(pages[-1].url, content="Edited.")]
        later = _session(settings, session.manifest, build_time + timedelta(minutes=1))
        plan = await plan_rebuilds(later, edited)

        assert [page.url for page in plan.stale] == [pages[-1].url]
        assert len(plan.cached) == len(pages) - 1

    async def test_force(self, pages: list, settings: Settings, build_time: datetime) -> None:
        session = _session(settings, create_empty_manifest(), build_time)
        record_renders(session, pages)
        plan = await plan_rebuilds(session, pages, force=True)
        assert len(plan.stale) == len(pages)
        assert {v.decision.reason for v in plan.verdicts} == {RebuildReason.FORCED}

    async def test_navigation_change_rebuilds_everything(
        self, pages: list, settings: Settings, build_time: datetime
    ) -> None:
        session = _session(
            settings, create_empty_manifest(), build_time, navigation_hash="sha256-a"
        )
        record_renders(session, pages)

        changed = _session(
            settings, session.manifest, build_time, navigation_hash=navigation_hash(NAV)
        )
        plan = await plan_rebuilds(changed, pages)

        assert plan.navigation_changed is True
        assert {v.decision.reason for v in plan.verdicts} == {RebuildReason.NAVIGATION_CHANGED}

    async def test_circular_dependency_propagates(
        self, pages: list, settings: Settings, site_dir: Path, build_time: datetime
    ) -> None:
        session = _session(settings, create_empty_manifest(), build_time)
        record_renders(session, pages)
        (site_dir / "layout.eta").write_text("<% layout('layout') %>")

        with pytest.raises(CircularDependencyError):
            await plan_rebuilds(session, pages)

    async def test_failing_check_waits_for_the_others(
        self, pages: list, settings: Settings, build_time: datetime
    ) -> None:
        session = _session(settings, create_empty_manifest(), build_time)
        finished: list[str] = []

        def check(page, entry, settings, now, *, hash_cache=None) -> RebuildDecision:
            if page.url == pages[0].url:
                raise CircularDependencyError(["layout.eta", "layout.eta"])
            time.sleep(0.05)
            finished.append(page.url)
            return RebuildDecision(True, RebuildReason.NO_CACHE_ENTRY)

        with (
            patch("isgkit.planner.evaluate_rebuild", side_effect=check),
            pytest.raises(CircularDependencyError),
        ):
            await plan_rebuilds(session, pages)

        assert sorted(finished) == sorted(page.url for page in pages[1:])

    async def test_shared_templates_hashed_once(
        self, pages: list, settings: Settings, site_dir: Path, build_time: datetime
    ) -> None:
        session = _session(settings, create_empty_manifest(), build_time)
        record_renders(session, pages)
        session.hash_cache.clear()

        await plan_rebuilds(session, pages)

        assert len(session.hash_cache) == 2
        assert (site_dir / "layout.eta") in session.hash_cache


class TestRecordRenders:
    def test_creates_entries(self, pages: list, settings: Settings, build_time: datetime) -> None:
        session = _session(
            settings, create_empty_manifest(), build_time, navigation_hash="sha256-n"
        )
        record_renders(session, pages)
        assert sorted(session.manifest.entries) == sorted(f"{p.url}.html" for p in pages)
        assert session.manifest.navigation_hash == "sha256-n"

    def test_keeps_prior_publish_date(
        self, make_page, settings: Settings, build_time: datetime
    ) -> None:
        session = _session(settings, create_empty_manifest(), build_time)
        record_renders(session, [make_page(front_matter={"publishedAt": "2024-01-01"})])

        later = _session(settings, session.manifest, build_time + timedelta(days=1))
        record_renders(later, [make_page()])

        entry = later.manifest.entries["/blog/post.html"]
        assert entry.published_at == "2024-01-01T00:00:00.000Z"
        assert entry.rendered_at == "2024-06-02T12:00:00.000Z"

    def test_navigation_hash_untouched_without_current(
        self, make_page, settings: Settings, build_time: datetime
    ) -> None:
        manifest = CacheManifest(navigation_hash="sha256-keep")
        record_renders(_session(settings, manifest, build_time), [make_page()])
        assert manifest.navigation_hash == "sha256-keep"
