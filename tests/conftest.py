"""Shared test fixtures for the isgkit test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from isgkit.config import CacheSettings, IsgSettings, LockSettings, Settings, SiteSettings
from isgkit.models.page import PageModel

BUILD_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

PageFactory = Callable[..., PageModel]


@pytest.fixture()
def build_time() -> datetime:
    return BUILD_TIME


@pytest.fixture()
def site_dir(tmp_path: Path) -> Path:
    """A small source tree: a root layout that includes a header partial."""
    src = tmp_path / "site"
    (src / "_partials").mkdir(parents=True)
    (src / "blog").mkdir()
    (src / "layout.eta").write_text("<html><%~ include('header') %><%~ it.body %></html>")
    (src / "_partials" / "header.eta").write_text("<header>Site</header>")
    return src


@pytest.fixture()
def settings(tmp_path: Path, site_dir: Path) -> Settings:
    return Settings(
        site=SiteSettings(src_dir=str(site_dir)),
        cache=CacheSettings(dir=str(tmp_path / ".isgkit"), hash_workers=4),
        lock=LockSettings(timeout_seconds=2.0, poll_interval_seconds=0.01),
        isg=IsgSettings(ttl_seconds=3600),
    )


@pytest.fixture()
def make_page(site_dir: Path) -> PageFactory:
    """Build a PageModel whose source file lives under the site directory."""

    def _make(
        url: str = "/blog/post",
        *,
        content: str = "Hello, world.",
        front_matter: dict[str, Any] | None = None,
        source: str | None = None,
    ) -> PageModel:
        relative = source or (url.strip("/") or "index") + ".md"
        return PageModel(
            slug=Path(relative).stem,
            url=url,
            source_path=str(site_dir / relative),
            content=content,
            front_matter=front_matter or {},
        )

    return _make
