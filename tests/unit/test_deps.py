"""Unit tests for isgkit.deps."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from isgkit.config import Settings, SiteSettings
from isgkit.deps import (
    collect_dependencies,
    discover_layout,
    find_partial_dependencies,
    is_collection_index_page,
    parse_template_references,
    resolve_template_path,
    track_dependencies,
)
from isgkit.errors import CircularDependencyError, ErrorCode

# ---------------------------------------------------------------------------
# Reference parsing and resolution
# ---------------------------------------------------------------------------


class TestParseTemplateReferences:
    def test_eta_include(self) -> None:
        assert parse_template_references("<%~ include('header', { a: 1 }) %>") == ["header"]

    def test_eta_layout(self) -> None:
        assert parse_template_references("<% layout('base') %>") == ["base"]

    def test_jinja_statements(self) -> None:
        content = '{% extends "base.html" %}{% include "nav" %}{% import "macros" as m %}'
        assert parse_template_references(content) == ["base.html", "nav", "macros"]

    def test_plain_text_has_no_references(self) -> None:
        assert parse_template_references("<p>include('nothing')</p>") == []


class TestResolveTemplatePath:
    def test_resolves_from_root_first(self, site_dir: Path) -> None:
        (site_dir / "header.eta").write_text("root header")
        assert resolve_template_path("header", site_dir, ".eta") == site_dir / "header.eta"

    def test_falls_back_to_template_folders(self, site_dir: Path) -> None:
        assert (
            resolve_template_path("header", site_dir, ".eta")
            == site_dir / "_partials" / "header.eta"
        )

    def test_explicit_extension_kept(self, site_dir: Path) -> None:
        assert resolve_template_path("layout.eta", site_dir, ".eta") == site_dir / "layout.eta"

    def test_unknown_reference(self, site_dir: Path) -> None:
        assert resolve_template_path("missing", site_dir, ".eta") is None


# ---------------------------------------------------------------------------
# Layout and partial discovery
# ---------------------------------------------------------------------------


class TestDiscoverLayout:
    def test_nearest_layout_wins(self, site_dir: Path) -> None:
        (site_dir / "blog" / "layout.eta").write_text("blog layout")
        assert (
            discover_layout("blog/post.md", site_dir, ".eta") == site_dir / "blog" / "layout.eta"
        )

    def test_walks_up_to_root(self, site_dir: Path) -> None:
        assert discover_layout("blog/post.md", site_dir, ".eta") == site_dir / "layout.eta"

    def test_index_layout_only_for_index_pages(self, site_dir: Path) -> None:
        (site_dir / "blog" / "index.eta").write_text("blog index")
        assert (
            discover_layout("blog/index.md", site_dir, ".eta", is_index_page=True)
            == site_dir / "blog" / "index.eta"
        )
        assert discover_layout("blog/post.md", site_dir, ".eta") == site_dir / "layout.eta"

    def test_explicit_layout(self, site_dir: Path) -> None:
        (site_dir / "wide.eta").write_text("wide")
        assert (
            discover_layout("blog/post.md", site_dir, ".eta", explicit_layout="wide")
            == site_dir / "wide.eta"
        )

    def test_missing_explicit_layout_falls_back(self, site_dir: Path) -> None:
        assert (
            discover_layout("blog/post.md", site_dir, ".eta", explicit_layout="nope")
            == site_dir / "layout.eta"
        )

    def test_no_layout(self, tmp_path: Path) -> None:
        assert discover_layout("post.md", tmp_path, ".eta") is None


class TestFindPartialDependencies:
    def test_collects_partials_from_page_dir_and_ancestors(self, site_dir: Path) -> None:
        (site_dir / "blog" / "_components").mkdir()
        (site_dir / "blog" / "_components" / "card.eta").write_text("card")
        (site_dir / "_partials" / "nested").mkdir()
        (site_dir / "_partials" / "nested" / "footer.eta").write_text("footer")

        partials = find_partial_dependencies("blog/post.md", site_dir, ".eta")

        assert partials == [
            site_dir / "blog" / "_components" / "card.eta",
            site_dir / "_partials" / "header.eta",
            site_dir / "_partials" / "nested" / "footer.eta",
        ]

    def test_ignores_other_extensions(self, site_dir: Path) -> None:
        (site_dir / "_partials" / "notes.txt").write_text("notes")
        assert find_partial_dependencies("post.md", site_dir, ".eta") == [
            site_dir / "_partials" / "header.eta"
        ]


class TestIsCollectionIndexPage:
    def test_root_is_index(self, make_page) -> None:
        assert is_collection_index_page(make_page("/"))

    def test_index_slug(self, make_page) -> None:
        assert is_collection_index_page(make_page("/blog/index"))

    def test_regular_page(self, make_page) -> None:
        assert not is_collection_index_page(make_page("/blog/post"))


# ---------------------------------------------------------------------------
# track_dependencies
# ---------------------------------------------------------------------------


class TestTrackDependencies:
    def test_layout_and_included_partial(
        self, make_page, settings: Settings, site_dir: Path
    ) -> None:
        deps = track_dependencies(make_page(), settings)
        assert deps == [str(site_dir / "layout.eta"), str(site_dir / "_partials" / "header.eta")]

    def test_transitive_includes(self, make_page, settings: Settings, site_dir: Path) -> None:
        (site_dir / "_partials" / "header.eta").write_text("<%~ include('logo') %>")
        (site_dir / "_templates").mkdir()
        (site_dir / "_templates" / "logo.eta").write_text("<svg/>")

        deps = track_dependencies(make_page(), settings)

        assert str(site_dir / "_templates" / "logo.eta") in deps
        assert len(deps) == len(set(deps))

    def test_unresolved_reference_kept_as_expected_path(
        self, make_page, settings: Settings, site_dir: Path
    ) -> None:
        (site_dir / "layout.eta").write_text("<%~ include('sidebar') %>")
        deps = track_dependencies(make_page(), settings)
        assert str(site_dir / "sidebar.eta") in deps
        assert not (site_dir / "sidebar.eta").exists()

    def test_cycle_raises(self, make_page, settings: Settings, site_dir: Path) -> None:
        (site_dir / "layout.eta").write_text("<%~ include('a') %>")
        (site_dir / "a.eta").write_text("<%~ include('b') %>")
        (site_dir / "b.eta").write_text("<%~ include('a') %>")

        with pytest.raises(CircularDependencyError) as exc_info:
            track_dependencies(make_page(), settings)

        assert exc_info.value.code == ErrorCode.CIRCULAR_DEPENDENCY
        assert exc_info.value.chain[-1] == str(site_dir / "a.eta")
        assert "->" in exc_info.value.message

    def test_self_include_raises(self, make_page, settings: Settings, site_dir: Path) -> None:
        (site_dir / "layout.eta").write_text("<% layout('layout') %>")
        with pytest.raises(CircularDependencyError):
            track_dependencies(make_page(), settings)

    def test_diamond_is_not_a_cycle(self, make_page, settings: Settings, site_dir: Path) -> None:
        (site_dir / "layout.eta").write_text("<%~ include('a') %><%~ include('b') %>")
        (site_dir / "a.eta").write_text("<%~ include('shared') %>")
        (site_dir / "b.eta").write_text("<%~ include('shared') %>")
        (site_dir / "shared.eta").write_text("shared")

        deps = track_dependencies(make_page(), settings)

        assert deps.count(str(site_dir / "shared.eta")) == 1

    def test_empty_src_dir_returns_no_dependencies(self, make_page, settings: Settings) -> None:
        settings = settings.model_copy(update={"site": SiteSettings(src_dir="")})
        assert track_dependencies(make_page(), settings) == []


class TestCollectDependencies:
    def test_readable_templates_report_nothing_unreadable(
        self, make_page, settings: Settings
    ) -> None:
        result = collect_dependencies(make_page(), settings)
        assert result.paths == track_dependencies(make_page(), settings)
        assert result.unreadable == []

    def test_undecodable_template_reported(
        self, make_page, settings: Settings, site_dir: Path
    ) -> None:
        layout = site_dir / "layout.eta"
        layout.write_bytes(b"<html>\xff<%~ include('footer') %></html>")
        (site_dir / "footer.eta").write_text("<footer/>")

        with patch("isgkit.deps.log") as mock_log:
            result = collect_dependencies(make_page(), settings)

        assert result.unreadable == [str(layout)]
        assert str(layout) in result.paths
        assert str(site_dir / "footer.eta") not in result.paths
        mock_log.warning.assert_called_once()
        assert mock_log.warning.call_args.args[0] == "template_dependency_unreadable"

    def test_unreadable_included_template_reported(
        self, make_page, settings: Settings, site_dir: Path
    ) -> None:
        (site_dir / "layout.eta").write_text("<%~ include('broken') %>")
        broken = site_dir / "broken.eta"
        broken.write_bytes(b"\xfe\xff\xfe")

        result = collect_dependencies(make_page(), settings)

        assert result.unreadable == [str(broken)]

    def test_missing_template_is_not_unreadable(
        self, make_page, settings: Settings, site_dir: Path
    ) -> None:
        (site_dir / "layout.eta").write_text("<%~ include('sidebar') %>")
        result = collect_dependencies(make_page(), settings)
        assert str(site_dir / "sidebar.eta") in result.paths
        assert result.unreadable == []

    def test_empty_src_dir(self, make_page, settings: Settings) -> None:
        settings = settings.model_copy(update={"site": SiteSettings(src_dir="")})
        result = collect_dependencies(make_page(), settings)
        assert result.paths == []
        assert result.unreadable == []
