"""Template dependency tracking.

A page depends on its resolved layout, on every partial visible from its
directory (``_*/**/*<ext>`` in the page directory and each ancestor up to the
source root) and on everything those templates include or extend,
transitively. The walk fails loudly on cycles and degrades conservatively on
I/O problems: a reference that cannot be resolved stays in the dependency list,
so hashing reports it missing, and a template whose includes cannot be read is
reported as unreadable. Either way the page is rebuilt.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import structlog

from isgkit.errors import CircularDependencyError

if TYPE_CHECKING:
    from isgkit.config import Settings
    from isgkit.models.page import PageModel

log = structlog.get_logger()

_REFERENCE_PATTERNS = (
    # Eta: <%~ include('partials/header') %>, optionally with data arguments
    re.compile(r"<%[~-]?\s*include\s*\(\s*['\"`]([^'\"`]+)['\"`]\s*[,)]"),
    # Eta: <% layout('base') %>, extends('base')
    re.compile(r"<%[~-]?\s*(?:layout|extends?)\s*\(\s*['\"`]([^'\"`]+)['\"`]\s*[,)]"),
    # Jinja-style: {% include "x" %}, {% extends "x" %}, {% import "x" as y %}
    re.compile(r"\{%-?\s*(?:include|extends|import|from)\s+['\"]([^'\"]+)['\"]"),
)

_TEMPLATE_DIRS = ("_templates", "_partials", "_layouts")


@dataclass
class DependencySet:
    """Template paths a page renders with, plus those whose includes are unknown."""

    paths: list[str] = field(default_factory=list)
    # Templates or directories that could not be read, so the set may be incomplete
    unreadable: list[str] = field(default_factory=list)


def track_dependencies(page: PageModel, settings: Settings) -> list[str]:
    """Return the absolute template paths ``page`` renders with.

    Raises ``CircularDependencyError`` when templates include each other in a
    loop.
    """
    return collect_dependencies(page, settings).paths


def collect_dependencies(page: PageModel, settings: Settings) -> DependencySet:
    """Like ``track_dependencies``, also reporting templates that could not be read."""
    if not settings.site.src_dir:
        log.warning("dependency_tracking_skipped", reason="src_dir_missing", url=page.url)
        return DependencySet()

    src_dir = settings.src_dir
    ext = settings.site.template_extension
    page_path = _relative_page_path(page.source_path, src_dir)
    unreadable: list[Path] = []

    roots: list[Path] = []
    layout = discover_layout(
        page_path,
        src_dir,
        ext,
        explicit_layout=page.meta.layout,
        is_index_page=is_collection_index_page(page),
    )
    if layout is not None:
        roots.append(layout)
    roots.extend(find_partial_dependencies(page_path, src_dir, ext, unreadable=unreadable))

    found: list[Path] = []
    visited: set[Path] = set()
    for root in roots:
        found.append(root)
        _walk_references(root, src_dir, ext, visited, [], found, unreadable)

    return DependencySet(
        paths=list(dict.fromkeys(str(path) for path in found)),
        unreadable=list(dict.fromkeys(str(path) for path in unreadable)),
    )


def is_collection_index_page(page: PageModel) -> bool:
    """Index pages (the root, ``*/index``) may use an ``index`` layout."""
    if page.url == "/":
        return True
    return page.url.endswith("/index") or page.slug == "index"


def discover_layout(
    page_path: str,
    src_dir: Path,
    ext: str,
    *,
    explicit_layout: str | None = None,
    is_index_page: bool = False,
) -> Path | None:
    """Find the layout for a page, given its path relative to ``src_dir``.

    An explicit layout that exists wins. Otherwise each directory from the
    page's own up to the root is searched for ``index<ext>`` (index pages
    only), then ``layout<ext>``.
    """
    if explicit_layout:
        candidate = src_dir / _with_extension(explicit_layout, ext)
        if candidate.is_file():
            return candidate
        log.debug("explicit_layout_missing", layout=explicit_layout, path=str(candidate))

    for directory in _directories_up_to_root(page_path):
        base = src_dir / directory if directory else src_dir
        if is_index_page:
            index_layout = base / f"index{ext}"
            if index_layout.is_file():
                return index_layout
        layout = base / f"layout{ext}"
        if layout.is_file():
            return layout

    return None


def find_partial_dependencies(
    page_path: str,
    src_dir: Path,
    ext: str,
    *,
    unreadable: list[Path] | None = None,
) -> list[Path]:
    """All partial templates visible from the page's directory.

    Directories that cannot be scanned are appended to ``unreadable``.
    """
    partials: list[Path] = []
    for directory in _directories_up_to_root(page_path):
        base = src_dir / directory if directory else src_dir
        try:
            matches = sorted(path for path in base.glob(f"_*/**/*{ext}") if path.is_file())
        except OSError:
            log.warning("partial_scan_failed", directory=str(base), exc_info=True)
            if unreadable is not None:
                unreadable.append(base)
            continue
        partials.extend(matches)
    return partials


def resolve_template_path(reference: str, src_dir: Path, ext: str) -> Path | None:
    """Resolve an include/layout reference to an existing template file."""
    name = _with_extension(reference, ext)
    candidates = [src_dir / name, *(src_dir / folder / name for folder in _TEMPLATE_DIRS)]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def parse_template_references(content: str) -> list[str]:
    """Template names referenced by include/layout/extends statements, in order."""
    references: list[str] = []
    for pattern in _REFERENCE_PATTERNS:
        references.extend(match.group(1) for match in pattern.finditer(content))
    return references


def _walk_references(
    template: Path,
    src_dir: Path,
    ext: str,
    visited: set[Path],
    stack: list[Path],
    found: list[Path],
    unreadable: list[Path],
) -> None:
    if template in stack:
        raise CircularDependencyError([str(path) for path in [*stack, template]])
    if template in visited:
        return
    visited.add(template)

    try:
        content = template.read_text(encoding="utf-8")
    except FileNotFoundError:
        log.warning("template_dependency_missing", template=str(template))
        return
    except (OSError, UnicodeDecodeError):
        # Its includes are unknown, so changes to them would go unnoticed
        log.warning("template_dependency_unreadable", template=str(template), exc_info=True)
        unreadable.append(template)
        return

    stack.append(template)
    try:
        for reference in parse_template_references(content):
            resolved = resolve_template_path(reference, src_dir, ext)
            if resolved is None:
                log.warning(
                    "template_dependency_unresolved",
                    template=str(template),
                    reference=reference,
                )
                # Keep the expected location so the page is treated as stale
                resolved = src_dir / _with_extension(reference, ext)
            found.append(resolved)
            _walk_references(resolved, src_dir, ext, visited, stack, found, unreadable)
    finally:
        stack.pop()


def _relative_page_path(source_path: str, src_dir: Path) -> str:
    relative = os.path.relpath(source_path, src_dir).replace("\\", "/")
    if relative.startswith("../") or relative == "..":
        return PurePosixPath(relative).name
    return relative


def _directories_up_to_root(page_path: str) -> list[str]:
    """``"blog/2024/post.md"`` -> ``["blog/2024", "blog", ""]``."""
    parent = PurePosixPath(page_path).parent
    segments = [] if str(parent) == "." else list(parent.parts)
    directories = ["/".join(segments[:i]) for i in range(len(segments), 0, -1)]
    directories.append("")
    return directories


def _with_extension(name: str, ext: str) -> str:
    return name if name.endswith(ext) else f"{name}{ext}"
