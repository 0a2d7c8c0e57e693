from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from isgkit.ttl import parse_safe_date

# Front-matter keys checked, in order, for the logical publish date
PUBLISHED_DATE_FIELDS = ("publishedAt", "published", "date", "createdAt")

_CORE_FIELDS = frozenset(
    {"title", "tags", "layout", "ttlSeconds", "maxAgeCapDays", *PUBLISHED_DATE_FIELDS}
)


@dataclass(frozen=True)
class FrontMatter:
    """Typed view over a page's front matter.

    Values of the wrong type read as ``None`` here;
    ``validate_page_overrides`` is what rejects them.
    """

    title: str | None = None
    tags: tuple[str, ...] = ()
    published_at: datetime | None = None
    ttl_seconds: int | None = None
    max_age_cap_days: int | None = None
    layout: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> FrontMatter:
        title = data.get("title")
        tags = data.get("tags")
        layout = data.get("layout")
        return cls(
            title=title if isinstance(title, str) else None,
            tags=tuple(tag for tag in tags if isinstance(tag, str))
            if isinstance(tags, list | tuple)
            else (),
            published_at=_first_valid_date(data),
            ttl_seconds=_int_or_none(data.get("ttlSeconds")),
            max_age_cap_days=_int_or_none(data.get("maxAgeCapDays")),
            layout=layout if isinstance(layout, str) and layout else None,
            extra={key: value for key, value in data.items() if key not in _CORE_FIELDS},
        )


def _first_valid_date(data: dict[str, Any]) -> datetime | None:
    for key in PUBLISHED_DATE_FIELDS:
        value = data.get(key)
        if value:
            parsed = parse_safe_date(value)
            if parsed is not None:
                return parsed
    return None


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


class PageModel(BaseModel):
    """A content page as handed over by the content loader."""

    slug: str
    url: str  # Site-relative URL, "/" or "/blog/" or "/blog/post"
    source_path: str  # Absolute path of the markdown source
    content: str  # Raw markdown body
    front_matter: dict[str, Any] = {}  # Verbatim, arbitrary keys

    @property
    def meta(self) -> FrontMatter:
        return FrontMatter.from_mapping(self.front_matter)


class NavNode(BaseModel):
    """One node of the navigation tree built by the navigation builder."""

    title: str
    url: str
    children: list[NavNode] = []
