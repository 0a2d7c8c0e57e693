from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from isgkit.ttl import parse_safe_date


class CacheEntry(BaseModel):
    """Bookkeeping for one rendered output page.

    Validation is strict: a hand-edited or truncated manifest must fail here
    rather than be coerced into something that looks fresh.
    """

    model_config = ConfigDict(
        strict=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    path: str  # Output path, e.g. "/blog/post.html"
    inputs_hash: str  # "sha256-<hex>" over content, front matter and dependency hashes
    deps: list[str]  # Absolute template/partial paths
    tags: list[str]
    published_at: str | None = None  # Logical content age, ISO timestamp
    rendered_at: str  # Last successful render, ISO timestamp
    ttl_seconds: int | float  # Captured at render time, not recomputed
    max_age_cap_days: int | float | None = None

    @field_validator("rendered_at")
    @classmethod
    def validate_rendered_at(cls, v: str) -> str:
        if parse_safe_date(v) is None:
            raise ValueError(f"renderedAt is not a valid timestamp: {v!r}")
        return v

    @field_validator("inputs_hash")
    @classmethod
    def validate_inputs_hash(cls, v: str) -> str:
        if not v:
            raise ValueError("inputsHash must be a non-empty string")
        return v

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class CacheManifest(BaseModel):
    """All cache entries of a site, keyed by output path."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    entries: dict[str, CacheEntry] = {}
    # Digest of the navigation tree shape; changes force a full rebuild
    navigation_hash: str | None = None

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class InvalidationResult(BaseModel):
    """Outcome of a manual cache invalidation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    invalidated_count: int
    invalidated_paths: list[str]
    cleared_all: bool
