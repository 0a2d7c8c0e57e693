"""TTL and aging policy.

Pure functions over timestamps and captured cache-entry values. Site
configuration values that are negative or non-finite raise
``ISGConfigurationError``; the same faults in a cache entry raise
``ValueError`` so the decision engine can treat them as a corrupt entry.
"""

from __future__ import annotations

import math
from datetime import UTC, date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from isgkit.errors import ErrorCode
from isgkit.validation import require_non_negative_finite

if TYPE_CHECKING:
    from collections.abc import Sequence

    from isgkit.config import AgingRule, IsgSettings
    from isgkit.models.cache import CacheEntry
    from isgkit.models.page import PageModel

SECONDS_PER_DAY = 24 * 60 * 60


def parse_safe_date(value: Any) -> datetime | None:
    """Parse an ISO timestamp, ``date`` or ``datetime`` into an aware UTC datetime.

    Returns ``None`` for anything unparseable. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp the way the manifest stores it: ISO 8601, ms, ``Z``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def content_age_days(published_at: datetime, now: datetime) -> float:
    return (as_utc(now) - as_utc(published_at)).total_seconds() / SECONDS_PER_DAY


def effective_ttl(
    content_age_days: float,
    base_ttl: float,
    aging_rules: Sequence[AgingRule],
) -> float:
    """Pick the TTL for content of the given age.

    Rules are walked in ascending ``until_days`` order and the first rule whose
    threshold is at least the age wins. Content older than every threshold
    keeps ``base_ttl``.
    """
    require_non_negative_finite(base_ttl, "ttlSeconds", ErrorCode.ISG_INVALID_TTL)
    if isinstance(content_age_days, bool) or not math.isfinite(content_age_days):
        raise ValueError(f"content age must be a finite number of days, got {content_age_days!r}")

    for rule in sorted(aging_rules, key=lambda r: r.until_days):
        if rule.until_days >= content_age_days:
            require_non_negative_finite(
                rule.ttl_seconds, "aging.ttlSeconds", ErrorCode.ISG_INVALID_AGING_RULE
            )
            return rule.ttl_seconds
    return base_ttl


def compute_effective_ttl(page: PageModel, isg: IsgSettings, now: datetime) -> float:
    """TTL to capture in a page's cache entry at render time.

    A ``ttlSeconds`` front-matter override wins. Otherwise aging rules apply
    to dated pages; undated pages get the site TTL.
    """
    meta = page.meta
    if meta.ttl_seconds is not None:
        return require_non_negative_finite(
            meta.ttl_seconds, "ttlSeconds", ErrorCode.ISG_INVALID_TTL
        )

    if meta.published_at is not None and isg.aging:
        age_days = content_age_days(meta.published_at, now)
        return effective_ttl(age_days, isg.ttl_seconds, isg.aging)

    return require_non_negative_finite(isg.ttl_seconds, "ttlSeconds", ErrorCode.ISG_INVALID_TTL)


def is_frozen(entry: CacheEntry, now: datetime) -> bool:
    """True when the entry's content is older than its ``max_age_cap_days``.

    Age is measured from ``published_at``, or from ``rendered_at`` when the
    publish date is missing or unparseable. Frozen pages are only rebuilt on
    an inputs-hash change.
    """
    cap_days = entry.max_age_cap_days
    if cap_days is None:
        return False
    if not math.isfinite(cap_days) or cap_days < 0:
        raise ValueError(f"maxAgeCapDays must be a non-negative finite number, got {cap_days!r}")

    reference = parse_safe_date(entry.published_at) or parse_safe_date(entry.rendered_at)
    if reference is None:
        raise ValueError(f"renderedAt is not a valid timestamp: {entry.rendered_at!r}")

    return as_utc(now) - reference > timedelta(days=cap_days)


def next_rebuild_at(entry: CacheEntry, now: datetime) -> datetime | None:
    """``rendered_at + ttl_seconds``, or ``None`` when the entry is frozen."""
    if is_frozen(entry, now):
        return None

    rendered_at = parse_safe_date(entry.rendered_at)
    if rendered_at is None:
        raise ValueError(f"renderedAt is not a valid timestamp: {entry.rendered_at!r}")

    ttl_seconds = entry.ttl_seconds
    if not math.isfinite(ttl_seconds) or ttl_seconds < 0:
        raise ValueError(f"ttlSeconds must be a non-negative finite number, got {ttl_seconds!r}")

    return rendered_at + timedelta(seconds=ttl_seconds)


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)
