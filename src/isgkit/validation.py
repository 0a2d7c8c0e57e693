"""ISG configuration validation.

Checks run on raw mappings (site config blocks and page front matter) before
any value is used, and raise ``ISGConfigurationError`` with the offending
field, its value and an actionable message. Nothing is clamped or coerced.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from isgkit.errors import ErrorCode, ISGConfigurationError

if TYPE_CHECKING:
    from isgkit.config import IsgSettings

MAX_TTL_SECONDS = 365 * 24 * 3600
MAX_AGE_CAP_DAYS = 3650
MAX_AGING_TTL_SECONDS = 30 * 24 * 3600


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _lookup(data: Any, camel: str, snake: str) -> Any:
    if isinstance(data, Mapping):
        return data.get(camel, data.get(snake))
    return getattr(data, snake, None)


def validate_isg_config(config: Mapping[str, Any] | None) -> None:
    """Validate a site-level ISG block. ``None`` means ISG is not configured."""
    if config is None:
        return

    ttl_seconds = _lookup(config, "ttlSeconds", "ttl_seconds")
    if ttl_seconds is not None:
        _validate_ttl_seconds(ttl_seconds)

    max_age_cap_days = _lookup(config, "maxAgeCapDays", "max_age_cap_days")
    if max_age_cap_days is not None:
        _validate_max_age_cap_days(max_age_cap_days)

    aging = config.get("aging")
    if aging is not None:
        if isinstance(aging, str | bytes) or not isinstance(aging, list | tuple):
            raise ISGConfigurationError(
                ErrorCode.ISG_INVALID_AGING_RULE,
                "aging",
                aging,
                "aging must be a list of {untilDays, ttlSeconds} rules.",
            )
        _validate_aging_rules(list(aging), max_age_cap_days)


def _validate_ttl_seconds(ttl_seconds: Any) -> None:
    if not _is_int(ttl_seconds):
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_TTL,
            "ttlSeconds",
            ttl_seconds,
            "ttlSeconds must be a non-negative integer representing seconds. "
            "Example: 3600 (1 hour)",
        )
    if ttl_seconds < 0:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_TTL,
            "ttlSeconds",
            ttl_seconds,
            "ttlSeconds cannot be negative. Use 0 for immediate expiration or a positive value.",
        )
    if ttl_seconds > MAX_TTL_SECONDS:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_TTL,
            "ttlSeconds",
            ttl_seconds,
            "ttlSeconds is unusually large (>1 year). "
            "Consider using maxAgeCapDays for long-term caching.",
        )


def _validate_max_age_cap_days(max_age_cap_days: Any) -> None:
    if not _is_int(max_age_cap_days):
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_MAX_AGE_CAP,
            "maxAgeCapDays",
            max_age_cap_days,
            "maxAgeCapDays must be a positive integer representing days. Example: 365 (1 year)",
        )
    if max_age_cap_days <= 0:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_MAX_AGE_CAP,
            "maxAgeCapDays",
            max_age_cap_days,
            "maxAgeCapDays must be positive. Use a value like 30, 90, or 365 days.",
        )
    if max_age_cap_days > MAX_AGE_CAP_DAYS:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_MAX_AGE_CAP,
            "maxAgeCapDays",
            max_age_cap_days,
            "maxAgeCapDays is unusually large (>10 years). Consider if this is intended.",
        )


def _validate_aging_rules(aging: list[Any], max_age_cap_days: Any) -> None:
    seen_until_days: set[int] = set()

    for index, rule in enumerate(aging):
        _validate_aging_rule(rule, index)
        until_days = _lookup(rule, "untilDays", "until_days")

        if until_days in seen_until_days:
            raise ISGConfigurationError(
                ErrorCode.ISG_DUPLICATE_AGING_RULE,
                f"aging[{index}].untilDays",
                until_days,
                f"Duplicate aging rule for {until_days} days. "
                "Each untilDays value must be unique.",
            )
        seen_until_days.add(until_days)

        if max_age_cap_days is not None and until_days > max_age_cap_days:
            raise ISGConfigurationError(
                ErrorCode.ISG_AGING_RULE_EXCEEDS_CAP,
                f"aging[{index}].untilDays",
                until_days,
                f"Aging rule for {until_days} days exceeds maxAgeCapDays "
                f"({max_age_cap_days}). Rule will never be used.",
            )

    thresholds = [_lookup(rule, "untilDays", "until_days") for rule in aging]
    if thresholds != sorted(thresholds):
        raise ISGConfigurationError(
            ErrorCode.ISG_UNSORTED_AGING_RULES,
            "aging",
            thresholds,
            "Aging rules must be sorted by untilDays in ascending order. "
            "Sort rules from shortest to longest duration.",
        )


def _validate_aging_rule(rule: Any, index: int) -> None:
    if rule is None or isinstance(rule, str | bytes | int | float | list):
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_AGING_RULE,
            f"aging[{index}]",
            rule,
            "Aging rule must be an object with untilDays and ttlSeconds properties.",
        )

    until_days = _lookup(rule, "untilDays", "until_days")
    if not _is_int(until_days) or until_days <= 0:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_AGING_RULE,
            f"aging[{index}].untilDays",
            until_days,
            "untilDays must be a positive integer representing days. Example: 7, 30, 90",
        )

    ttl_seconds = _lookup(rule, "ttlSeconds", "ttl_seconds")
    if not _is_int(ttl_seconds) or ttl_seconds < 0:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_AGING_RULE,
            f"aging[{index}].ttlSeconds",
            ttl_seconds,
            "ttlSeconds must be a non-negative integer representing seconds. "
            "Example: 3600 (1 hour)",
        )
    if ttl_seconds > MAX_AGING_TTL_SECONDS:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_AGING_RULE,
            f"aging[{index}].ttlSeconds",
            ttl_seconds,
            "ttlSeconds in aging rule is unusually large (>30 days). "
            f"Consider if this is intended for content up to {until_days} days old.",
        )


def validate_page_overrides(
    front_matter: Mapping[str, Any],
    source_path: str,
    isg: IsgSettings | None = None,
) -> None:
    """Validate the ISG overrides a page may set in its front matter.

    Page values obey the same limits as site values. When ``isg`` is given, a
    page cap is also checked against the site's aging rules.
    """
    ttl_seconds = front_matter.get("ttlSeconds")
    if ttl_seconds is not None and (not _is_int(ttl_seconds) or ttl_seconds < 0):
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_TTL,
            "ttlSeconds",
            ttl_seconds,
            f"Invalid ttlSeconds in front matter of {source_path}. "
            "Must be a non-negative integer.",
        )
    if ttl_seconds is not None and ttl_seconds > MAX_TTL_SECONDS:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_TTL,
            "ttlSeconds",
            ttl_seconds,
            f"ttlSeconds in front matter of {source_path} is unusually large (>1 year). "
            "Consider using maxAgeCapDays for long-term caching.",
        )

    max_age_cap_days = front_matter.get("maxAgeCapDays")
    if max_age_cap_days is not None:
        _validate_page_max_age_cap(max_age_cap_days, source_path, isg)

    tags = front_matter.get("tags")
    if tags is not None:
        if not isinstance(tags, list | tuple):
            raise ISGConfigurationError(
                ErrorCode.ISG_INVALID_TAGS,
                "tags",
                tags,
                f"Invalid tags in front matter of {source_path}. Must be a list of strings.",
            )
        for index, tag in enumerate(tags):
            if not isinstance(tag, str):
                raise ISGConfigurationError(
                    ErrorCode.ISG_INVALID_TAGS,
                    f"tags[{index}]",
                    tag,
                    f"Invalid tag at index {index} in front matter of {source_path}. "
                    "All tags must be strings.",
                )


def _validate_page_max_age_cap(
    max_age_cap_days: Any,
    source_path: str,
    isg: IsgSettings | None,
) -> None:
    if not _is_int(max_age_cap_days) or max_age_cap_days <= 0:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_MAX_AGE_CAP,
            "maxAgeCapDays",
            max_age_cap_days,
            f"Invalid maxAgeCapDays in front matter of {source_path}. "
            "Must be a positive integer.",
        )
    if max_age_cap_days > MAX_AGE_CAP_DAYS:
        raise ISGConfigurationError(
            ErrorCode.ISG_INVALID_MAX_AGE_CAP,
            "maxAgeCapDays",
            max_age_cap_days,
            f"maxAgeCapDays in front matter of {source_path} is unusually large "
            "(>10 years). Consider if this is intended.",
        )
    if isg is None:
        return
    for rule in isg.aging:
        if rule.until_days > max_age_cap_days:
            raise ISGConfigurationError(
                ErrorCode.ISG_AGING_RULE_EXCEEDS_CAP,
                "maxAgeCapDays",
                max_age_cap_days,
                f"maxAgeCapDays in front matter of {source_path} is below the site aging "
                f"rule for {rule.until_days} days. Rule will never be used.",
            )


def require_non_negative_finite(value: Any, field_name: str, code: ErrorCode) -> Any:
    """Return ``value`` unchanged, raising when it is negative or non-finite."""
    if (
        isinstance(value, bool)
        or not isinstance(value, int | float)
        or not math.isfinite(value)
        or value < 0
    ):
        raise ISGConfigurationError(
            code,
            field_name,
            value,
            f"{field_name} must be a non-negative finite number, got {value!r}.",
        )
    return value
