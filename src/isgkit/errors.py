from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    ISG_INVALID_TTL = "ISG_INVALID_TTL"
    ISG_INVALID_MAX_AGE_CAP = "ISG_INVALID_MAX_AGE_CAP"
    ISG_INVALID_AGING_RULE = "ISG_INVALID_AGING_RULE"
    ISG_DUPLICATE_AGING_RULE = "ISG_DUPLICATE_AGING_RULE"
    ISG_UNSORTED_AGING_RULES = "ISG_UNSORTED_AGING_RULES"
    ISG_AGING_RULE_EXCEEDS_CAP = "ISG_AGING_RULE_EXCEEDS_CAP"
    ISG_INVALID_TAGS = "ISG_INVALID_TAGS"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    BUILD_LOCK_TIMEOUT = "BUILD_LOCK_TIMEOUT"
    BUILD_LOCK_FAILED = "BUILD_LOCK_FAILED"


class IsgError(Exception):
    """Base class for errors that abort a build.

    Recoverable cache faults (corrupt entries, missing dependency files,
    unreadable manifests) are never raised; they are logged and resolved by
    rebuilding the affected page. Only structural problems reach the caller.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class ISGConfigurationError(IsgError):
    """Invalid ISG configuration, at site level or in a page's front matter."""

    def __init__(self, code: ErrorCode, field: str, value: Any, message: str) -> None:
        super().__init__(
            code,
            message,
            suggestion=f"Fix the '{field}' setting and run the build again.",
        )
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["error"]["field"] = self.field
        payload["error"]["value"] = repr(self.value)
        return payload


class CircularDependencyError(IsgError):
    """A template includes or extends itself, directly or transitively."""

    def __init__(self, chain: list[str]) -> None:
        super().__init__(
            ErrorCode.CIRCULAR_DEPENDENCY,
            f"Circular dependency detected in templates: {' -> '.join(chain)}",
            suggestion="Remove one of the include/layout references in the chain.",
        )
        self.chain = chain


class BuildLockError(IsgError):
    """The build lock could not be acquired."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(
            code,
            message,
            suggestion="Wait for the other build to finish, or acquire with force=True.",
            recoverable=True,
        )
