"""Deterministic stage failure classification for retry policy."""

from __future__ import annotations

from zengarden.tasks.errors import ConfigurationError, StageError
from zengarden.tasks.models import FailureClass

_CONFIGURATION_PATTERNS: tuple[str, ...] = (
    "not configured",
    "invalid api key",
    "api key not valid",
    "unauthorized",
    "forbidden",
    "invalidaccesskeyid",
    "signaturedoesnotmatch",
    "nosuchbucket",
)


def classify_stage_failure(error: BaseException) -> FailureClass:
    """Map a pipeline exception onto a failure class."""

    if isinstance(error, StageError):
        if error.failure_class != FailureClass.TRANSIENT:
            return error.failure_class
        if isinstance(error.__cause__, ConfigurationError):
            return FailureClass.CONFIGURATION
        return _classify_message(str(error))
    if isinstance(error, ConfigurationError):
        return FailureClass.CONFIGURATION
    # Errors raised outside a stage (store conflicts, bugs) still consume a retry.
    return _classify_message(str(error), fallback=FailureClass.UNEXPECTED)


def _classify_message(
    message: str,
    *,
    fallback: FailureClass = FailureClass.TRANSIENT,
) -> FailureClass:
    haystack = message.lower()
    for pattern in _CONFIGURATION_PATTERNS:
        if pattern in haystack:
            return FailureClass.CONFIGURATION
    return fallback
