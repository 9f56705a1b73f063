"""
Error classification for workflow runs.

The engine never retries on its own. It only needs to know whether a node
failure is a transient rate-limit or quota condition, which pauses the run
so the host can resume it later, or anything else, which fails the run.
"""

from enum import Enum

from issueres.exceptions import RateLimitError

QUOTA_MARKERS = ("resource_exhausted", "quota", "rate limit")


class ErrorKind(str, Enum):
    """Kinds of node failures the engine distinguishes."""

    RATE_LIMITED = "rate_limited"
    GENERIC = "generic"

    def __str__(self) -> str:
        return self.value


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify a node failure.

    An error is rate-limited when it is a ``RateLimitError``, carries an
    HTTP 429 status (directly or on an attached response, as
    ``httpx.HTTPStatusError`` does), or mentions a quota marker in its
    message.

    Args:
        exc: Exception raised by a node body

    Returns:
        The error kind
    """
    if isinstance(exc, RateLimitError):
        return ErrorKind.RATE_LIMITED
    if _status_of(exc) == 429:
        return ErrorKind.RATE_LIMITED

    message = str(exc).lower()
    if any(marker in message for marker in QUOTA_MARKERS):
        return ErrorKind.RATE_LIMITED
    return ErrorKind.GENERIC
