from __future__ import annotations

"""Typed failures raised by the message lifecycle, discovery and moderation
services.

Every user-facing failure derives from :class:`WhisperError` and carries the
HTTP status the API boundary should answer with.  ``ServiceUnavailable`` is
the opaque "try again later" class for backend faults, kept apart from the
"your input was wrong" family so callers can tell them apart.
"""

import math
from typing import Optional

__all__ = [
    "WhisperError",
    "InvalidContent",
    "InvalidLocation",
    "InvalidQuery",
    "RateLimited",
    "TooManyReports",
    "NotFound",
    "Expired",
    "NotApproved",
    "Conflict",
    "ClassifierUnavailable",
    "ServiceUnavailable",
]


class WhisperError(Exception):
    """Base class for typed domain failures."""

    status_code: int = 500
    code: str = "whisper_error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class InvalidContent(WhisperError):
    """Message content is empty or too long."""

    status_code = 400
    code = "invalid_content"


class InvalidLocation(WhisperError):
    """Coordinates are out of range or the null-island sentinel."""

    status_code = 400
    code = "invalid_location"


class InvalidQuery(WhisperError):
    """A query parameter (radius, limit, filter bounds) is out of range."""

    status_code = 400
    code = "invalid_query"


class RateLimited(WhisperError):
    """Too many requests for this action. Please wait before trying again."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, detail: str | None = None, *, retry_after_seconds: float = 0.0):
        super().__init__(detail)
        self.retry_after_seconds = max(0.0, retry_after_seconds)

    @property
    def retry_after_header(self) -> str:
        """Whole seconds, rounded up, suitable for a ``Retry-After`` header."""
        return str(max(1, math.ceil(self.retry_after_seconds)))


class TooManyReports(RateLimited):
    """Too many reports. Please wait before reporting again."""

    code = "too_many_reports"


class NotFound(WhisperError):
    """Message not found."""

    status_code = 404
    code = "not_found"


class Expired(WhisperError):
    """Message has expired."""

    status_code = 410
    code = "expired"


class NotApproved(WhisperError):
    """Message has not been approved by moderation."""

    status_code = 409
    code = "not_approved"


class Conflict(WhisperError):
    """The resource was changed by someone else. Reload and try again."""

    status_code = 409
    code = "conflict"


class ClassifierUnavailable(WhisperError):
    """An external classifier failed or timed out.

    Internal only: always recovered at the classifier boundary and never
    surfaced to API callers.
    """

    status_code = 503
    code = "classifier_unavailable"

    def __init__(self, detail: str | None = None, *, cause: Optional[BaseException] = None):
        super().__init__(detail)
        self.cause = cause


class ServiceUnavailable(WhisperError):
    """The service is temporarily unavailable. Please try again later."""

    status_code = 503
    code = "service_unavailable"
