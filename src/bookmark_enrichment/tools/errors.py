"""Typed failures raised by the external tool clients and the normalizer."""

import re
from typing import Optional

from ..models.failure import ReasonKind


class ToolError(Exception):
    """Base class for stage-level tool failures."""

    reason_kind = ReasonKind.INVALID
    retryable = False

    def __init__(self, message: str, tool: Optional[str] = None):
        super().__init__(message)
        self.tool = tool


class TransientNetworkError(ToolError):
    """Connection failure, timeout or 5xx. Retried with backoff."""

    reason_kind = ReasonKind.TRANSIENT
    retryable = True


class RateLimitError(ToolError):
    """Provider throttled the call. Retried with a longer backoff."""

    reason_kind = ReasonKind.RATE_LIMITED
    retryable = True

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, tool)
        self.retry_after = retry_after


class ValidationError(ToolError):
    """Response arrived in an unexpected shape. Not retried."""

    reason_kind = ReasonKind.INVALID


class UpstreamAuthError(ToolError):
    """Credentials rejected. Fatal for the tool for the rest of the run."""

    reason_kind = ReasonKind.AUTH_FAILED


RETRYABLE_ERRORS = (TransientNetworkError, RateLimitError)

_RATE_LIMIT_RE = re.compile(r"rate.?limit|too many requests|\b429\b", re.I)
_TIMEOUT_RE = re.compile(r"timed out|timeout|\b50[234]\b|temporarily unavailable", re.I)
_AUTH_RE = re.compile(r"unauthori[sz]ed|forbidden|invalid api key|\b40[13]\b", re.I)


def error_from_text(text: str, tool: Optional[str] = None) -> ToolError:
    """Classify an error message reported inside a tool payload."""
    if _RATE_LIMIT_RE.search(text):
        return RateLimitError(text, tool)
    if _AUTH_RE.search(text):
        return UpstreamAuthError(text, tool)
    if _TIMEOUT_RE.search(text):
        return TransientNetworkError(text, tool)
    return ValidationError(text, tool)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds. HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return max(seconds, 0.0)
