"""Error taxonomy and classification for collaborator failures.

Every raw failure raised by a collaborator (vendor SDK, HTTP client, ffmpeg,
filesystem) is mapped into a closed set of error kinds, each tagged
retryable or not. Classification is pure: no I/O, no logging.
"""

import errno
import json
import subprocess
from enum import Enum
from typing import Any, Optional

import httpx
import pydantic
from google.genai import errors as genai_errors


class ErrorKind(str, Enum):
    """Closed set of classified error kinds."""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    RESOURCE_NOT_FOUND = "resource_not_found"
    PERMISSION_DENIED = "permission_denied"
    DISK_FULL = "disk_full"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVICE_UNAVAILABLE,
    ErrorKind.TIMEOUT,
})

# Never retried regardless of policy
NEVER_RETRY_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.AUTHENTICATION})

SESSION_FATAL_KINDS = frozenset({ErrorKind.DISK_FULL})


class PipelineError(Exception):
    """Classified pipeline failure.

    Attributes:
        kind: Error kind from the closed taxonomy
        retryable: Whether a retry may succeed
        message: Human-readable message surfaced on the session
        retry_after: Optional server hint in seconds (rate limiting)
        context: Free-form context (session_id, stage, service, reason, ...)
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        retryable: Optional[bool] = None,
        retry_after: Optional[float] = None,
        context: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = kind in RETRYABLE_KINDS if retryable is None else retryable
        self.retry_after = retry_after
        self.context = dict(context or {})

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class CorruptSessionError(PipelineError):
    """A stage found its required upstream artifacts missing or overwritten."""

    def __init__(self, message: str, context: Optional[dict] = None) -> None:
        super().__init__(ErrorKind.VALIDATION, message, retryable=False, context=context)


class PipelineCancelled(PipelineError):
    """Raised at a suspension point when the session was cancelled."""

    def __init__(self, message: str = "Generation cancelled", context: Optional[dict] = None) -> None:
        super().__init__(ErrorKind.UNKNOWN, message, retryable=False, context=context)


class StageTransitionError(ValueError):
    """Illegal session or stage status transition."""


_HTTP_STATUS_KINDS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.AUTHENTICATION,
    403: ErrorKind.PERMISSION_DENIED,
    404: ErrorKind.RESOURCE_NOT_FOUND,
    408: ErrorKind.TIMEOUT,
    422: ErrorKind.VALIDATION,
    429: ErrorKind.RATE_LIMITED,
}

_QUOTA_MARKERS = ("insufficient_quota", "quota")
_RATE_LIMIT_MARKERS = ("rate_limit_exceeded", "rate limit", "resource_exhausted")
_TRANSIENT_MARKERS = ("502", "503", "504", "temporary", "temporarily")


def _kind_for_status(status: int) -> ErrorKind:
    if status in _HTTP_STATUS_KINDS:
        return _HTTP_STATUS_KINDS[status]
    if status >= 500:
        return ErrorKind.SERVICE_UNAVAILABLE
    return ErrorKind.UNKNOWN


def _parse_retry_after(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def classify_error(error: BaseException, context: Optional[dict] = None) -> PipelineError:
    """Map a raw failure into a classified PipelineError.

    Collaborator-specific rules run first, then filesystem errno
    equivalents, then message patterns, then a fail-closed fallback.

    Args:
        error: Raw exception raised by a collaborator or local step
        context: Optional context merged into the result

    Returns:
        PipelineError (already-classified errors pass through unchanged)
    """
    if isinstance(error, PipelineError):
        return error

    ctx = dict(context or {})
    message = str(error) or type(error).__name__
    lowered = message.lower()

    # google-genai SDK (Gemini, Veo)
    if isinstance(error, genai_errors.APIError):
        code = getattr(error, "code", None) or 0
        kind = _kind_for_status(int(code))
        if kind is ErrorKind.UNKNOWN and isinstance(error, genai_errors.ServerError):
            kind = ErrorKind.SERVICE_UNAVAILABLE
        return PipelineError(kind, message, context={**ctx, "status_code": code})

    # httpx (ElevenLabs and other REST collaborators)
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        kind = _kind_for_status(status)
        retry_after = None
        if kind is ErrorKind.RATE_LIMITED:
            retry_after = _parse_retry_after(error.response.headers.get("retry-after"))
        return PipelineError(
            kind, message, retry_after=retry_after, context={**ctx, "status_code": status}
        )
    if isinstance(error, httpx.TimeoutException):
        return PipelineError(ErrorKind.TIMEOUT, message, context={**ctx, "reason": "network_timeout"})
    if isinstance(error, httpx.TransportError):
        return PipelineError(
            ErrorKind.SERVICE_UNAVAILABLE, message, context={**ctx, "reason": "network_error"}
        )

    # Malformed collaborator output
    if isinstance(error, (pydantic.ValidationError, json.JSONDecodeError)):
        return PipelineError(ErrorKind.VALIDATION, message, context={**ctx, "reason": "invalid_response"})

    # ffmpeg / ffprobe execution failure
    if isinstance(error, subprocess.CalledProcessError):
        stderr = error.stderr
        if isinstance(stderr, bytes):
            stderr = stderr.decode(errors="replace")
        return PipelineError(
            ErrorKind.SERVICE_UNAVAILABLE,
            f"Media processing failed: {(stderr or message)[-500:]}",
            context={**ctx, "reason": "ffmpeg_error", "returncode": error.returncode},
        )

    if isinstance(error, TimeoutError):
        return PipelineError(ErrorKind.TIMEOUT, message or "Operation timed out", context=ctx)

    # Filesystem / socket errno equivalents
    if isinstance(error, OSError):
        code = error.errno
        if code == errno.ENOSPC:
            return PipelineError(
                ErrorKind.DISK_FULL, "Insufficient disk space", context={**ctx, "reason": "disk_full"}
            )
        if code == errno.ENOENT or isinstance(error, FileNotFoundError):
            return PipelineError(
                ErrorKind.RESOURCE_NOT_FOUND,
                message,
                context={**ctx, "path": getattr(error, "filename", None)},
            )
        if code in (errno.EACCES, errno.EPERM) or isinstance(error, PermissionError):
            return PipelineError(
                ErrorKind.PERMISSION_DENIED,
                "File permission denied",
                context={**ctx, "reason": "permission_error", "path": getattr(error, "filename", None)},
            )
        if isinstance(error, ConnectionError) or code in (
            errno.ECONNRESET, errno.ECONNREFUSED, errno.EHOSTUNREACH, errno.ENETUNREACH,
        ):
            return PipelineError(
                ErrorKind.SERVICE_UNAVAILABLE, message, context={**ctx, "reason": "network_error"}
            )

    # Message patterns (vendor quota codes, transient gateways)
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return PipelineError(
            ErrorKind.RATE_LIMITED,
            message,
            retry_after=_parse_retry_after(getattr(error, "retry_after", None)),
            context=ctx,
        )
    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return PipelineError(
            ErrorKind.SERVICE_UNAVAILABLE, message, context={**ctx, "reason": "quota_exceeded"}
        )
    if "prediction failed" in lowered:
        return PipelineError(
            ErrorKind.SERVICE_UNAVAILABLE, message, context={**ctx, "reason": "prediction_failed"}
        )
    if "timeout" in lowered or "timed out" in lowered:
        return PipelineError(ErrorKind.TIMEOUT, message, context=ctx)
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return PipelineError(ErrorKind.SERVICE_UNAVAILABLE, message, context=ctx)

    return PipelineError(ErrorKind.UNKNOWN, message, retryable=False, context=ctx)


_SUGGESTIONS = {
    ErrorKind.SERVICE_UNAVAILABLE: [
        "Check service status and API quotas",
        "Try again in a few minutes",
    ],
    ErrorKind.RATE_LIMITED: [
        "Wait for rate limit to reset",
        "Consider upgrading your API plan",
    ],
    ErrorKind.TIMEOUT: [
        "Try with fewer scenes or shorter content",
        "Check your internet connection",
    ],
    ErrorKind.AUTHENTICATION: ["Check the configured API keys and credentials"],
    ErrorKind.DISK_FULL: ["Free disk space in the configured data directory"],
}


def error_summary(error: PipelineError) -> dict:
    """Build the user-visible failure summary stored on a session."""
    suggestions = list(_SUGGESTIONS.get(error.kind, []))
    if error.context.get("reason") == "ffmpeg_error":
        suggestions.append("Ensure FFmpeg is properly installed")
        suggestions.append("Check video file formats and codecs")
    if error.context.get("reason") == "quota_exceeded":
        suggestions.append("Check API key quotas and billing")

    return {
        "message": error.message,
        "kind": error.kind.value,
        "retryable": error.retryable,
        "context": {k: v for k, v in error.context.items() if v is not None},
        "suggestions": suggestions or None,
    }
