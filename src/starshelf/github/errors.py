"""
Typed errors for the GitHub REST API.

Every failure is classified once, where the response (or the transport
failure) is first seen, into an ErrorKind. Callers branch on the kind
instead of re-parsing message text.
"""
from enum import Enum
from typing import Optional

import httpx

# ── Error kinds ──────────────────────────────────────────────────────────────

class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    AUTH_FAILED = "auth_failed"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


class GitHubAPIError(RuntimeError):
    """A GitHub call that failed, tagged with its kind and HTTP status."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


# ── Classification ───────────────────────────────────────────────────────────

def _response_message(response: httpx.Response) -> str:
    """Return GitHub's error message, falling back to the reason phrase."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.reason_phrase or response.text[:200]


def _is_rate_limited(response: httpx.Response, message: str) -> bool:
    if response.headers.get("x-ratelimit-remaining") == "0":
        return True
    if "retry-after" in response.headers:
        return True
    return "rate limit" in message.lower()


def classify_response(response: httpx.Response, context: str) -> GitHubAPIError:
    """Build a GitHubAPIError for a non-2xx response.

    Args:
        response: The failed httpx response.
        context: Short description of the call, used as the message prefix.
    """
    status = response.status_code
    message = _response_message(response)

    if status == 429 or (status == 403 and _is_rate_limited(response, message)):
        kind = ErrorKind.RATE_LIMITED
    elif status in (401, 403):
        kind = ErrorKind.AUTH_FAILED
    elif status == 404:
        kind = ErrorKind.NOT_FOUND
    elif status >= 500:
        kind = ErrorKind.TRANSIENT
    else:
        kind = ErrorKind.UNKNOWN

    return GitHubAPIError(f"{context}: {status} {message}", kind=kind, status_code=status)


def classify_transport_error(exc: httpx.TransportError, context: str) -> GitHubAPIError:
    """Network-level failures have no status code and are always transient."""
    return GitHubAPIError(f"{context}: {exc!r}", kind=ErrorKind.TRANSIENT)
