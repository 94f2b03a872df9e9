"""Errors raised by the completion client."""

from __future__ import annotations

DETAIL_LIMIT = 800


class CompletionError(RuntimeError):
    """Base class for completion failures.

    ``status`` is the last HTTP status observed (``None`` for transport errors)
    and ``detail`` the response body truncated for diagnostics. Neither is
    shown to the user.
    """

    retriable = False

    def __init__(self, message: str, *, status: int | None = None, detail: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.detail = (detail or "")[:DETAIL_LIMIT]


class NetworkError(CompletionError):
    """The request never produced an HTTP response."""

    retriable = True


class RateLimited(CompletionError):
    """HTTP 429 from the service."""

    retriable = True


class ServiceError(CompletionError):
    """Non-success HTTP status. 5xx are retriable, other codes are not."""

    def __init__(self, message: str, *, status: int | None = None, detail: str = "") -> None:
        super().__init__(message, status=status, detail=detail)
        self.retriable = status is not None and 500 <= status <= 599


class InvalidResponse(CompletionError):
    """Malformed JSON or a missing reply field."""


def classify_status(status: int, body: str) -> CompletionError:
    """Map a non-success status code to the matching error."""
    if status == 429:
        return RateLimited(f"rate limited ({status})", status=status, detail=body)
    return ServiceError(f"service error {status}", status=status, detail=body)
