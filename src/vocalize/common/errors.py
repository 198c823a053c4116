"""
Error taxonomy for the Vocalize client.

Every failure that crosses a public operation boundary is a VocalizeError
tagged with an ErrorKind, so callers branch on ``error.kind`` instead of
probing response bodies.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Categories of client failures."""

    AUTH_EXPIRED = "auth_expired"  # 401 on a request that was already retried
    AUTH_PERMANENT_FAILURE = "auth_permanent_failure"  # refresh and re-login failed
    NETWORK_UNAVAILABLE = "network_unavailable"  # no connectivity and no cache
    VALIDATION = "validation"  # client-side precondition, no request sent
    PERMISSION_DENIED = "permission_denied"  # role check failed locally
    NOT_FOUND = "not_found"
    SERVER_REJECTED = "server_rejected"  # non-401 error response
    UNVERIFIED_ACCOUNT = "unverified_account"
    STORAGE_CORRUPTION = "storage_corruption"


class VocalizeError(Exception):
    """Raised for every client failure, tagged with its kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        cause: BaseException | None = None,
        status: int | None = None,
        detail: Any = None,
    ):
        self.kind = kind
        self.message = message
        self.cause = cause
        self.status = status
        self.detail = detail
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"VocalizeError(kind={self.kind.value!r}, message={self.message!r}, "
            f"status={self.status!r})"
        )


def extract_detail(body: Any) -> str | None:
    """Pull the human-readable message out of a server error body."""
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, str):
            return detail
        if isinstance(detail, list) and detail:
            # Validation errors arrive as a list of {"msg": ...} objects
            first = detail[0]
            if isinstance(first, dict) and first.get("msg"):
                return str(first["msg"])
            return str(first)
        if detail is not None:
            return str(detail)
    if isinstance(body, str) and body.strip():
        return body.strip()
    return None


def as_vocalize_error(
    exc: BaseException,
    fallback_message: str,
    kind: ErrorKind = ErrorKind.SERVER_REJECTED,
) -> VocalizeError:
    """
    Normalize any exception into a VocalizeError.

    VocalizeErrors pass through untouched; anything else is wrapped with the
    operation's fallback message and kept as ``cause``.
    """
    if isinstance(exc, VocalizeError):
        return exc
    message = str(exc) or fallback_message
    return VocalizeError(kind, message, cause=exc)


@contextmanager
def normalized_errors(fallback_message: str) -> Iterator[None]:
    """Re-raise anything but a VocalizeError as one."""
    try:
        yield
    except VocalizeError:
        raise
    except Exception as e:
        raise as_vocalize_error(e, fallback_message) from e
