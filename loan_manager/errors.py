"""Error taxonomy shared by every layer.

Retry and reporting logic branches on `ErrorKind`, never on message text.
Messages carry classification, identifiers and HTTP status only: no
credentials, no raw response bodies.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class LoanManagerError(RuntimeError):
    pass


class ConfigurationError(LoanManagerError):
    pass


class InvalidAmount(LoanManagerError, ValueError):
    pass


class ScaleMismatch(LoanManagerError, ValueError):
    pass


class ErrorKind(str, Enum):
    rate_limited = "rate_limited"
    authorization = "authorization"
    client = "client"
    service = "service"
    network = "network"
    retries_exhausted = "retries_exhausted"
    malformed_response = "malformed_response"


RETRYABLE_KINDS = frozenset({ErrorKind.rate_limited, ErrorKind.service, ErrorKind.network})


class TransportError(LoanManagerError):
    """Classified failure of a single exchange request."""

    def __init__(
        self,
        kind: ErrorKind,
        *,
        method: str,
        path: str,
        status: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.kind = ErrorKind(kind)
        self.method = method
        self.path = path
        self.status = status
        self.detail = detail
        msg = f"{self.kind.value} error on {method} {path}"
        if status is not None:
            msg += f" (HTTP {status})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class RateLimited(TransportError):
    def __init__(
        self,
        *,
        method: str,
        path: str,
        retry_after_s: Optional[float] = None,
        reset_at: Optional[float] = None,
    ):
        self.retry_after_s = retry_after_s
        self.reset_at = reset_at
        super().__init__(ErrorKind.rate_limited, method=method, path=path, status=429)


class AuthorizationError(TransportError):
    def __init__(self, *, method: str, path: str, status: int):
        super().__init__(ErrorKind.authorization, method=method, path=path, status=status)


class PlanningFailure(LoanManagerError):
    pass


class ExecutionFailure(LoanManagerError):
    pass


def describe_error(exc: BaseException) -> str:
    """Text for an error that is safe to log and to return.

    Our own messages carry identifiers only. Any other exception, and
    `InvalidAmount` (which quotes its input), is reduced to its type name.
    """
    if isinstance(exc, LoanManagerError) and not isinstance(exc, InvalidAmount):
        return str(exc)
    return type(exc).__name__


__all__ = [
    "AuthorizationError",
    "ConfigurationError",
    "ErrorKind",
    "ExecutionFailure",
    "InvalidAmount",
    "LoanManagerError",
    "PlanningFailure",
    "RateLimited",
    "RETRYABLE_KINDS",
    "ScaleMismatch",
    "TransportError",
    "describe_error",
]
