"""
Explicit result values shared by the authorization gate, the routes and the
HTTP boundary.

Why:
    Gate and data-access steps return `Ok(value)` or `Err(ApiError)` instead of
    raising for expected outcomes (no session, wrong role, not found, bad
    input). Only the HTTP boundary translates an `Err` into a status code, so
    the mapping lives in one place.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    BAD_INPUT = "bad_input"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_FAILURE = "upstream_failure"
    UNKNOWN = "unknown"


STATUS_BY_KIND = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.BAD_INPUT: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_FAILURE: 500,
    ErrorKind.UNKNOWN: 500,
}

_SERVER_KINDS = frozenset({ErrorKind.UPSTREAM_FAILURE, ErrorKind.UNKNOWN})


@dataclass(frozen=True)
class ApiError:
    kind: ErrorKind
    message: str
    cause: Optional[BaseException] = None
    extra: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    @property
    def is_server_error(self) -> bool:
        return self.kind in _SERVER_KINDS

    def public_message(self, action: str) -> str:
        """Message safe to show the caller; server errors never leak detail."""
        if self.is_server_error:
            return f"Failed to {action}"
        return self.message

    # --- constructors ---------------------------------------------------------

    @classmethod
    def unauthenticated(cls) -> "ApiError":
        return cls(ErrorKind.UNAUTHENTICATED, "Unauthorized")

    @classmethod
    def forbidden(cls, message: str = "Forbidden") -> "ApiError":
        return cls(ErrorKind.FORBIDDEN, message)

    @classmethod
    def not_found(cls, resource: str = "Resource") -> "ApiError":
        return cls(ErrorKind.NOT_FOUND, f"{resource} not found")

    @classmethod
    def bad_input(cls, message: str, **extra: Any) -> "ApiError":
        return cls(ErrorKind.BAD_INPUT, message, extra=extra)

    @classmethod
    def required(cls, field_name: str) -> "ApiError":
        return cls(ErrorKind.BAD_INPUT, f"{field_name} required")

    @classmethod
    def rate_limited(cls, message: str, *, headers: dict[str, str] | None = None, **extra: Any) -> "ApiError":
        return cls(ErrorKind.RATE_LIMITED, message, extra=extra, headers=dict(headers or {}))

    @classmethod
    def upstream(cls, cause: BaseException) -> "ApiError":
        return cls(ErrorKind.UPSTREAM_FAILURE, f"{cause.__class__.__name__}: {cause}", cause=cause)

    @classmethod
    def unknown(cls, cause: BaseException) -> "ApiError":
        return cls(ErrorKind.UNKNOWN, f"{cause.__class__.__name__}: {cause}", cause=cause)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    status_code: int = 200


@dataclass(frozen=True)
class Err:
    error: ApiError


Result = Union[Ok[T], Err]


class UpstreamError(Exception):
    """Raised by collaborator adapters when an external service is unavailable."""


__all__ = [
    "ApiError",
    "Err",
    "ErrorKind",
    "Ok",
    "Result",
    "STATUS_BY_KIND",
    "UpstreamError",
]
