"""Error taxonomy and result values for the tenancy subsystem.

Directory lookups, context changes, repository operations, resolution and
policy evaluation return a ``Result`` instead of raising, so that callers
must branch on every outcome. Only the resolution middleware and the
authorization dependencies turn a failed result into an HTTP response, via
``problem_response``.

The isolation listeners are the exception: SQLAlchemy session events cannot
return values, so they raise ``TenantIsolationError`` subclasses, which the
application maps to 403 problem responses.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from fastapi import Request, status
from fastapi.responses import JSONResponse

from observability.request_id import get_request_id


T = TypeVar("T")

PROBLEM_CONTENT_TYPE = "application/problem+json"


class TenantErrorKind(str, Enum):
    """Categories of tenancy failures and their HTTP status codes."""
    MALFORMED_INPUT = "malformed_input"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    CROSS_TENANT_VIOLATION = "cross_tenant_violation"
    CONFLICT = "conflict"
    INTERNAL_FAILURE = "internal_failure"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def title(self) -> str:
        return _TITLES[self]


_STATUS_CODES = {
    TenantErrorKind.MALFORMED_INPUT: status.HTTP_400_BAD_REQUEST,
    TenantErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    TenantErrorKind.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    TenantErrorKind.CROSS_TENANT_VIOLATION: status.HTTP_403_FORBIDDEN,
    TenantErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    TenantErrorKind.INTERNAL_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_TITLES = {
    TenantErrorKind.MALFORMED_INPUT: "Invalid tenant identifier",
    TenantErrorKind.NOT_FOUND: "Tenant not found",
    TenantErrorKind.ACCESS_DENIED: "Access denied",
    TenantErrorKind.CROSS_TENANT_VIOLATION: "Cross-tenant access denied",
    TenantErrorKind.CONFLICT: "Conflict",
    TenantErrorKind.INTERNAL_FAILURE: "Internal server error",
}

# Detail shown to callers for internal failures; the real cause is only logged
GENERIC_INTERNAL_DETAIL = "An unexpected error occurred while processing the tenant request."


@dataclass(frozen=True)
class TenantError:
    """A tenancy failure: what kind it is and a caller-safe explanation."""
    kind: TenantErrorKind
    detail: str
    title: Optional[str] = None

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @classmethod
    def malformed(cls, detail: str) -> "TenantError":
        return cls(TenantErrorKind.MALFORMED_INPUT, detail)

    @classmethod
    def not_found(cls, detail: str) -> "TenantError":
        return cls(TenantErrorKind.NOT_FOUND, detail)

    @classmethod
    def access_denied(cls, detail: str) -> "TenantError":
        return cls(TenantErrorKind.ACCESS_DENIED, detail)

    @classmethod
    def cross_tenant(cls, detail: str) -> "TenantError":
        return cls(TenantErrorKind.CROSS_TENANT_VIOLATION, detail)

    @classmethod
    def conflict(cls, detail: str) -> "TenantError":
        return cls(TenantErrorKind.CONFLICT, detail)

    @classmethod
    def internal(cls, detail: str = GENERIC_INTERNAL_DETAIL) -> "TenantError":
        return cls(TenantErrorKind.INTERNAL_FAILURE, detail)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation: either a value or a TenantError.

    Example:
        result = directory.update_status(tenant_id, TenantStatus.SUSPENDED)
        if not result.is_ok:
            return problem_response(result.error, request)
        tenant = result.value
    """
    value: Optional[T] = None
    error: Optional[TenantError] = None

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: TenantError) -> "Result[T]":
        return cls(error=error)


class TenantIsolationError(Exception):
    """Raised from session events when a statement would break tenant isolation."""

    kind = TenantErrorKind.ACCESS_DENIED

    def to_error(self) -> TenantError:
        return TenantError(self.kind, str(self))


class TenantContextRequiredError(TenantIsolationError):
    """Tenant-owned data was touched without a valid tenant context."""


class CrossTenantWriteError(TenantIsolationError):
    """A write targeted a tenant other than the one in the active context."""

    kind = TenantErrorKind.CROSS_TENANT_VIOLATION


class CrossTenantAccessError(TenantIsolationError):
    """An all-tenants read was requested by a caller who is not a system administrator."""

    kind = TenantErrorKind.CROSS_TENANT_VIOLATION


def problem_body(
    status_code: int,
    title: str,
    detail: str,
    instance: Optional[str] = None,
    error_type: str = "about:blank",
) -> dict:
    """Build an RFC 7807 problem details body."""
    return {
        "type": error_type,
        "title": title,
        "status": status_code,
        "detail": detail,
        "instance": instance,
        "request_id": get_request_id(),
    }


def problem_response(error: TenantError, request: Optional[Request] = None) -> JSONResponse:
    """Render a TenantError as an application/problem+json response.

    Args:
        error: The failure to render
        request: Current request (its path becomes the problem instance)

    Returns:
        JSONResponse: Problem details response with the error's status code
    """
    return JSONResponse(
        status_code=error.status_code,
        content=problem_body(
            status_code=error.status_code,
            title=error.title or error.kind.title,
            detail=error.detail,
            instance=request.url.path if request is not None else None,
            error_type=f"https://rescueranger.com/problems/{error.kind.value.replace('_', '-')}",
        ),
        media_type=PROBLEM_CONTENT_TYPE,
    )
