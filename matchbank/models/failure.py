"""
Failure Taxonomy: Typed Errors for Money-Moving Operations.

Every failure branch in the trade engine and the resolvers raises one of the
exceptions below with an explicit `ErrorKind`. Nothing downstream inspects
error messages to decide what went wrong.

Two classifications travel with each error:
- ErrorCode: the status taxonomy exposed to callers (maps to HTTP status)
- ErrorKind: the audit classification used for statistics and alerting

AUTHORITY BOUNDARY:
The API converts every MarketError into an `ApiResponse` envelope through
`MarketError.to_response()`. Unexpected exceptions are wrapped as
InternalError before they reach the caller.
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Status taxonomy delivered to callers."""

    UNAUTHENTICATED = "unauthenticated"
    PERMISSION_DENIED = "permission-denied"
    INVALID_ARGUMENT = "invalid-argument"
    NOT_FOUND = "not-found"
    FAILED_PRECONDITION = "failed-precondition"
    RESOURCE_EXHAUSTED = "resource-exhausted"
    INTERNAL = "internal"


class ErrorKind(str, Enum):
    """Audit classification of a failure."""

    DUPLICATE_SUBMISSION = "DUPLICATE_SUBMISSION"
    TRANSACTION_ROLLBACK = "TRANSACTION_ROLLBACK"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    LISTING_NOT_FOUND = "LISTING_NOT_FOUND"
    LISTING_INACTIVE = "LISTING_INACTIVE"
    CARD_NOT_FOUND = "CARD_NOT_FOUND"
    CARD_LOCKED = "CARD_LOCKED"
    PACK_NOT_FOUND = "PACK_NOT_FOUND"
    PACK_OUT_OF_STOCK = "PACK_OUT_OF_STOCK"
    PLAYER_POOL_EMPTY = "PLAYER_POOL_EMPTY"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    GAMEWEEK_NOT_FOUND = "GAMEWEEK_NOT_FOUND"
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    SELF_PURCHASE = "SELF_PURCHASE"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    INVALID_STATE = "INVALID_STATE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


CRITICAL_KINDS = frozenset(
    {
        ErrorKind.DUPLICATE_SUBMISSION,
        ErrorKind.TRANSACTION_ROLLBACK,
        ErrorKind.INTERNAL_ERROR,
    }
)


def is_critical(kind: ErrorKind) -> bool:
    """Critical kinds count toward the CRITICAL alert threshold."""
    return kind in CRITICAL_KINDS


STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.INVALID_ARGUMENT: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FAILED_PRECONDITION: 400,
    ErrorCode.RESOURCE_EXHAUSTED: 429,
    ErrorCode.INTERNAL: 500,
}

# User-facing messages. Fixed per code so callers can localize them.
USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.UNAUTHENTICATED: "You must be signed in to perform this action.",
    ErrorCode.PERMISSION_DENIED: "You are not allowed to perform this action.",
    ErrorCode.INVALID_ARGUMENT: "The request contains invalid data.",
    ErrorCode.NOT_FOUND: "The requested item could not be found.",
    ErrorCode.FAILED_PRECONDITION: "This action cannot be completed right now.",
    ErrorCode.RESOURCE_EXHAUSTED: "Too many attempts. Please wait a few moments and retry.",
    ErrorCode.INTERNAL: "Something went wrong on our side. Please try again.",
}

# Kind-specific messages take precedence over the per-code message.
KIND_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INSUFFICIENT_BALANCE: "You do not have enough coins for this purchase.",
    ErrorKind.PACK_OUT_OF_STOCK: "This pack is out of stock.",
    ErrorKind.CARD_LOCKED: "This card is already locked.",
    ErrorKind.LISTING_INACTIVE: "This listing is no longer active.",
    ErrorKind.SELF_PURCHASE: "You cannot buy your own listing.",
}


def user_message(code: ErrorCode, kind: ErrorKind) -> str:
    """Return the user-facing message for an error."""
    return KIND_MESSAGES.get(kind, USER_MESSAGES[code])


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


T = TypeVar("T")


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    code: ErrorCode = Field(..., description="Status taxonomy code")
    kind: ErrorKind = Field(..., description="Audit classification of the failure")
    message: str = Field(..., description="User-appropriate explanation")
    detail: str | None = Field(default=None, description="Technical detail (optional)")
    suggestion: str | None = Field(default=None, description="Suggested action for the user")


class ApiResponse(BaseModel, Generic[T]):
    """Response envelope for marketplace and resolution endpoints."""

    outcome: OutcomeType
    data: T | None = None
    failure: FailureDetail | None = None

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        """Create a success response."""
        return cls(outcome=OutcomeType.SUCCESS, data=data)

    @classmethod
    def known_failure(
        cls,
        code: ErrorCode,
        kind: ErrorKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> "ApiResponse[Any]":
        """Create a known failure response."""
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                code=code,
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
            ),
        )

    @classmethod
    def unknown_failure(cls, detail: str | None = None) -> "ApiResponse[Any]":
        """Create an unknown failure response. The message is fixed."""
        return cls(
            outcome=OutcomeType.UNKNOWN_FAILURE,
            failure=FailureDetail(
                code=ErrorCode.INTERNAL,
                kind=ErrorKind.INTERNAL_ERROR,
                message=USER_MESSAGES[ErrorCode.INTERNAL],
                detail=detail,
                suggestion="If this persists, please report the issue.",
            ),
        )


# =============================================================================
# EXCEPTIONS
# =============================================================================


class MarketError(Exception):
    """
    Base class for classified failures.

    Subclasses fix the ErrorCode; each raise site supplies the ErrorKind.
    """

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.code]

    def to_response(self) -> ApiResponse[Any]:
        """Convert to an ApiResponse carrying the user-facing message."""
        return ApiResponse.known_failure(
            code=self.code,
            kind=self.kind,
            message=user_message(self.code, self.kind),
            detail=self.message,
            suggestion=self.suggestion,
        )


class Unauthenticated(MarketError):
    code = ErrorCode.UNAUTHENTICATED

    def __init__(self, message: str = "User must be logged in.") -> None:
        super().__init__(kind=ErrorKind.UNAUTHORIZED, message=message)


class InvalidArgument(MarketError):
    code = ErrorCode.INVALID_ARGUMENT

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(kind=ErrorKind.INVALID_ARGUMENT, message=message, detail=detail)


class NotFound(MarketError):
    code = ErrorCode.NOT_FOUND


class PreconditionFailed(MarketError):
    code = ErrorCode.FAILED_PRECONDITION


class PermissionDenied(MarketError):
    code = ErrorCode.PERMISSION_DENIED

    def __init__(self, message: str) -> None:
        super().__init__(kind=ErrorKind.UNAUTHORIZED, message=message)


class ResourceExhausted(MarketError):
    """
    Raised when the duplicate-submission guard blocks a request.

    Always raised before any ledger mutation.
    """

    code = ErrorCode.RESOURCE_EXHAUSTED

    def __init__(self, attempts: int, window_ms: int) -> None:
        self.attempts = attempts
        self.window_ms = window_ms
        super().__init__(
            kind=ErrorKind.DUPLICATE_SUBMISSION,
            message="Too many identical requests.",
            detail=f"{attempts} attempts within {window_ms}ms",
            suggestion="Wait a few seconds before retrying.",
        )


class InternalError(MarketError):
    code = ErrorCode.INTERNAL

    def __init__(
        self,
        message: str = "Internal server error.",
        kind: ErrorKind = ErrorKind.INTERNAL_ERROR,
        detail: str | None = None,
    ) -> None:
        super().__init__(kind=kind, message=message, detail=detail)
