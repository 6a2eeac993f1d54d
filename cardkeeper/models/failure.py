"""
Failure Envelope and Error Taxonomy.

Every failure that reaches an API client is classified and explained
through the same envelope. Domain errors subclass ``KnownError`` and carry
the HTTP status they map to; the application installs a single handler that
converts them into an ``ApiResponse``.

Taxonomy:
- ExpressionParseError: malformed expression syntax
- ExpressionValidationError: unknown field or type-incompatible operator
- EvaluationError: runtime type mismatch on one card's actual data
- JobConflictError: a re-sort job is already in progress
- NotFoundError: referenced rule, location or job does not exist

Parse and validation errors block persistence of the offending rule.
Evaluation errors are recovered per card and only counted.
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Expression failures
    PARSE_ERROR = "parse_error"
    VALIDATION_FAILED = "validation_failed"
    EVALUATION_ERROR = "evaluation_error"

    # Resource failures
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"

    # Internal errors
    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


T = TypeVar("T")


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class ApiResponse(BaseModel, Generic[T]):
    """Response envelope used for failures surfaced to the client."""

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    data: T | None = Field(
        default=None,
        description="Response data (present on success)",
    )
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details (present on non-success)",
    )

    @classmethod
    def known_failure(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> "ApiResponse[Any]":
        """
        Create a known failure response.

        Use when the system knows exactly why the operation failed.
        Example: Rule not found, invalid expression.
        """
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
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
                kind=FailureKind.UNKNOWN,
                message="The operation failed for an unknown reason.",
                detail=detail,
                suggestion="If this persists, please report the issue.",
            ),
        )


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ApiResponse[Any]:
        """Convert to an ApiResponse."""
        return ApiResponse.known_failure(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )


class ExpressionParseError(KnownError):
    """
    Raised when expression text is not syntactically valid.

    ``position`` is the 0-based character offset of the offending token,
    or None when the error is not tied to one place (e.g. empty text).
    """

    def __init__(self, message: str, position: int | None = None):
        self.position = position
        if position is not None:
            message = f"{message} at position {position}"
        super().__init__(
            kind=FailureKind.PARSE_ERROR,
            message=message,
            suggestion="Check the expression syntax.",
            status_code=400,
        )


class ExpressionValidationError(KnownError):
    """Raised when an expression parses but cannot be stored."""

    def __init__(self, message: str):
        super().__init__(
            kind=FailureKind.VALIDATION_FAILED,
            message=message,
            suggestion="Use a known field with an operator that fits its type.",
            status_code=400,
        )


class EvaluationError(KnownError):
    """
    Raised when an expression cannot be evaluated against a card's data.

    The field's runtime value does not fit the comparison (legacy data that
    diverges from the declared schema). Callers skip the rule for that card.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(
            kind=FailureKind.EVALUATION_ERROR,
            message=message,
            detail=f"field: {field}",
            status_code=422,
        )


class JobConflictError(KnownError):
    """Raised when a re-sort is triggered while another one is running."""

    def __init__(self, active_job_id: int | None):
        self.active_job_id = active_job_id
        detail = f"active job: {active_job_id}" if active_job_id is not None else None
        super().__init__(
            kind=FailureKind.CONFLICT,
            message="A re-sort job is already in progress.",
            detail=detail,
            suggestion="Wait for the running job to finish or cancel it.",
            status_code=409,
        )


class NotFoundError(KnownError):
    """Raised when a referenced resource does not exist."""

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"{resource} {resource_id} not found",
            status_code=404,
        )
