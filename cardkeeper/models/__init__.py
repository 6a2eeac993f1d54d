from cardkeeper.models.failure import (
    ApiResponse,
    EvaluationError,
    ExpressionParseError,
    ExpressionValidationError,
    FailureDetail,
    FailureKind,
    JobConflictError,
    KnownError,
    NotFoundError,
    OutcomeType,
)
from cardkeeper.models.job import (
    ACTIVE_STATUSES,
    JobStatus,
    JobType,
    ResortPhase,
    ResortProgress,
)
from cardkeeper.models.sorting_rule import SortingRule

__all__ = [
    "ACTIVE_STATUSES",
    "ApiResponse",
    "EvaluationError",
    "ExpressionParseError",
    "ExpressionValidationError",
    "FailureDetail",
    "FailureKind",
    "JobConflictError",
    "JobStatus",
    "JobType",
    "KnownError",
    "NotFoundError",
    "OutcomeType",
    "ResortPhase",
    "ResortProgress",
    "SortingRule",
]
