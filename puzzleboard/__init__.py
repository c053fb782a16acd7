from .errors import (
    AuthorizationError,
    DuplicateSubmission,
    ExportGenerationError,
    PuzzleboardError,
    StoreOperationError,
    StoreUnavailable,
    ValidationError,
)
from .readiness import ReadinessState, ReadinessTracker

__all__ = [
    "AuthorizationError",
    "DuplicateSubmission",
    "ExportGenerationError",
    "PuzzleboardError",
    "ReadinessState",
    "ReadinessTracker",
    "StoreOperationError",
    "StoreUnavailable",
    "ValidationError",
]
