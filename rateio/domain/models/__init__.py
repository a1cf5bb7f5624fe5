"""
Domain Models Package
Export all domain entities
"""

from .entities import (
    # Enums
    AllocationMode,
    AllocationStatus,
    ValidationErrorCode,

    # Entities
    AllocationEntry,
    AllocationRecord,
    AllocationResult,
    Distribution,
    Generator,
    RawValue,
    Subscriber,
    ValidationIssue,
    ValidationResult,
)
from .errors import (
    PreconditionViolated,
    RateioError,
    RateioErrorKind,
    RepositoryUnavailableError,
)

__all__ = [
    # Enums
    "AllocationMode",
    "AllocationStatus",
    "ValidationErrorCode",

    # Entities
    "AllocationEntry",
    "AllocationRecord",
    "AllocationResult",
    "Distribution",
    "Generator",
    "RawValue",
    "Subscriber",
    "ValidationIssue",
    "ValidationResult",

    # Errors
    "PreconditionViolated",
    "RateioError",
    "RateioErrorKind",
    "RepositoryUnavailableError",
]
