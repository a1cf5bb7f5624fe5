"""
Domain Errors
Failure kinds returned by the rateio builder, plus the two exceptions
that are actually raised (contract misuse and storage outages)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from .entities import ValidationIssue


class RateioErrorKind(str, Enum):
    """Reasons a submission did not produce a persisted record"""
    VALIDATION_FAILED = "ValidationFailed"
    GENERATOR_NOT_FOUND = "GeneratorNotFound"
    REPOSITORY_UNAVAILABLE = "RepositoryUnavailable"
    CONCURRENT_GENERATOR_MUTATION = "ConcurrentGeneratorMutation"


@dataclass(frozen=True)
class RateioError:
    """Failure returned (not raised) by build_and_submit"""
    kind: RateioErrorKind
    message: str
    issues: Tuple[ValidationIssue, ...] = ()
    retryable: bool = False


class PreconditionViolated(RuntimeError):
    """Calculator invoked on entries that were never validated"""


class RepositoryUnavailableError(RuntimeError):
    """Storage could not be read or written"""
