"""
Domain Models - Entities
Pure domain objects with no infrastructure dependencies
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, List, Optional, Set, Tuple, Union


RawValue = Union[Decimal, int, float, str]


class AllocationMode(str, Enum):
    """How a generator's energy is split among subscribers"""
    PERCENTAGE = "percentage"
    PRIORITY = "priority"


class AllocationStatus(str, Enum):
    """Outcome of validating an allocation"""
    VALID = "VALID"
    REJECTED = "REJECTED"


class ValidationErrorCode(str, Enum):
    """Structured validation codes surfaced to the operator"""
    EMPTY_SELECTION = "EmptySelection"
    DUPLICATE_SUBSCRIBER = "DuplicateSubscriber"
    SUBSCRIBER_NOT_ELIGIBLE = "SubscriberNotEligible"
    OUT_OF_RANGE = "OutOfRange"
    PERCENTAGE_SUM_MISMATCH = "PercentageSumMismatch"
    INVALID_PRIORITY = "InvalidPriority"
    DUPLICATE_PRIORITY = "DuplicatePriority"
    ZERO_PERCENTAGE = "ZeroPercentage"


@dataclass(frozen=True)
class Generator:
    """Solar plant snapshot as read from the repository - Immutable"""
    id: str
    nickname: str
    grid_unit_id: str
    expected_generation_kwh: Decimal
    linked_subscriber_ids: FrozenSet[str] = frozenset()
    grid_operator: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Generator id cannot be empty")
        if self.expected_generation_kwh < Decimal('0'):
            raise ValueError("Expected generation cannot be negative")


@dataclass(frozen=True)
class Subscriber:
    """Account entitled to a share of a generator's output - Immutable"""
    id: str
    display_name: str
    grid_unit_id: str
    contracted_consumption_kwh: Decimal = Decimal('0')


@dataclass(frozen=True)
class AllocationEntry:
    """
    Operator input for one subscriber.

    raw_value is a percentage (0-100) or a priority rank depending on the mode.
    It is kept loosely typed because it comes straight from a form field.
    """
    subscriber_id: str
    raw_value: RawValue


@dataclass(frozen=True)
class AllocationResult:
    """kWh assigned to one subscriber - Immutable"""
    subscriber_id: str
    allocated_kwh: Decimal
    raw_value: Decimal

    # Audit snapshot, never used in computation
    display_name: Optional[str] = None
    grid_unit_id: Optional[str] = None
    contracted_consumption_kwh: Optional[Decimal] = None

    def __post_init__(self):
        if self.allocated_kwh < Decimal('0'):
            raise ValueError("Allocated kWh cannot be negative")


@dataclass(frozen=True)
class ValidationIssue:
    """A single validation error or warning"""
    code: ValidationErrorCode
    message: str
    subscriber_id: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of checking a proposed set of entries"""
    is_valid: bool
    errors: Tuple[ValidationIssue, ...] = ()
    warnings: Tuple[ValidationIssue, ...] = ()

    @property
    def error_codes(self) -> Set[ValidationErrorCode]:
        return {issue.code for issue in self.errors}

    @property
    def messages(self) -> List[str]:
        return [issue.message for issue in self.errors]


@dataclass(frozen=True)
class Distribution:
    """Calculator output before it is snapshotted into a record"""
    results: Tuple[AllocationResult, ...]
    leftover_kwh: Decimal

    @property
    def total_distributed_kwh(self) -> Decimal:
        return sum((r.allocated_kwh for r in self.results), Decimal('0'))


@dataclass(frozen=True)
class AllocationRecord:
    """
    Persistable rateio snapshot - Immutable audit record

    total_expected_kwh is copied from the generator when the record is built
    and never follows later edits to the generator.
    """
    generator_id: str
    mode: AllocationMode
    total_expected_kwh: Decimal
    results: Tuple[AllocationResult, ...]
    leftover_kwh: Decimal
    created_at: datetime
    reference_date: date
    status: AllocationStatus = AllocationStatus.VALID
    generator_nickname: Optional[str] = None
    generator_grid_unit_id: Optional[str] = None
    notes: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self):
        if self.leftover_kwh < Decimal('0'):
            raise ValueError("Leftover kWh cannot be negative")
        subscriber_ids = [r.subscriber_id for r in self.results]
        if len(subscriber_ids) != len(set(subscriber_ids)):
            raise ValueError("Subscriber ids in a record must be unique")

    @property
    def total_distributed_kwh(self) -> Decimal:
        """Sum of all allocated kWh"""
        return sum((r.allocated_kwh for r in self.results), Decimal('0'))

    @property
    def subscriber_count(self) -> int:
        return len(self.results)
