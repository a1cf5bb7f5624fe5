"""
VALIDATION RULES
Decide whether a proposed rateio is acceptable before any kWh math runs

RULES:
❌ No I/O
❌ No auto-normalization (99% is never stretched to 100%)
❌ Never raises for bad operator input
✅ Structured issues naming the offending subscriber
✅ Same input → same result
"""

from collections import Counter
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence

from rateio.domain.models import (
    AllocationEntry,
    AllocationMode,
    Generator,
    RawValue,
    ValidationErrorCode,
    ValidationIssue,
    ValidationResult,
)


HUNDRED = Decimal('100')
PERCENTAGE_SUM_TOLERANCE = Decimal('0.01')

# Bounds of rateio_item.raw_value, Numeric(24, 10)
MAX_INTEGER_DIGITS = 14
MAX_DECIMAL_PLACES = 10
_FINEST_STEP = Decimal(1).scaleb(-MAX_DECIMAL_PLACES)


def to_decimal(value: RawValue) -> Optional[Decimal]:
    """
    Parse a form value into a finite Decimal.

    Returns None for anything that is not a finite number, and for numbers
    outside what a rateio line can store (14 integer digits, 10 decimal
    places). Trailing zeros past the 10th place are dropped, any other
    digit there makes the value unusable. Booleans are rejected even though
    Python treats them as ints.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not result.is_finite():
        return None
    if result.adjusted() >= MAX_INTEGER_DIGITS:
        return None
    if result.as_tuple().exponent < -MAX_DECIMAL_PLACES:
        trimmed = result.quantize(_FINEST_STEP)
        if trimmed != result:
            return None
        result = trimmed
    return result


def validate(
    mode: AllocationMode,
    entries: Sequence[AllocationEntry],
    generator: Generator
) -> ValidationResult:
    """
    Check entries against the mode rules and the generator's eligible set

    Args:
        mode: Percentage or priority
        entries: Operator input, one per selected subscriber
        generator: Generator whose linked_subscriber_ids is the eligible set

    Returns:
        ValidationResult with blocking errors and non-blocking warnings
    """
    mode = AllocationMode(mode)

    if not entries:
        return ValidationResult(is_valid=False, errors=(_empty_selection(),))

    errors = _duplicate_subscribers(entries)
    errors.extend(_ineligible_subscribers(entries, generator))
    errors.extend(_value_issues(mode, entries))
    warnings = _zero_percentage_warnings(entries) if mode == AllocationMode.PERCENTAGE else []

    return ValidationResult(is_valid=not errors, errors=tuple(errors), warnings=tuple(warnings))


def check_entries(
    mode: AllocationMode,
    entries: Sequence[AllocationEntry]
) -> List[ValidationIssue]:
    """
    Generator-independent subset of validate().
    Used by the calculator to enforce its precondition.
    """
    mode = AllocationMode(mode)
    if not entries:
        return [_empty_selection()]

    issues = _duplicate_subscribers(entries)
    issues.extend(_value_issues(mode, entries))
    return issues


def _empty_selection() -> ValidationIssue:
    return ValidationIssue(
        code=ValidationErrorCode.EMPTY_SELECTION,
        message="Select at least one subscriber"
    )


def _duplicate_subscribers(entries: Sequence[AllocationEntry]) -> List[ValidationIssue]:
    counts = Counter(entry.subscriber_id for entry in entries)
    return [
        ValidationIssue(
            code=ValidationErrorCode.DUPLICATE_SUBSCRIBER,
            message=f"Subscriber {subscriber_id} appears {count} times",
            subscriber_id=subscriber_id
        )
        for subscriber_id, count in counts.items()
        if count > 1
    ]


def _ineligible_subscribers(
    entries: Sequence[AllocationEntry],
    generator: Generator
) -> List[ValidationIssue]:
    issues = []
    reported = set()

    for entry in entries:
        if entry.subscriber_id in generator.linked_subscriber_ids:
            continue
        if entry.subscriber_id in reported:
            continue
        reported.add(entry.subscriber_id)
        issues.append(ValidationIssue(
            code=ValidationErrorCode.SUBSCRIBER_NOT_ELIGIBLE,
            message=f"Subscriber {entry.subscriber_id} is not linked to generator {generator.id}",
            subscriber_id=entry.subscriber_id
        ))

    return issues


def _value_issues(
    mode: AllocationMode,
    entries: Sequence[AllocationEntry]
) -> List[ValidationIssue]:
    if mode == AllocationMode.PERCENTAGE:
        return _percentage_issues(entries)
    return _priority_issues(entries)


def _percentage_issues(entries: Sequence[AllocationEntry]) -> List[ValidationIssue]:
    issues = []
    total = Decimal('0')
    summable = True

    for entry in entries:
        value = to_decimal(entry.raw_value)
        if value is None:
            summable = False
        else:
            total += value

        if value is None or value < Decimal('0') or value > HUNDRED:
            issues.append(ValidationIssue(
                code=ValidationErrorCode.OUT_OF_RANGE,
                message=f"Percentage for {entry.subscriber_id} must be between 0 and 100, got {entry.raw_value!r}",
                subscriber_id=entry.subscriber_id
            ))

    if summable and abs(total - HUNDRED) > PERCENTAGE_SUM_TOLERANCE:
        issues.append(ValidationIssue(
            code=ValidationErrorCode.PERCENTAGE_SUM_MISMATCH,
            message=f"Percentages must add up to 100%, got {total}%"
        ))

    return issues


def _priority_issues(entries: Sequence[AllocationEntry]) -> List[ValidationIssue]:
    issues = []
    holders: Dict[int, List[str]] = {}

    for entry in entries:
        rank = _parse_rank(entry.raw_value)
        if rank is None:
            issues.append(ValidationIssue(
                code=ValidationErrorCode.INVALID_PRIORITY,
                message=f"Priority for {entry.subscriber_id} must be a positive whole number, got {entry.raw_value!r}",
                subscriber_id=entry.subscriber_id
            ))
            continue
        holders.setdefault(rank, []).append(entry.subscriber_id)

    for rank, subscriber_ids in holders.items():
        if len(subscriber_ids) < 2:
            continue
        for subscriber_id in subscriber_ids[1:]:
            issues.append(ValidationIssue(
                code=ValidationErrorCode.DUPLICATE_PRIORITY,
                message=f"Priority {rank} is shared by {', '.join(subscriber_ids)}",
                subscriber_id=subscriber_id
            ))

    return issues


def _parse_rank(raw_value: RawValue) -> Optional[int]:
    value = to_decimal(raw_value)
    if value is None or value <= Decimal('0'):
        return None
    if value != value.to_integral_value():
        return None
    return int(value)


def _zero_percentage_warnings(entries: Sequence[AllocationEntry]) -> List[ValidationIssue]:
    return [
        ValidationIssue(
            code=ValidationErrorCode.ZERO_PERCENTAGE,
            message=f"Subscriber {entry.subscriber_id} has 0% and will receive no energy",
            subscriber_id=entry.subscriber_id
        )
        for entry in entries
        if to_decimal(entry.raw_value) == Decimal('0')
    ]


def priority_rank(raw_value: RawValue) -> int:
    """Rank of a validated priority entry"""
    rank = _parse_rank(raw_value)
    if rank is None:
        raise ValueError(f"Not a valid priority: {raw_value!r}")
    return rank
