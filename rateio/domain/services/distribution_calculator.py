"""
DISTRIBUTION CALCULATOR
Convert validated entries + expected generation → kWh per subscriber

RESPONSIBILITIES:
- Percentage split with largest-remainder rounding
- Priority waterfall (whole pool to the lowest rank)
- Refuse input that was never validated

RULES:
❌ No I/O, no repository access
❌ No cap by contracted consumption
✅ sum(allocated) + leftover == total, exactly, at 2 decimals
✅ Deterministic output
"""

import logging
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import List, Sequence

from rateio.domain.models import (
    AllocationEntry,
    AllocationMode,
    AllocationResult,
    Distribution,
    PreconditionViolated,
    RawValue,
)
from rateio.domain.services.validation_rules import (
    HUNDRED,
    check_entries,
    priority_rank,
    to_decimal,
)

logger = logging.getLogger(__name__)

KWH_PRECISION = Decimal('0.01')
ZERO_KWH = Decimal('0.00')


def calculate(
    mode: AllocationMode,
    entries: Sequence[AllocationEntry],
    total_expected_kwh: RawValue
) -> Distribution:
    """
    Distribute total_expected_kwh across entries

    Args:
        mode: Percentage or priority
        entries: Entries that already passed validation
        total_expected_kwh: Energy to distribute (>= 0)

    Returns:
        Distribution with results and leftover kWh

    Raises:
        PreconditionViolated: If entries or total would not pass validation
    """
    mode = AllocationMode(mode)
    total = to_decimal(total_expected_kwh)

    problems = [issue.message for issue in check_entries(mode, entries)]
    if total is None or total < Decimal('0'):
        problems.append(f"Total expected kWh must be a non-negative number, got {total_expected_kwh!r}")

    if problems:
        logger.error("Distribution called with unvalidated input: %s", "; ".join(problems))
        raise PreconditionViolated(
            "calculate() requires validated entries: " + "; ".join(problems)
        )

    total = total.quantize(KWH_PRECISION, rounding=ROUND_HALF_UP)

    if mode == AllocationMode.PERCENTAGE:
        results = _split_by_percentage(entries, total)
    else:
        results = _waterfall_by_priority(entries, total)

    return Distribution(results=tuple(results), leftover_kwh=ZERO_KWH)


def _split_by_percentage(
    entries: Sequence[AllocationEntry],
    total: Decimal
) -> List[AllocationResult]:
    shares = [to_decimal(entry.raw_value) for entry in entries]
    exact = [total * share / HUNDRED for share in shares]
    allocated = [value.quantize(KWH_PRECISION, rounding=ROUND_FLOOR) for value in exact]
    remainders = [value - floor for value, floor in zip(exact, allocated)]

    residual_units = int((total - sum(allocated, Decimal('0'))) / KWH_PRECISION)

    if residual_units > 0:
        # Largest remainder first, ties by input order; 0% entries never receive energy
        order = sorted(
            (i for i, share in enumerate(shares) if share > Decimal('0')),
            key=lambda i: (-remainders[i], i)
        )
        rounds, extra = divmod(residual_units, len(order))
        for position, i in enumerate(order):
            units = rounds + (1 if position < extra else 0)
            allocated[i] += KWH_PRECISION * units

    elif residual_units < 0:
        # Shares summed slightly above 100 (inside tolerance): take back from the smallest remainders
        order = sorted(range(len(entries)), key=lambda i: (remainders[i], i))
        deficit = -residual_units
        while deficit:
            for i in order:
                if deficit == 0:
                    break
                if allocated[i] > Decimal('0'):
                    allocated[i] -= KWH_PRECISION
                    deficit -= 1

    return [
        AllocationResult(
            subscriber_id=entry.subscriber_id,
            allocated_kwh=amount,
            raw_value=share
        )
        for entry, share, amount in zip(entries, shares, allocated)
    ]


def _waterfall_by_priority(
    entries: Sequence[AllocationEntry],
    total: Decimal
) -> List[AllocationResult]:
    ordered = sorted(entries, key=lambda entry: priority_rank(entry.raw_value))
    remaining = total
    results = []

    for entry in ordered:
        allocated = remaining
        remaining = ZERO_KWH
        results.append(AllocationResult(
            subscriber_id=entry.subscriber_id,
            allocated_kwh=allocated,
            raw_value=Decimal(priority_rank(entry.raw_value))
        ))

    return results
