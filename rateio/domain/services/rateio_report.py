"""
Rateio history filtering, dashboard stats and per-record reports.
Read-only views over stored AllocationRecords.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Sequence

from rateio.domain.models import AllocationMode, AllocationRecord
from rateio.utils.time import month_label, to_brt_iso_db

SORT_KEYS = ("date", "energy", "subscribers")


@dataclass(frozen=True)
class RateioStats:
    """Headline numbers for the rateio dashboard"""
    total_rateios: int
    total_distributed_kwh: Decimal
    active_generators: int
    distinct_subscribers: int


def filter_history(
    records: Sequence[AllocationRecord],
    period: Optional[str] = None,
    mode: Optional[AllocationMode] = None,
    sort_by: str = "date"
) -> List[AllocationRecord]:
    """
    Filter and order past rateios

    Args:
        records: Records to filter
        period: MM/YYYY matched against reference_date (substring match,
            so "2025" keeps the whole year)
        mode: Keep only this allocation mode
        sort_by: "date" (newest first), "energy" (largest first) or
            "subscribers" (most first)

    Returns:
        Filtered, sorted list
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"sort_by must be one of {', '.join(SORT_KEYS)}")

    selected = list(records)
    if period:
        needle = period.strip()
        selected = [r for r in selected if needle in month_label(r.reference_date)]
    if mode is not None:
        mode = AllocationMode(mode)
        selected = [r for r in selected if r.mode == mode]

    if sort_by == "energy":
        return sorted(selected, key=lambda r: r.total_expected_kwh, reverse=True)
    if sort_by == "subscribers":
        return sorted(selected, key=lambda r: r.subscriber_count, reverse=True)
    return sorted(selected, key=lambda r: (r.reference_date, r.created_at), reverse=True)


def summarize_history(records: Sequence[AllocationRecord]) -> RateioStats:
    total = sum((r.total_distributed_kwh for r in records), Decimal('0'))
    subscribers = {result.subscriber_id for r in records for result in r.results}
    return RateioStats(
        total_rateios=len(records),
        total_distributed_kwh=total,
        active_generators=len({r.generator_id for r in records}),
        distinct_subscribers=len(subscribers),
    )


def build_report(record: AllocationRecord) -> Dict[str, Any]:
    """
    Audit view of one record

    Each line carries its share of the expected generation in percent.
    With a zero total every share is reported as 0.
    """
    lines = []
    for position, result in enumerate(record.results, start=1):
        if record.total_expected_kwh > Decimal('0'):
            share = (result.allocated_kwh / record.total_expected_kwh * Decimal('100')).quantize(
                Decimal('0.01'), rounding=ROUND_HALF_UP
            )
        else:
            share = Decimal('0.00')

        lines.append({
            "position": position,
            "subscriber_id": result.subscriber_id,
            "subscriber_name": result.display_name,
            "grid_unit_id": result.grid_unit_id,
            "contracted_consumption_kwh": result.contracted_consumption_kwh,
            "raw_value": result.raw_value,
            "allocated_kwh": result.allocated_kwh,
            "share_pct": share,
        })

    return {
        "id": record.id,
        "generator_id": record.generator_id,
        "generator_nickname": record.generator_nickname,
        "generator_grid_unit_id": record.generator_grid_unit_id,
        "mode": record.mode.value,
        "period": month_label(record.reference_date),
        "reference_date": record.reference_date.isoformat(),
        "created_at": to_brt_iso_db(record.created_at),
        "total_expected_kwh": record.total_expected_kwh,
        "total_distributed_kwh": record.total_distributed_kwh,
        "leftover_kwh": record.leftover_kwh,
        "status": record.status.value,
        "notes": record.notes,
        "lines": lines,
    }
