"""
Rateio API Routes
Validate, submit and review energy rateios for a generator

Submission outcomes:
- 201 → record persisted
- 422 → ValidationFailed (operator must fix the entries)
- 404 → GeneratorNotFound
- 409 → ConcurrentGeneratorMutation (re-confirm expected generation)
- 503 → RepositoryUnavailable (safe to retry)
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rateio.config import settings

from rateio.domain.models import (
    AllocationEntry,
    AllocationMode,
    AllocationRecord,
    RateioErrorKind,
    RepositoryUnavailableError,
    ValidationResult,
)
from rateio.domain.services.rateio_builder import RateioBuilder
from rateio.domain.services.rateio_report import build_report, filter_history, summarize_history
from rateio.domain.services.validation_rules import validate
from rateio.infrastructure.db.database import get_db
from rateio.infrastructure.db.repositories.rateio_repository import RateioRepository
from rateio.utils.time import month_label, to_brt_iso_db

router = APIRouter()

ERROR_STATUS = {
    RateioErrorKind.VALIDATION_FAILED: 422,
    RateioErrorKind.GENERATOR_NOT_FOUND: 404,
    RateioErrorKind.CONCURRENT_GENERATOR_MUTATION: 409,
    RateioErrorKind.REPOSITORY_UNAVAILABLE: 503,
}


# -------------------------------------------------------------------
# Request models
# -------------------------------------------------------------------

class EntryRequest(BaseModel):
    """One subscriber line of the rateio form"""
    subscriber_id: str = Field(..., min_length=1)
    raw_value: Decimal = Field(..., description="Percentage (0-100) or priority rank (1 = first)")


class RateioRequest(BaseModel):
    """Rateio submission"""
    generator_id: str = Field(..., min_length=1)
    mode: AllocationMode
    entries: List[EntryRequest] = Field(default_factory=list)
    reference_date: Optional[date] = Field(None, description="Rateio date (default: today)")
    notes: Optional[str] = Field(None, max_length=2000)
    confirmed_generation_kwh: Optional[Decimal] = Field(
        None, ge=0, description="Expected generation the operator saw when filling the form"
    )

    def to_entries(self) -> List[AllocationEntry]:
        return [AllocationEntry(subscriber_id=e.subscriber_id, raw_value=e.raw_value) for e in self.entries]


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def validation_payload(validation: ValidationResult) -> dict:
    return {
        "is_valid": validation.is_valid,
        "errors": [
            {"code": i.code.value, "message": i.message, "subscriber_id": i.subscriber_id}
            for i in validation.errors
        ],
        "warnings": [
            {"code": i.code.value, "message": i.message, "subscriber_id": i.subscriber_id}
            for i in validation.warnings
        ],
    }


def record_summary(record: AllocationRecord) -> dict:
    return {
        "id": record.id,
        "generator_id": record.generator_id,
        "mode": record.mode.value,
        "period": month_label(record.reference_date),
        "reference_date": record.reference_date.isoformat(),
        "created_at": to_brt_iso_db(record.created_at),
        "subscribers": record.subscriber_count,
        "total_expected_kwh": float(record.total_expected_kwh),
        "total_distributed_kwh": float(record.total_distributed_kwh),
        "leftover_kwh": float(record.leftover_kwh),
    }


def storage_unavailable(exc: RepositoryUnavailableError) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"kind": RateioErrorKind.REPOSITORY_UNAVAILABLE.value, "message": str(exc), "retryable": True}
    )


# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------

@router.post("/validate")
async def validate_rateio(request: RateioRequest, db: AsyncSession = Depends(get_db)):
    """Dry-run validation (nothing is saved)"""
    builder = RateioBuilder(RateioRepository(db))
    try:
        scope = await builder.load_scope(request.generator_id)
    except RepositoryUnavailableError as exc:
        raise storage_unavailable(exc)

    if scope is None:
        raise HTTPException(status_code=404, detail=f"Generator {request.generator_id} not found")

    generator, _ = scope
    validation = validate(request.mode, request.to_entries(), generator)
    return validation_payload(validation)


@router.post("", status_code=201)
async def submit_rateio(request: RateioRequest, db: AsyncSession = Depends(get_db)):
    """Validate, calculate and persist a rateio"""
    builder = RateioBuilder(RateioRepository(db))
    outcome = await builder.build_and_submit(
        request.generator_id,
        request.mode,
        request.to_entries(),
        reference_date=request.reference_date,
        notes=request.notes,
        confirmed_generation_kwh=request.confirmed_generation_kwh,
    )

    if not outcome.ok:
        error = outcome.error
        detail = {
            "kind": error.kind.value,
            "message": error.message,
            "retryable": error.retryable,
        }
        if outcome.validation is not None:
            detail["validation"] = validation_payload(outcome.validation)
        raise HTTPException(status_code=ERROR_STATUS[error.kind], detail=detail)

    report = build_report(outcome.record)
    if outcome.validation is not None:
        report["warnings"] = validation_payload(outcome.validation)["warnings"]
    return report


@router.get("/generators/{generator_id}/subscribers")
async def eligible_subscribers(generator_id: str, db: AsyncSession = Depends(get_db)):
    """Subscribers that may take part in this generator's rateio"""
    repo = RateioRepository(db)
    try:
        generator = await repo.get_generator(generator_id)
        if generator is None:
            raise HTTPException(status_code=404, detail=f"Generator {generator_id} not found")
        subscribers = await repo.get_eligible_subscribers(generator_id)
    except RepositoryUnavailableError as exc:
        raise storage_unavailable(exc)

    return {
        "generator_id": generator.id,
        "nickname": generator.nickname,
        "expected_generation_kwh": float(generator.expected_generation_kwh),
        "subscribers": [
            {
                "id": s.id,
                "display_name": s.display_name,
                "grid_unit_id": s.grid_unit_id,
                "contracted_consumption_kwh": float(s.contracted_consumption_kwh),
            }
            for s in subscribers
        ],
    }


@router.get("/generators/{generator_id}/history")
async def rateio_history(
    generator_id: str,
    period: Optional[str] = Query(None, description="MM/YYYY"),
    mode: Optional[AllocationMode] = Query(None),
    sort_by: str = Query("date", description="date | energy | subscribers"),
    limit: int = Query(settings.HISTORY_PAGE_SIZE, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Past rateios of a generator"""
    repo = RateioRepository(db)
    try:
        records = await repo.list_allocation_history(generator_id)
    except RepositoryUnavailableError as exc:
        raise storage_unavailable(exc)

    try:
        selected = filter_history(records, period=period, mode=mode, sort_by=sort_by)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return [record_summary(r) for r in selected[:limit]]


@router.get("/stats")
async def rateio_stats(db: AsyncSession = Depends(get_db)):
    """Dashboard totals across all rateios"""
    repo = RateioRepository(db)
    try:
        records = await repo.list_recent(limit=None)
    except RepositoryUnavailableError as exc:
        raise storage_unavailable(exc)

    stats = summarize_history(records)
    return {
        "total_rateios": stats.total_rateios,
        "total_distributed_kwh": float(stats.total_distributed_kwh),
        "active_generators": stats.active_generators,
        "distinct_subscribers": stats.distinct_subscribers,
    }


@router.get("/{record_id}/report")
async def rateio_report(record_id: int, db: AsyncSession = Depends(get_db)):
    """Audit report of one stored rateio"""
    repo = RateioRepository(db)
    try:
        record = await repo.get_allocation_record(record_id)
    except RepositoryUnavailableError as exc:
        raise storage_unavailable(exc)

    if record is None:
        raise HTTPException(status_code=404, detail=f"Rateio {record_id} not found")
    return build_report(record)
