"""
RATEIO BUILDER
Assemble generator + subscribers + mode + entries into a persisted record

RESPONSIBILITIES:
- Read generator and eligible subscribers from the repository
- Validate, then calculate, then snapshot, then save (strictly in order)
- Detect generator edits between read and snapshot
- Report every outcome as a SubmissionResult

RULES:
❌ Invalid configurations never reach save_allocation_record
❌ No automatic retries (retry policy belongs to the caller)
✅ Only component with side effects
✅ Records are immutable once saved
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from rateio.domain.models import (
    AllocationEntry,
    AllocationMode,
    AllocationRecord,
    AllocationStatus,
    Generator,
    RateioError,
    RateioErrorKind,
    RawValue,
    RepositoryUnavailableError,
    Subscriber,
    ValidationResult,
)
from rateio.domain.services.distribution_calculator import KWH_PRECISION, calculate
from rateio.domain.services.validation_rules import to_decimal, validate
from rateio.utils.time import now_brt_naive, today_brt

logger = logging.getLogger(__name__)


class AllocationRepository(Protocol):
    """Protocol for rateio data access - ASYNC"""

    async def get_generator(self, generator_id: str) -> Optional[Generator]:
        """Get generator or None when it does not exist"""
        ...

    async def get_eligible_subscribers(self, generator_id: str) -> List[Subscriber]:
        """Get subscribers linked to the generator"""
        ...

    async def save_allocation_record(self, record: AllocationRecord) -> int:
        """Persist record with its items, return the new id"""
        ...

    async def list_allocation_history(self, generator_id: str) -> List[AllocationRecord]:
        """Get past records for the generator, newest first"""
        ...


class RateioState(str, Enum):
    """Lifecycle of one submission"""
    COLLECTING = "COLLECTING"
    VALIDATING = "VALIDATING"
    REJECTED = "REJECTED"
    COMPUTED = "COMPUTED"
    PERSISTED = "PERSISTED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SubmissionResult:
    """Either a record id or a RateioError"""
    record_id: Optional[int] = None
    error: Optional[RateioError] = None
    record: Optional[AllocationRecord] = None
    validation: Optional[ValidationResult] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record_id is not None


class RateioDraft:
    """
    Entries being edited by the operator before submit.
    Setting a value twice for the same subscriber replaces it in place.
    """

    def __init__(self, generator_id: str, mode: AllocationMode = AllocationMode.PERCENTAGE):
        self.generator_id = generator_id
        self.mode = AllocationMode(mode)
        self._values: Dict[str, RawValue] = {}

    def set_value(self, subscriber_id: str, raw_value: RawValue) -> None:
        self._values[subscriber_id] = raw_value

    def remove(self, subscriber_id: str) -> None:
        self._values.pop(subscriber_id, None)

    def clear(self) -> None:
        self._values.clear()

    def switch_mode(self, mode: AllocationMode) -> None:
        """Values mean something else in the other mode, so they are dropped"""
        mode = AllocationMode(mode)
        if mode != self.mode:
            self.mode = mode
            self._values.clear()

    def entries(self) -> List[AllocationEntry]:
        return [
            AllocationEntry(subscriber_id=subscriber_id, raw_value=raw_value)
            for subscriber_id, raw_value in self._values.items()
        ]


class RateioBuilder:
    """
    Rateio Builder
    Runs one submission at a time through the state machine
    """

    def __init__(
        self,
        repository: AllocationRepository,
        clock: Callable[[], datetime] = now_brt_naive
    ):
        """
        Initialize builder

        Args:
            repository: Allocation repository (async)
            clock: Source of created_at timestamps
        """
        self.repository = repository
        self.clock = clock
        self.state = RateioState.COLLECTING
        self.transitions: List[RateioState] = [RateioState.COLLECTING]

    async def load_scope(
        self,
        generator_id: str
    ) -> Optional[Tuple[Generator, List[Subscriber]]]:
        """
        Read the generator and its eligible subscribers

        The returned generator's linked_subscriber_ids is replaced with the
        ids returned by get_eligible_subscribers, which is the authority on
        eligibility.

        Returns:
            (generator, subscribers) or None if the generator does not exist

        Raises:
            RepositoryUnavailableError: If storage cannot be read
        """
        generator = await self.repository.get_generator(generator_id)
        if generator is None:
            return None

        subscribers = await self.repository.get_eligible_subscribers(generator_id)
        scoped = replace(
            generator,
            linked_subscriber_ids=frozenset(s.id for s in subscribers)
        )
        return scoped, subscribers

    async def submit_draft(self, draft: RateioDraft, **kwargs) -> SubmissionResult:
        return await self.build_and_submit(draft.generator_id, draft.mode, draft.entries(), **kwargs)

    async def build_and_submit(
        self,
        generator_id: str,
        mode: AllocationMode,
        entries: Sequence[AllocationEntry],
        *,
        reference_date: Optional[date] = None,
        notes: Optional[str] = None,
        confirmed_generation_kwh: Optional[RawValue] = None
    ) -> SubmissionResult:
        """
        Validate, calculate and persist a rateio

        Args:
            generator_id: Generator whose output is distributed
            mode: Percentage or priority
            entries: One entry per selected subscriber
            reference_date: Date of the rateio (default: today)
            notes: Free-text operator notes kept on the record
            confirmed_generation_kwh: Expected generation shown to the operator,
                compared with the stored value before saving

        Returns:
            SubmissionResult with record_id on success, error otherwise
        """
        mode = AllocationMode(mode)
        entries = list(entries)
        self._restart()

        try:
            scope = await self.load_scope(generator_id)
        except RepositoryUnavailableError as exc:
            return self._fail(RateioErrorKind.REPOSITORY_UNAVAILABLE, str(exc), retryable=True)

        if scope is None:
            return self._fail(
                RateioErrorKind.GENERATOR_NOT_FOUND,
                f"Generator {generator_id} not found"
            )
        generator, subscribers = scope

        self._enter(RateioState.VALIDATING)
        validation = validate(mode, entries, generator)
        for warning in validation.warnings:
            logger.warning("⚠️ Rateio %s: %s", generator_id, warning.message)

        if not validation.is_valid:
            self._enter(RateioState.REJECTED)
            self._enter(RateioState.COLLECTING)
            logger.info(
                "Rateio for generator %s rejected: %s",
                generator_id,
                ", ".join(sorted(code.value for code in validation.error_codes))
            )
            return SubmissionResult(
                error=RateioError(
                    kind=RateioErrorKind.VALIDATION_FAILED,
                    message="; ".join(validation.messages),
                    issues=validation.errors
                ),
                validation=validation
            )

        distribution = calculate(mode, entries, generator.expected_generation_kwh)
        self._enter(RateioState.COMPUTED)

        try:
            current = await self.repository.get_generator(generator_id)
        except RepositoryUnavailableError as exc:
            return self._fail(RateioErrorKind.REPOSITORY_UNAVAILABLE, str(exc), retryable=True)

        if current is None:
            return self._fail(
                RateioErrorKind.GENERATOR_NOT_FOUND,
                f"Generator {generator_id} was removed during submission"
            )

        conflict = self._generation_conflict(generator, current, confirmed_generation_kwh)
        if conflict:
            self._enter(RateioState.REJECTED)
            self._enter(RateioState.COLLECTING)
            logger.warning("Rateio for generator %s needs re-confirmation: %s", generator_id, conflict)
            return SubmissionResult(
                error=RateioError(
                    kind=RateioErrorKind.CONCURRENT_GENERATOR_MUTATION,
                    message=conflict
                ),
                validation=validation
            )

        subscribers_by_id = {s.id: s for s in subscribers}
        results = tuple(
            replace(
                result,
                display_name=subscribers_by_id[result.subscriber_id].display_name,
                grid_unit_id=subscribers_by_id[result.subscriber_id].grid_unit_id,
                contracted_consumption_kwh=subscribers_by_id[result.subscriber_id].contracted_consumption_kwh
            )
            for result in distribution.results
        )

        record = AllocationRecord(
            generator_id=generator.id,
            mode=mode,
            total_expected_kwh=generator.expected_generation_kwh.quantize(KWH_PRECISION, rounding=ROUND_HALF_UP),
            results=results,
            leftover_kwh=distribution.leftover_kwh,
            created_at=self.clock(),
            reference_date=reference_date or today_brt(),
            status=AllocationStatus.VALID,
            generator_nickname=generator.nickname,
            generator_grid_unit_id=generator.grid_unit_id,
            notes=notes
        )

        # Once the write starts it must finish, even if the caller is cancelled
        save = asyncio.ensure_future(self.repository.save_allocation_record(record))
        try:
            record_id = await asyncio.shield(save)
        except asyncio.CancelledError:
            logger.warning("Rateio for generator %s cancelled mid-write, waiting for the save", generator_id)
            await self._wait_for_write(save)
            self._settle_write(save, record, validation)
            raise
        except RepositoryUnavailableError as exc:
            return self._fail(RateioErrorKind.REPOSITORY_UNAVAILABLE, str(exc), retryable=True)

        return self._persisted(record, record_id, validation)

    @staticmethod
    async def _wait_for_write(save: "asyncio.Future[int]") -> None:
        """Block until the save is done, ignoring further cancellation"""
        while not save.done():
            try:
                await asyncio.wait({save})
            except asyncio.CancelledError:
                continue

    def _settle_write(
        self,
        save: "asyncio.Future[int]",
        record: AllocationRecord,
        validation: ValidationResult
    ) -> SubmissionResult:
        """Record PERSISTED or FAILED for a write whose caller was cancelled"""
        if save.cancelled():
            return self._fail(RateioErrorKind.REPOSITORY_UNAVAILABLE, "Save was cancelled", retryable=True)

        exc = save.exception()
        if exc is not None:
            return self._fail(RateioErrorKind.REPOSITORY_UNAVAILABLE, str(exc), retryable=True)

        return self._persisted(record, save.result(), validation)

    def _persisted(
        self,
        record: AllocationRecord,
        record_id: int,
        validation: ValidationResult
    ) -> SubmissionResult:
        self._enter(RateioState.PERSISTED)
        logger.info(
            "✅ Rateio %s saved for generator %s (%s, %s kWh across %s subscribers)",
            record_id,
            record.generator_id,
            record.mode.value,
            record.total_expected_kwh,
            record.subscriber_count
        )
        return SubmissionResult(
            record_id=record_id,
            record=replace(record, id=record_id),
            validation=validation
        )

    @staticmethod
    def _generation_conflict(
        snapshot: Generator,
        current: Generator,
        confirmed_generation_kwh: Optional[RawValue]
    ) -> Optional[str]:
        if current.expected_generation_kwh != snapshot.expected_generation_kwh:
            return (
                f"Expected generation changed from {snapshot.expected_generation_kwh} "
                f"to {current.expected_generation_kwh} kWh while the rateio was being built"
            )

        if confirmed_generation_kwh is not None:
            confirmed = to_decimal(confirmed_generation_kwh)
            if confirmed != snapshot.expected_generation_kwh:
                return (
                    f"Operator confirmed {confirmed_generation_kwh} kWh but the generator "
                    f"now expects {snapshot.expected_generation_kwh} kWh"
                )

        return None

    def _restart(self) -> None:
        self.state = RateioState.COLLECTING
        self.transitions = [RateioState.COLLECTING]

    def _enter(self, state: RateioState) -> None:
        self.state = state
        self.transitions.append(state)

    def _fail(
        self,
        kind: RateioErrorKind,
        message: str,
        retryable: bool = False
    ) -> SubmissionResult:
        self._enter(RateioState.FAILED)
        logger.error("❌ Rateio submission failed (%s): %s", kind.value, message)
        return SubmissionResult(
            error=RateioError(kind=kind, message=message, retryable=retryable)
        )
