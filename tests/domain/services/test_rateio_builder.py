"""
Tests for RateioBuilder with in-memory repositories
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from rateio.domain.models import (
    AllocationEntry,
    AllocationMode,
    AllocationRecord,
    Generator,
    RateioErrorKind,
    RepositoryUnavailableError,
    Subscriber,
    ValidationErrorCode,
)
from rateio.domain.services.rateio_builder import RateioBuilder, RateioDraft, RateioState


class MockAllocationRepository:
    """In-memory repository for testing"""

    def __init__(self):
        self.generators: Dict[str, Generator] = {}
        self.subscribers: Dict[str, List[Subscriber]] = {}
        self.saved: List[AllocationRecord] = []
        self.fail_on_save = False
        self.fail_on_read = False
        self.generator_reads = 0
        self.edit_after_first_read: Optional[Decimal] = None

    async def get_generator(self, generator_id: str) -> Optional[Generator]:
        if self.fail_on_read:
            raise RepositoryUnavailableError("database is down")
        self.generator_reads += 1
        generator = self.generators.get(generator_id)
        if generator is not None and self.generator_reads > 1 and self.edit_after_first_read is not None:
            generator = Generator(
                id=generator.id,
                nickname=generator.nickname,
                grid_unit_id=generator.grid_unit_id,
                expected_generation_kwh=self.edit_after_first_read,
                linked_subscriber_ids=generator.linked_subscriber_ids,
            )
        return generator

    async def get_eligible_subscribers(self, generator_id: str) -> List[Subscriber]:
        return list(self.subscribers.get(generator_id, []))

    async def save_allocation_record(self, record: AllocationRecord) -> int:
        if self.fail_on_save:
            raise RepositoryUnavailableError("write timed out")
        self.saved.append(record)
        return len(self.saved)

    async def list_allocation_history(self, generator_id: str) -> List[AllocationRecord]:
        return [r for r in reversed(self.saved) if r.generator_id == generator_id]

    def add_generator(self, generator: Generator, subscribers: List[Subscriber]):
        """Helper to register a generator with its eligible subscribers"""
        self.generators[generator.id] = generator
        self.subscribers[generator.id] = subscribers


class FixedClock:
    def __init__(self):
        self.ticks = 0

    def __call__(self) -> datetime:
        self.ticks += 1
        return datetime(2025, 6, 15, 10, 0, self.ticks)


# Fixtures
@pytest.fixture
def repo():
    repo = MockAllocationRepository()
    repo.add_generator(
        Generator(
            id="GEN-1",
            nickname="Usina Sol Nascente",
            grid_unit_id="UC-9001",
            expected_generation_kwh=Decimal("1000.00"),
            # Stale link: "OLD" is no longer returned by get_eligible_subscribers
            linked_subscriber_ids=frozenset({"A", "B", "C", "OLD"}),
        ),
        [
            Subscriber("A", "Ana Souza", "UC-A", Decimal("300")),
            Subscriber("B", "Bruno Lima", "UC-B", Decimal("450")),
            Subscriber("C", "Carla Dias", "UC-C", Decimal("250")),
        ],
    )
    return repo


@pytest.fixture
def builder(repo):
    return RateioBuilder(repo, clock=FixedClock())


def entries(*pairs):
    return [AllocationEntry(subscriber_id=s, raw_value=v) for s, v in pairs]


class TestSuccessfulSubmission:
    """Happy paths"""

    @pytest.mark.asyncio
    async def test_percentage_rateio_is_persisted(self, builder, repo):
        outcome = await builder.build_and_submit(
            "GEN-1",
            AllocationMode.PERCENTAGE,
            entries(("A", 50), ("B", 30), ("C", 20)),
            reference_date=date(2025, 6, 15),
            notes="Junho",
        )

        assert outcome.ok
        assert outcome.record_id == 1
        assert builder.state == RateioState.PERSISTED
        assert builder.transitions == [
            RateioState.COLLECTING,
            RateioState.VALIDATING,
            RateioState.COMPUTED,
            RateioState.PERSISTED,
        ]

        record = repo.saved[0]
        assert record.total_expected_kwh == Decimal("1000.00")
        assert [r.allocated_kwh for r in record.results] == [Decimal("500.00"), Decimal("300.00"), Decimal("200.00")]
        assert record.leftover_kwh == Decimal("0")
        assert record.generator_nickname == "Usina Sol Nascente"
        assert record.reference_date == date(2025, 6, 15)
        assert record.notes == "Junho"
        assert outcome.record.id == 1

    @pytest.mark.asyncio
    async def test_results_carry_subscriber_audit_fields(self, builder, repo):
        await builder.build_and_submit("GEN-1", AllocationMode.PRIORITY, entries(("B", 2), ("A", 1)))

        first = repo.saved[0].results[0]
        assert first.subscriber_id == "A"
        assert first.display_name == "Ana Souza"
        assert first.grid_unit_id == "UC-A"
        assert first.contracted_consumption_kwh == Decimal("300")

    @pytest.mark.asyncio
    async def test_priority_waterfall(self, builder, repo):
        outcome = await builder.build_and_submit(
            "GEN-1", AllocationMode.PRIORITY, entries(("A", 1), ("B", 2), ("C", 3))
        )

        assert outcome.ok
        amounts = {r.subscriber_id: r.allocated_kwh for r in repo.saved[0].results}
        assert amounts == {"A": Decimal("1000.00"), "B": Decimal("0.00"), "C": Decimal("0.00")}

    @pytest.mark.asyncio
    async def test_repeated_submission_creates_identical_snapshots(self, builder, repo):
        rateio = entries(("A", "33.33"), ("B", "33.33"), ("C", "33.34"))

        first = await builder.build_and_submit("GEN-1", AllocationMode.PERCENTAGE, rateio)
        second = await builder.build_and_submit("GEN-1", AllocationMode.PERCENTAGE, rateio)

        assert first.record_id != second.record_id
        assert first.record.created_at != second.record.created_at
        assert first.record.total_expected_kwh == second.record.total_expected_kwh
        assert first.record.results == second.record.results

    @pytest.mark.asyncio
    async def test_confirmed_generation_matching_is_accepted(self, builder):
        outcome = await builder.build_and_submit(
            "GEN-1", AllocationMode.PRIORITY, entries(("A", 1)), confirmed_generation_kwh="1000"
        )

        assert outcome.ok

    @pytest.mark.asyncio
    async def test_zero_percent_warning_does_not_block(self, builder):
        outcome = await builder.build_and_submit(
            "GEN-1", AllocationMode.PERCENTAGE, entries(("A", 100), ("B", 0))
        )

        assert outcome.ok
        assert [w.code for w in outcome.validation.warnings] == [ValidationErrorCode.ZERO_PERCENTAGE]


class TestRejection:
    """Validation failures never reach the repository"""

    @pytest.mark.asyncio
    async def test_sum_of_99_is_not_saved(self, builder, repo):
        outcome = await builder.build_and_submit(
            "GEN-1", AllocationMode.PERCENTAGE, entries(("A", 50), ("B", 49))
        )

        assert not outcome.ok
        assert outcome.error.kind == RateioErrorKind.VALIDATION_FAILED
        assert ValidationErrorCode.PERCENTAGE_SUM_MISMATCH in outcome.validation.error_codes
        assert repo.saved == []
        assert builder.state == RateioState.COLLECTING
        assert RateioState.REJECTED in builder.transitions

    @pytest.mark.asyncio
    async def test_duplicate_priority_is_rejected_before_calculation(self, builder, repo):
        outcome = await builder.build_and_submit(
            "GEN-1", AllocationMode.PRIORITY, entries(("A", 1), ("B", 1), ("C", 3))
        )

        assert outcome.error.kind == RateioErrorKind.VALIDATION_FAILED
        assert {i.code for i in outcome.error.issues} == {ValidationErrorCode.DUPLICATE_PRIORITY}
        assert RateioState.COMPUTED not in builder.transitions
        assert repo.saved == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode,value", [
        (AllocationMode.PERCENTAGE, 100),
        (AllocationMode.PRIORITY, 1),
    ])
    async def test_eligibility_comes_from_eligible_subscribers(self, builder, repo, mode, value):
        outcome = await builder.build_and_submit("GEN-1", mode, entries(("OLD", value)))

        assert outcome.validation.error_codes == {ValidationErrorCode.SUBSCRIBER_NOT_ELIGIBLE}
        assert repo.saved == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", list(AllocationMode))
    async def test_empty_selection(self, builder, repo, mode):
        outcome = await builder.build_and_submit("GEN-1", mode, [])

        assert outcome.validation.error_codes == {ValidationErrorCode.EMPTY_SELECTION}
        assert repo.saved == []


class TestInfrastructureFailures:
    """Generator lookups, conflicts and storage outages"""

    @pytest.mark.asyncio
    async def test_generator_not_found(self, builder, repo):
        outcome = await builder.build_and_submit("NOPE", AllocationMode.PRIORITY, entries(("A", 1)))

        assert outcome.error.kind == RateioErrorKind.GENERATOR_NOT_FOUND
        assert builder.state == RateioState.FAILED
        assert repo.saved == []

    @pytest.mark.asyncio
    async def test_unavailable_on_read_is_retryable(self, builder, repo):
        repo.fail_on_read = True

        outcome = await builder.build_and_submit("GEN-1", AllocationMode.PRIORITY, entries(("A", 1)))

        assert outcome.error.kind == RateioErrorKind.REPOSITORY_UNAVAILABLE
        assert outcome.error.retryable

    @pytest.mark.asyncio
    async def test_failed_write_can_be_retried(self, builder, repo):
        repo.fail_on_save = True
        rateio = entries(("A", 60), ("B", 40))

        failed = await builder.build_and_submit("GEN-1", AllocationMode.PERCENTAGE, rateio)

        assert failed.error.kind == RateioErrorKind.REPOSITORY_UNAVAILABLE
        assert failed.error.retryable
        assert builder.state == RateioState.FAILED
        assert repo.saved == []

        repo.fail_on_save = False
        retried = await builder.build_and_submit("GEN-1", AllocationMode.PERCENTAGE, rateio)

        assert retried.ok
        assert len(repo.saved) == 1

    @pytest.mark.asyncio
    async def test_generation_edited_mid_submission(self, builder, repo):
        repo.edit_after_first_read = Decimal("1200.00")

        outcome = await builder.build_and_submit("GEN-1", AllocationMode.PRIORITY, entries(("A", 1)))

        assert outcome.error.kind == RateioErrorKind.CONCURRENT_GENERATOR_MUTATION
        assert builder.state == RateioState.COLLECTING
        assert repo.saved == []

    @pytest.mark.asyncio
    async def test_confirmed_generation_mismatch(self, builder, repo):
        outcome = await builder.build_and_submit(
            "GEN-1", AllocationMode.PRIORITY, entries(("A", 1)), confirmed_generation_kwh=Decimal("900")
        )

        assert outcome.error.kind == RateioErrorKind.CONCURRENT_GENERATOR_MUTATION
        assert repo.saved == []


class TestCancellation:
    """Cancellation before the write has no side effects, during it the save still completes"""

    @pytest.mark.asyncio
    async def test_cancel_before_write(self, repo):
        started = asyncio.Event()
        release = asyncio.Event()

        class SlowRepository(MockAllocationRepository):
            async def get_eligible_subscribers(self, generator_id):
                started.set()
                await release.wait()
                return await super().get_eligible_subscribers(generator_id)

        slow = SlowRepository()
        slow.generators = repo.generators
        slow.subscribers = repo.subscribers
        builder = RateioBuilder(slow)

        task = asyncio.create_task(
            builder.build_and_submit("GEN-1", AllocationMode.PRIORITY, entries(("A", 1)))
        )
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert slow.saved == []

    @staticmethod
    def blocking_save_repository(repo, fail: bool):
        writing = asyncio.Event()
        release = asyncio.Event()

        class BlockingSaveRepository(MockAllocationRepository):
            async def save_allocation_record(self, record):
                writing.set()
                await release.wait()
                if fail:
                    raise RepositoryUnavailableError("write failed late")
                return await super().save_allocation_record(record)

        blocking = BlockingSaveRepository()
        blocking.generators = repo.generators
        blocking.subscribers = repo.subscribers
        return blocking, writing, release

    @pytest.mark.asyncio
    async def test_cancel_during_write_waits_for_save(self, repo):
        blocking, writing, release = self.blocking_save_repository(repo, fail=False)
        builder = RateioBuilder(blocking)

        task = asyncio.create_task(
            builder.build_and_submit("GEN-1", AllocationMode.PRIORITY, entries(("A", 1)))
        )
        await writing.wait()
        task.cancel()
        await asyncio.sleep(0)
        assert not task.done()

        release.set()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(blocking.saved) == 1
        assert builder.state == RateioState.PERSISTED

    @pytest.mark.asyncio
    async def test_cancel_during_failing_write_ends_failed(self, repo):
        blocking, writing, release = self.blocking_save_repository(repo, fail=True)
        builder = RateioBuilder(blocking)

        task = asyncio.create_task(
            builder.build_and_submit("GEN-1", AllocationMode.PRIORITY, entries(("A", 1)))
        )
        await writing.wait()
        task.cancel()
        await asyncio.sleep(0)
        release.set()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert blocking.saved == []
        assert builder.state == RateioState.FAILED
        assert builder.transitions[-1] == RateioState.FAILED


class TestDraft:
    """Collecting-state editing"""

    @pytest.mark.asyncio
    async def test_draft_edits_then_submit(self, builder, repo):
        draft = RateioDraft("GEN-1", AllocationMode.PERCENTAGE)
        draft.set_value("A", 70)
        draft.set_value("B", 20)
        draft.set_value("C", 5)
        draft.set_value("B", 30)
        draft.remove("C")

        outcome = await builder.submit_draft(draft)

        assert outcome.ok
        assert [r.subscriber_id for r in repo.saved[0].results] == ["A", "B"]

    def test_switching_mode_drops_values(self):
        draft = RateioDraft("GEN-1", AllocationMode.PERCENTAGE)
        draft.set_value("A", 100)

        draft.switch_mode(AllocationMode.PRIORITY)

        assert draft.entries() == []
        assert draft.mode == AllocationMode.PRIORITY
