"""
Rateio Repository
Generator/subscriber reads and insert-only rateio records
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rateio.domain.models import (
    AllocationMode,
    AllocationRecord,
    AllocationResult,
    AllocationStatus,
    Generator,
    RepositoryUnavailableError,
    Subscriber,
)
from rateio.infrastructure.db.models import (
    AllocationModeEnum,
    GeneratorModel,
    GeneratorSubscriberModel,
    RateioItemModel,
    RateioModel,
    SubscriberModel,
)

logger = logging.getLogger(__name__)


class RateioRepository:
    """Repository for generators, eligible subscribers and rateio records"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def get_generator(self, generator_id: str) -> Optional[Generator]:
        """
        Get generator with its linked subscriber ids

        Args:
            generator_id: Generator ID

        Returns:
            Generator or None
        """
        try:
            result = await self.session.execute(
                select(GeneratorModel).where(GeneratorModel.id == generator_id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None

            links = await self.session.execute(
                select(GeneratorSubscriberModel.subscriber_id)
                .where(GeneratorSubscriberModel.generator_id == generator_id)
            )
            linked_ids = frozenset(links.scalars().all())
        except SQLAlchemyError as exc:
            logger.error("Failed to read generator %s: %s", generator_id, exc)
            raise RepositoryUnavailableError(f"Could not read generator {generator_id}") from exc

        return Generator(
            id=model.id,
            nickname=model.nickname,
            grid_unit_id=model.grid_unit_id,
            expected_generation_kwh=model.expected_generation_kwh,
            linked_subscriber_ids=linked_ids,
            grid_operator=model.grid_operator
        )

    async def get_eligible_subscribers(self, generator_id: str) -> List[Subscriber]:
        """
        Get subscribers linked to a generator, ordered by name

        Args:
            generator_id: Generator ID

        Returns:
            List of Subscribers (empty if none are linked)
        """
        try:
            result = await self.session.execute(
                select(SubscriberModel)
                .join(GeneratorSubscriberModel, GeneratorSubscriberModel.subscriber_id == SubscriberModel.id)
                .where(GeneratorSubscriberModel.generator_id == generator_id)
                .order_by(SubscriberModel.display_name)
            )
            models = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.error("Failed to read subscribers for generator %s: %s", generator_id, exc)
            raise RepositoryUnavailableError(f"Could not read subscribers for generator {generator_id}") from exc

        return [
            Subscriber(
                id=m.id,
                display_name=m.display_name,
                grid_unit_id=m.grid_unit_id,
                contracted_consumption_kwh=m.contracted_consumption_kwh
            )
            for m in models
        ]

    async def save_allocation_record(self, record: AllocationRecord) -> int:
        """
        Insert rateio header and items in one flush

        Args:
            record: Validated AllocationRecord (id is ignored)

        Returns:
            ID of created rateio

        Raises:
            RepositoryUnavailableError: If the write fails (nothing is kept)
        """
        model = RateioModel(
            generator_id=record.generator_id,
            generator_nickname=record.generator_nickname,
            generator_grid_unit_id=record.generator_grid_unit_id,
            mode=AllocationModeEnum(record.mode.value),
            reference_date=record.reference_date,
            total_expected_kwh=record.total_expected_kwh,
            total_distributed_kwh=record.total_distributed_kwh,
            leftover_kwh=record.leftover_kwh,
            notes=record.notes,
            created_at=record.created_at
        )
        model.items = [
            RateioItemModel(
                position=position,
                subscriber_id=result.subscriber_id,
                subscriber_name=result.display_name,
                subscriber_grid_unit_id=result.grid_unit_id,
                contracted_consumption_kwh=result.contracted_consumption_kwh,
                raw_value=result.raw_value,
                allocated_kwh=result.allocated_kwh,
                created_at=record.created_at
            )
            for position, result in enumerate(record.results)
        ]

        try:
            self.session.add(model)
            await self.session.flush()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Failed to save rateio for generator %s: %s", record.generator_id, exc)
            raise RepositoryUnavailableError("Could not save rateio") from exc

        return model.id

    async def get_allocation_record(self, record_id: int) -> Optional[AllocationRecord]:
        """
        Get a rateio by ID

        Args:
            record_id: Rateio ID

        Returns:
            AllocationRecord or None
        """
        try:
            result = await self.session.execute(
                select(RateioModel)
                .where(RateioModel.id == record_id)
                .options(selectinload(RateioModel.items))
            )
            model = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RepositoryUnavailableError(f"Could not read rateio {record_id}") from exc

        return self._to_domain(model) if model else None

    async def list_allocation_history(self, generator_id: str) -> List[AllocationRecord]:
        """
        Get all rateios of a generator, newest first

        Args:
            generator_id: Generator ID

        Returns:
            List of AllocationRecords
        """
        try:
            result = await self.session.execute(
                select(RateioModel)
                .where(RateioModel.generator_id == generator_id)
                .options(selectinload(RateioModel.items))
                .order_by(RateioModel.created_at.desc(), RateioModel.id.desc())
            )
            models = result.scalars().all()
        except SQLAlchemyError as exc:
            raise RepositoryUnavailableError(f"Could not read history for generator {generator_id}") from exc

        return [self._to_domain(m) for m in models]

    async def list_recent(self, limit: Optional[int] = 50) -> List[AllocationRecord]:
        """
        Get recent rateios across all generators

        Args:
            limit: Number of records to fetch (None for all)

        Returns:
            List of AllocationRecords, newest first
        """
        query = (
            select(RateioModel)
            .options(selectinload(RateioModel.items))
            .order_by(RateioModel.created_at.desc(), RateioModel.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)

        try:
            result = await self.session.execute(query)
            models = result.scalars().all()
        except SQLAlchemyError as exc:
            raise RepositoryUnavailableError("Could not read rateio history") from exc

        return [self._to_domain(m) for m in models]

    @staticmethod
    def _to_domain(model: RateioModel) -> AllocationRecord:
        """Convert database model to domain entity"""
        return AllocationRecord(
            id=model.id,
            generator_id=model.generator_id,
            mode=AllocationMode(model.mode.value),
            total_expected_kwh=model.total_expected_kwh,
            results=tuple(
                AllocationResult(
                    subscriber_id=item.subscriber_id,
                    allocated_kwh=item.allocated_kwh,
                    raw_value=item.raw_value,
                    display_name=item.subscriber_name,
                    grid_unit_id=item.subscriber_grid_unit_id,
                    contracted_consumption_kwh=item.contracted_consumption_kwh
                )
                for item in model.items
            ),
            leftover_kwh=model.leftover_kwh,
            created_at=model.created_at,
            reference_date=model.reference_date,
            status=AllocationStatus.VALID,
            generator_nickname=model.generator_nickname,
            generator_grid_unit_id=model.generator_grid_unit_id,
            notes=model.notes
        )
