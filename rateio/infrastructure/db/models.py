"""
Database Models (SQLAlchemy ORM)
Rateio tables are insert-only audit tables - NO UPDATES, NO DELETES
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Date, DateTime,
    ForeignKey, Text, Enum as SQLEnum, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
import enum

from rateio.infrastructure.db.database import Base
from rateio.utils.time import now_brt_naive


# Enums
class AllocationModeEnum(str, enum.Enum):
    PERCENTAGE = "percentage"
    PRIORITY = "priority"


# Tables

class GeneratorModel(Base):
    """Solar plant (owned by the generator registry, read by the engine)"""
    __tablename__ = "generator"

    id = Column(String(36), primary_key=True)
    nickname = Column(String(120), nullable=False)
    grid_unit_id = Column(String(40), nullable=False)
    grid_operator = Column(String(80), nullable=True)
    expected_generation_kwh = Column(Numeric(14, 2), nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_brt_naive)

    # Relationships
    subscriber_links = relationship("GeneratorSubscriberModel", back_populates="generator")


class SubscriberModel(Base):
    """Subscriber account (owned by the subscriber registry)"""
    __tablename__ = "subscriber"

    id = Column(String(36), primary_key=True)
    display_name = Column(String(200), nullable=False)
    grid_unit_id = Column(String(40), nullable=False)
    contracted_consumption_kwh = Column(Numeric(14, 2), nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=now_brt_naive)


class GeneratorSubscriberModel(Base):
    """Subscribers eligible for a generator's rateio"""
    __tablename__ = "generator_subscriber"

    id = Column(Integer, primary_key=True, autoincrement=True)
    generator_id = Column(String(36), ForeignKey("generator.id"), nullable=False, index=True)
    subscriber_id = Column(String(36), ForeignKey("subscriber.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_brt_naive)

    # Relationships
    generator = relationship("GeneratorModel", back_populates="subscriber_links")
    subscriber = relationship("SubscriberModel")

    __table_args__ = (
        UniqueConstraint("generator_id", "subscriber_id", name="uq_generator_subscriber"),
    )


class RateioModel(Base):
    """Rateio header - AUDIT RECORD"""
    __tablename__ = "rateio"

    id = Column(Integer, primary_key=True, autoincrement=True)
    generator_id = Column(String(36), ForeignKey("generator.id"), nullable=False)
    generator_nickname = Column(String(120), nullable=True)
    generator_grid_unit_id = Column(String(40), nullable=True)

    mode = Column(SQLEnum(AllocationModeEnum), nullable=False)
    reference_date = Column(Date, nullable=False)

    total_expected_kwh = Column(Numeric(14, 2), nullable=False)
    total_distributed_kwh = Column(Numeric(14, 2), nullable=False)
    leftover_kwh = Column(Numeric(14, 2), nullable=False)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=now_brt_naive)

    # Relationships
    items = relationship(
        "RateioItemModel",
        back_populates="rateio",
        order_by="RateioItemModel.position"
    )

    # Indexes
    __table_args__ = (
        Index('ix_rateio_generator_created', 'generator_id', 'created_at'),
    )


class RateioItemModel(Base):
    """Per-subscriber line of a rateio - AUDIT RECORD"""
    __tablename__ = "rateio_item"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rateio_id = Column(Integer, ForeignKey("rateio.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    subscriber_id = Column(String(36), nullable=False)
    subscriber_name = Column(String(200), nullable=True)
    subscriber_grid_unit_id = Column(String(40), nullable=True)
    contracted_consumption_kwh = Column(Numeric(14, 2), nullable=True)

    raw_value = Column(Numeric(24, 10), nullable=False)
    allocated_kwh = Column(Numeric(14, 2), nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_brt_naive)

    # Relationships
    rateio = relationship("RateioModel", back_populates="items")

    __table_args__ = (
        UniqueConstraint("rateio_id", "subscriber_id", name="uq_rateio_item_subscriber"),
    )
