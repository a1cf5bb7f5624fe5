# alembic/versions/001_rateio_tables.py

"""Rateio schema

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


allocation_mode = sa.Enum('PERCENTAGE', 'PRIORITY', name='allocationmodeenum')


def upgrade():
    op.create_table('generator',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('nickname', sa.String(length=120), nullable=False),
        sa.Column('grid_unit_id', sa.String(length=40), nullable=False),
        sa.Column('grid_operator', sa.String(length=80), nullable=True),
        sa.Column('expected_generation_kwh', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('subscriber',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('display_name', sa.String(length=200), nullable=False),
        sa.Column('grid_unit_id', sa.String(length=40), nullable=False),
        sa.Column('contracted_consumption_kwh', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('generator_subscriber',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('generator_id', sa.String(length=36), nullable=False),
        sa.Column('subscriber_id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['generator_id'], ['generator.id']),
        sa.ForeignKeyConstraint(['subscriber_id'], ['subscriber.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('generator_id', 'subscriber_id', name='uq_generator_subscriber')
    )
    op.create_index('ix_generator_subscriber_generator_id', 'generator_subscriber', ['generator_id'])

    op.create_table('rateio',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('generator_id', sa.String(length=36), nullable=False),
        sa.Column('generator_nickname', sa.String(length=120), nullable=True),
        sa.Column('generator_grid_unit_id', sa.String(length=40), nullable=True),
        sa.Column('mode', allocation_mode, nullable=False),
        sa.Column('reference_date', sa.Date(), nullable=False),
        sa.Column('total_expected_kwh', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('total_distributed_kwh', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('leftover_kwh', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['generator_id'], ['generator.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_rateio_generator_created', 'rateio', ['generator_id', 'created_at'])

    op.create_table('rateio_item',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rateio_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('subscriber_id', sa.String(length=36), nullable=False),
        sa.Column('subscriber_name', sa.String(length=200), nullable=True),
        sa.Column('subscriber_grid_unit_id', sa.String(length=40), nullable=True),
        sa.Column('contracted_consumption_kwh', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('raw_value', sa.Numeric(precision=24, scale=10), nullable=False),
        sa.Column('allocated_kwh', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['rateio_id'], ['rateio.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rateio_id', 'subscriber_id', name='uq_rateio_item_subscriber')
    )
    op.create_index('ix_rateio_item_rateio_id', 'rateio_item', ['rateio_id'])


def downgrade():
    op.drop_index('ix_rateio_item_rateio_id', table_name='rateio_item')
    op.drop_table('rateio_item')
    op.drop_index('ix_rateio_generator_created', table_name='rateio')
    op.drop_table('rateio')
    allocation_mode.drop(op.get_bind(), checkfirst=True)
    op.drop_index('ix_generator_subscriber_generator_id', table_name='generator_subscriber')
    op.drop_table('generator_subscriber')
    op.drop_table('subscriber')
    op.drop_table('generator')
