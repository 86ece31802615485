"""Order income tables

Revision ID: 001_income_tables
Revises:
Create Date: 2026-02-20

Creates the five tables used by order income sync:
- shop_config / sync_state: singletons keyed by 'singleton'
- shopify_order_raw: verbatim Admin GraphQL order payloads
- order_income: derived income components, NUMERIC(20, 6)
- sync_run_log: one row per sync invocation
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_income_tables'
down_revision = None
branch_labels = None
depends_on = None

# Exact 6-place text on SQLite, matching the MoneyAmount column type.
money_type = sa.Numeric(20, 6).with_variant(sa.String(32), 'sqlite')


def upgrade() -> None:
    """Create order income tables."""

    op.create_table(
        'shop_config',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('timezone', sa.String(), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'sync_state',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('watermark_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_status', sa.String(), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'shopify_order_raw',
        sa.Column('shopify_order_id', sa.String(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payload', sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('shopify_order_id')
    )
    op.create_index('idx_shopify_order_raw_processed', 'shopify_order_raw', ['processed_at'])

    op.create_table(
        'order_income',
        sa.Column('shopify_order_id', sa.String(), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('subtotal', money_type, nullable=False),
        sa.Column('shipping', money_type, nullable=False),
        sa.Column('tax', money_type, nullable=False),
        sa.Column('discounts', money_type, nullable=False),
        sa.Column('gross', money_type, nullable=False),
        sa.Column('refunds', money_type, nullable=False),
        sa.Column('net', money_type, nullable=False),
        sa.Column('excluded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('excluded_reason', sa.String(), nullable=False, server_default='none'),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('shopify_order_id'),
        sa.ForeignKeyConstraint(['shopify_order_id'], ['shopify_order_raw.shopify_order_id'], ondelete='CASCADE')
    )
    op.create_index('idx_order_income_processed', 'order_income', ['processed_at'])
    op.create_index('idx_order_income_excluded_processed', 'order_income', ['excluded', 'processed_at'])

    op.create_table(
        'sync_run_log',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('orders_fetched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('orders_upserted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('orders_excluded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_cursor', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_sync_run_log_started', 'sync_run_log', ['started_at'])


def downgrade() -> None:
    """Drop order income tables."""
    op.drop_index('idx_sync_run_log_started', table_name='sync_run_log')
    op.drop_table('sync_run_log')
    op.drop_index('idx_order_income_excluded_processed', table_name='order_income')
    op.drop_index('idx_order_income_processed', table_name='order_income')
    op.drop_table('order_income')
    op.drop_index('idx_shopify_order_raw_processed', table_name='shopify_order_raw')
    op.drop_table('shopify_order_raw')
    op.drop_table('sync_state')
    op.drop_table('shop_config')
