"""initial order schema

Revision ID: 2026_10_18_0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create order, plan, coupon, payment and gift ledger tables."""

    # ========================================================================
    # Create users table (gift balance view)
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('gift_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('gift_amount >= 0', name='ck_user_gift_non_negative'),
    )

    # ========================================================================
    # Create subscription_plans table
    # ========================================================================
    op.create_table(
        'subscription_plans',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('unit_price', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discount', sa.Text(), nullable=False, server_default=''),
        sa.Column('inventory', sa.BigInteger(), nullable=False, server_default='-1'),
        sa.Column('quota', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('sell', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('unit_price >= 0', name='ck_plan_unit_price_non_negative'),
        sa.CheckConstraint('inventory >= -1', name='ck_plan_inventory_valid'),
        sa.CheckConstraint('quota >= 0', name='ck_plan_quota_non_negative'),
    )

    # ========================================================================
    # Create coupons table
    # ========================================================================
    op.create_table(
        'coupons',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('code', sa.String(255), nullable=False),
        sa.Column('type', sa.SmallInteger(), nullable=False, server_default='1'),
        sa.Column('discount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('max_discount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('count', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('used_count', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('user_limit', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('subscribe', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('code', name='uq_coupons_code'),
        sa.CheckConstraint('discount >= 0', name='ck_coupon_discount_non_negative'),
        sa.CheckConstraint('used_count >= 0', name='ck_coupon_used_count_non_negative'),
    )

    # ========================================================================
    # Create payment_methods table
    # ========================================================================
    op.create_table(
        'payment_methods',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False, server_default=''),
        sa.Column('platform', sa.String(50), nullable=False),
        sa.Column('fee_mode', sa.SmallInteger(), nullable=False, server_default='0'),
        sa.Column('fee_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('fee_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint('fee_percent >= 0', name='ck_payment_fee_percent_non_negative'),
        sa.CheckConstraint('fee_amount >= 0', name='ck_payment_fee_amount_non_negative'),
    )

    # ========================================================================
    # Create user_subscriptions table
    # ========================================================================
    op.create_table(
        'user_subscriptions',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=True),
        sa.Column('subscribe_id', sa.BigInteger(), nullable=False),
        sa.Column('token', sa.String(255), nullable=False),
        sa.Column('status', sa.SmallInteger(), nullable=False, server_default='0'),
        sa.Column('expire_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('token', name='uq_user_subscriptions_token'),
    )
    op.create_index('ix_user_subscriptions_user_id', 'user_subscriptions', ['user_id'])
    op.create_index('idx_user_subscriptions_user_plan', 'user_subscriptions', ['user_id', 'subscribe_id'])

    # ========================================================================
    # Create orders table
    # ========================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('order_no', sa.String(64), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('parent_id', sa.BigInteger(), nullable=True),
        sa.Column('type', sa.SmallInteger(), nullable=False),
        sa.Column('quantity', sa.BigInteger(), nullable=False, server_default='1'),
        sa.Column('price', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('coupon', sa.String(255), nullable=True),
        sa.Column('coupon_discount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('gift_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('fee_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('payment_id', sa.BigInteger(), nullable=False),
        sa.Column('method', sa.String(50), nullable=False),
        sa.Column('status', sa.SmallInteger(), nullable=False, server_default='1'),
        sa.Column('is_new', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('subscribe_id', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('subscribe_token', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('order_no', name='uq_orders_order_no'),
        sa.CheckConstraint('amount >= 0', name='ck_order_amount_non_negative'),
        sa.CheckConstraint('gift_amount >= 0', name='ck_order_gift_non_negative'),
        sa.CheckConstraint('fee_amount >= 0', name='ck_order_fee_non_negative'),
    )
    op.create_index('idx_orders_user_coupon', 'orders', ['user_id', 'coupon'], postgresql_where=sa.text('coupon IS NOT NULL'))
    op.create_index('idx_orders_user_status', 'orders', ['user_id', 'status'])
    op.create_index('idx_orders_status_created_at', 'orders', ['status', 'created_at'])

    # ========================================================================
    # Create gift_ledger table (append-only)
    # ========================================================================
    op.create_table(
        'gift_ledger',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('type', sa.SmallInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('order_no', sa.String(64), nullable=False),
        sa.Column('subscribe_id', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('balance', sa.BigInteger(), nullable=False),
        sa.Column('remark', sa.String(255), nullable=False, server_default=''),
        sa.Column('timestamp', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('amount > 0', name='ck_gift_ledger_amount_positive'),
        sa.CheckConstraint('balance >= 0', name='ck_gift_ledger_balance_non_negative'),
    )
    op.create_index('idx_gift_ledger_order_no', 'gift_ledger', ['order_no'])
    op.create_index('idx_gift_ledger_user_id', 'gift_ledger', ['user_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('gift_ledger')
    op.drop_table('orders')
    op.drop_table('user_subscriptions')
    op.drop_table('payment_methods')
    op.drop_table('coupons')
    op.drop_table('subscription_plans')
    op.drop_table('users')
