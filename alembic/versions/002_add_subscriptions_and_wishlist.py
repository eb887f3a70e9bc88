"""Add milk subscriptions, refund requests and wishlist

Revision ID: 002_subscriptions
Revises: 001_milkcart
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = '002_subscriptions'
down_revision: Union[str, None] = '001_milkcart'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create subscription, refund and wishlist tables; link payments to subscriptions."""

    # ====================
    # SUBSCRIPTION PLANS TABLE
    # ====================
    op.create_table(
        'subscription_plans',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('milk_type', sa.String(20), nullable=False, comment='cow, buffalo'),
        sa.Column('volume', sa.String(10), nullable=False, comment='1L, 2L, 3L, 5L'),
        sa.Column('duration_days', sa.Integer, nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('daily_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('original_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('discount_percent', sa.Integer, server_default='0', nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('features', JSONB, server_default='[]', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('popularity', sa.Integer, server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('milk_type', 'volume', 'duration_days', name='uq_subscription_plan_variant'),
        sa.CheckConstraint(
            'discount_percent >= 0 AND discount_percent <= 100',
            name='ck_subscription_plan_discount',
        ),
    )
    op.create_index('ix_subscription_plans_is_active', 'subscription_plans', ['is_active'])

    # ====================
    # USER SUBSCRIPTIONS TABLE
    # ====================
    op.create_table(
        'user_subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('subscription_number', sa.String(40), unique=True, nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('plan_id', UUID(as_uuid=True), sa.ForeignKey('subscription_plans.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(30), server_default='pending', nullable=False),
        sa.Column('payment_status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('start_date', sa.Date, nullable=False),
        sa.Column('end_date', sa.Date, nullable=False),
        sa.Column('next_delivery_date', sa.Date, nullable=True),
        sa.Column('delivery_shift', sa.String(20), server_default='morning', nullable=False),
        sa.Column('total_deliveries', sa.Integer, nullable=False),
        sa.Column('completed_deliveries', sa.Integer, server_default='0', nullable=False),
        sa.Column('skipped_deliveries', sa.Integer, server_default='0', nullable=False),
        sa.Column('shipping_name', sa.String(100), nullable=False),
        sa.Column('shipping_phone', sa.String(20), nullable=False),
        sa.Column('shipping_street', sa.String(255), nullable=False),
        sa.Column('shipping_city', sa.String(100), nullable=False),
        sa.Column('shipping_state', sa.String(100), nullable=True),
        sa.Column('shipping_pincode', sa.String(10), nullable=False),
        sa.Column('delivery_instructions', sa.Text, nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('discount_percent', sa.Integer, server_default='0', nullable=False),
        sa.Column('upi_transaction_id', sa.String(100), nullable=True),
        sa.Column('payment_reported_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_user_subscriptions_subscription_number', 'user_subscriptions', ['subscription_number'])
    op.create_index('ix_user_subscriptions_plan_id', 'user_subscriptions', ['plan_id'])
    op.create_index('ix_user_subscriptions_status', 'user_subscriptions', ['status'])
    op.create_index('ix_user_subscriptions_payment_status', 'user_subscriptions', ['payment_status'])
    op.create_index('ix_user_subscription_user_created', 'user_subscriptions', ['user_id', 'created_at'])
    op.create_index('ix_user_subscription_status_next', 'user_subscriptions', ['status', 'next_delivery_date'])

    op.create_table(
        'subscription_events',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_subscription_id', UUID(as_uuid=True), sa.ForeignKey('user_subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(40), nullable=False),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('performed_by_kind', sa.String(20), nullable=False, comment='customer, system_admin, user, system'),
        sa.Column('performed_by_user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_subscription_events_user_subscription_id', 'subscription_events', ['user_subscription_id'])

    # ====================
    # REFUND REQUESTS TABLE
    # ====================
    op.create_table(
        'refund_requests',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_subscription_id', UUID(as_uuid=True), sa.ForeignKey('user_subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('original_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('refund_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('days_used', sa.Integer, nullable=False),
        sa.Column('days_remaining', sa.Integer, nullable=False),
        sa.Column('cancellation_reason', sa.Text, nullable=False),
        sa.Column('previous_subscription_status', sa.String(30), nullable=False),
        sa.Column('refund_method', sa.String(20), nullable=False),
        sa.Column('mobile_number', sa.String(20), nullable=False),
        sa.Column('upi_id', sa.String(100), nullable=True),
        sa.Column('account_holder_name', sa.String(100), nullable=True),
        sa.Column('bank_name', sa.String(100), nullable=True),
        sa.Column('account_number', sa.String(30), nullable=True),
        sa.Column('ifsc_code', sa.String(11), nullable=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('admin_notes', sa.Text, nullable=True),
        sa.Column('refund_transaction_id', sa.String(100), nullable=True),
        sa.Column('refund_date', sa.Date, nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by_kind', sa.String(20), nullable=True),
        sa.Column('processed_by_user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_refund_requests_user_subscription_id', 'refund_requests', ['user_subscription_id'])
    op.create_index('ix_refund_requests_user_id', 'refund_requests', ['user_id'])
    op.create_index('ix_refund_requests_status', 'refund_requests', ['status'])

    # ====================
    # WISHLIST TABLE
    # ====================
    op.create_table(
        'wishlist_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('price_when_added', sa.Numeric(10, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('user_id', 'product_id', name='uq_wishlist_user_product'),
    )
    op.create_index('ix_wishlist_items_user_id', 'wishlist_items', ['user_id'])

    # ====================
    # PAYMENTS -> SUBSCRIPTIONS
    # ====================
    op.add_column(
        'payments',
        sa.Column(
            'user_subscription_id',
            UUID(as_uuid=True),
            sa.ForeignKey('user_subscriptions.id', ondelete='SET NULL'),
            nullable=True,
            comment='Set when the session pays for a subscription instead of orders'
        )
    )
    op.create_index('ix_payments_user_subscription_id', 'payments', ['user_subscription_id'])


def downgrade() -> None:
    """Drop subscription, refund and wishlist tables."""
    op.drop_index('ix_payments_user_subscription_id', table_name='payments')
    op.drop_column('payments', 'user_subscription_id')
    op.drop_table('wishlist_items')
    op.drop_table('refund_requests')
    op.drop_table('subscription_events')
    op.drop_table('user_subscriptions')
    op.drop_table('subscription_plans')
