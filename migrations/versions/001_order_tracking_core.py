"""
Alembic migration: Create order tracking and payment ledger tables.

Creates orders, the append-only order history and status update feeds, the
payment ledger, driver assignments, facility processing, issue reports and
customer wallets, with the enum types they share.

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUM_TYPES = {
    'order_status': (
        'ORDER_PLACED', 'CONFIRMED', 'PICKUP_ASSIGNED', 'PICKUP_IN_PROGRESS',
        'PICKUP_COMPLETED', 'PICKUP_FAILED', 'RECEIVED_AT_FACILITY',
        'PROCESSING_STARTED', 'PROCESSING_COMPLETED', 'QUALITY_CHECK',
        'READY_FOR_DELIVERY', 'DELIVERY_ASSIGNED', 'DELIVERY_IN_PROGRESS',
        'DELIVERED', 'DELIVERY_FAILED', 'CANCELLED', 'REFUNDED',
    ),
    'order_payment_status': (
        'PENDING', 'PAID', 'FAILED', 'PARTIAL_REFUND', 'REFUNDED',
    ),
    'payment_status': ('PENDING', 'PAID', 'FAILED', 'REFUNDED'),
    'payment_method': (
        'CARD', 'TAP_PAY', 'BENEFIT_PAY', 'WALLET', 'CASH', 'BANK_TRANSFER',
    ),
    'history_action': (
        'status_change', 'payment_update', 'payment_recorded',
        'payment_settled', 'refund_processed', 'invoice_updated', 'note_added',
    ),
    'assignment_type': ('pickup', 'delivery'),
    'driver_assignment_status': (
        'ASSIGNED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'RESCHEDULED',
        'FAILED',
    ),
    'processing_status': (
        'PENDING', 'IN_PROGRESS', 'COMPLETED', 'QUALITY_CHECK',
        'READY_FOR_DELIVERY', 'ISSUE_REPORTED',
    ),
    'issue_severity': ('low', 'medium', 'high', 'critical'),
    'issue_status': ('REPORTED', 'INVESTIGATING', 'RESOLVED', 'ESCALATED'),
    'wallet_transaction_type': ('DEBIT', 'CREDIT'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _money(name: str, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 3), nullable=nullable, **kwargs)


def _identity() -> sa.Column:
    return sa.Column(
        'id',
        sa.Integer(),
        primary_key=True,
        autoincrement=True,
        comment='Unique identifier for the record',
    )


def _timestamps(updated: bool = True) -> list:
    columns = [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            comment='Timestamp when record was created',
        ),
    ]
    if updated:
        columns.append(
            sa.Column(
                'updated_at',
                sa.DateTime(timezone=True),
                nullable=False,
                comment='Timestamp when record was last updated',
            )
        )
    return columns


def upgrade() -> None:
    """
    Upgrade database schema to add the order tracking core tables.

    History, status update and wallet transaction tables are append-only;
    the application rejects updates and deletes on them.
    """
    bind = op.get_bind()
    for name, values in ENUM_TYPES.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # Orders
    op.create_table(
        'orders',
        _identity(),
        sa.Column('order_number', sa.String(length=50), nullable=False,
                  comment='Human-facing order reference'),
        sa.Column('customer_id', sa.Integer(), nullable=False,
                  comment='Customer who placed the order'),
        sa.Column('status', _enum('order_status'), nullable=False,
                  comment='Current lifecycle status'),
        sa.Column('payment_status', _enum('order_payment_status'), nullable=False,
                  comment='Aggregate payment status'),
        _money('invoice_total', nullable=True,
               comment='Invoice total, NULL until computed'),
        sa.Column('minimum_order_applied', sa.Boolean(), nullable=False,
                  server_default=sa.false(),
                  comment='Whether the minimum order fee applies'),
        sa.Column('invoice_generated', sa.Boolean(), nullable=False,
                  server_default=sa.false(),
                  comment='Whether the invoice document was generated'),
        sa.Column('payment_method', _enum('payment_method'), nullable=True,
                  comment='Method of the most recent payment'),
        *_timestamps(),
        sa.CheckConstraint(
            'invoice_total IS NULL OR invoice_total >= 0',
            name='ck_orders_invoice_total_non_negative',
        ),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        comment='Laundry orders with lifecycle and payment state',
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    # Append-only audit trail
    op.create_table(
        'order_history',
        _identity(),
        sa.Column('order_id', sa.Integer(),
                  sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=True,
                  comment='Acting staff member, NULL for system'),
        sa.Column('action', _enum('history_action'), nullable=False),
        sa.Column('old_value', postgresql.JSONB(), nullable=True),
        sa.Column('new_value', postgresql.JSONB(), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        *_timestamps(updated=False),
        comment='Append-only order audit trail',
    )
    op.create_index('ix_order_history_order_id', 'order_history', ['order_id'])
    op.create_index('ix_order_history_action', 'order_history', ['action'])
    op.create_index('ix_order_history_created_at', 'order_history', ['created_at'])
    op.create_index(
        'ix_order_history_order_created', 'order_history', ['order_id', 'created_at']
    )

    op.create_table(
        'order_updates',
        _identity(),
        sa.Column('order_id', sa.Integer(),
                  sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=True),
        sa.Column('old_status', _enum('order_status'), nullable=False),
        sa.Column('new_status', _enum('order_status'), nullable=False),
        sa.Column('notes', sa.String(length=1000), nullable=True),
        *_timestamps(updated=False),
        comment='Operational feed of order status changes',
    )
    op.create_index('ix_order_updates_order_id', 'order_updates', ['order_id'])
    op.create_index('ix_order_updates_created_at', 'order_updates', ['created_at'])

    # Payment ledger
    op.create_table(
        'payment_records',
        _identity(),
        sa.Column('order_id', sa.Integer(),
                  sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False,
                  comment='Order the payment belongs to'),
        _money('amount', comment='Positive amount'),
        sa.Column('currency', sa.String(length=3), nullable=False,
                  comment='ISO 4217 currency code'),
        sa.Column('payment_method', _enum('payment_method'), nullable=False,
                  comment='Payment method'),
        sa.Column('payment_status', _enum('payment_status'), nullable=False,
                  comment='Payment record status'),
        sa.Column('is_refund', sa.Boolean(), nullable=False,
                  server_default=sa.false(),
                  comment='Whether this row returns money'),
        sa.Column('refund_of_id', sa.Integer(),
                  sa.ForeignKey('payment_records.id', ondelete='RESTRICT'),
                  nullable=True,
                  comment='Payment record reversed by this refund'),
        sa.Column('confirmation_id', sa.String(length=255), nullable=True,
                  comment='Gateway correlation identifier'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True,
                  comment='Settlement timestamp'),
        sa.Column('notes', sa.Text(), nullable=True, comment='Staff notes'),
        sa.Column('metadata', postgresql.JSONB(), nullable=True,
                  comment='Structured gateway metadata'),
        sa.Column('created_by', sa.Integer(), nullable=True,
                  comment='Staff member who recorded the payment'),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_payment_records_amount_positive'),
        comment='Append-only payment ledger',
    )
    op.create_index('ix_payment_records_order_id', 'payment_records', ['order_id'])
    op.create_index(
        'ix_payment_records_payment_status', 'payment_records', ['payment_status']
    )
    op.create_index(
        'ix_payment_records_refund_of_id', 'payment_records', ['refund_of_id']
    )
    op.create_index(
        'ix_payment_records_confirmation_id', 'payment_records', ['confirmation_id']
    )
    op.create_index('ix_payment_records_created_at', 'payment_records', ['created_at'])
    op.create_index(
        'ix_payment_records_order_created',
        'payment_records',
        ['order_id', 'created_at'],
    )

    # Operations
    op.create_table(
        'driver_assignments',
        _identity(),
        sa.Column('order_id', sa.Integer(),
                  sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('assignment_type', _enum('assignment_type'), nullable=False),
        sa.Column('status', _enum('driver_assignment_status'), nullable=False),
        sa.Column('estimated_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('photo_url', sa.String(length=500), nullable=True),
        *_timestamps(),
        comment='Driver pickup and delivery trips',
    )
    op.create_index('ix_driver_assignments_order_id', 'driver_assignments', ['order_id'])
    op.create_index(
        'ix_driver_assignments_driver_id', 'driver_assignments', ['driver_id']
    )
    op.create_index(
        'ix_driver_assignments_created_at', 'driver_assignments', ['created_at']
    )
    op.create_index(
        'ix_driver_assignments_order_created',
        'driver_assignments',
        ['order_id', 'created_at'],
    )

    op.create_table(
        'order_processing',
        _identity(),
        sa.Column('order_id', sa.Integer(),
                  sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=True),
        sa.Column('processing_status', _enum('processing_status'), nullable=False),
        sa.Column('total_pieces', sa.Integer(), nullable=True),
        sa.Column('total_weight', sa.Numeric(8, 2), nullable=True),
        sa.Column('quality_score', sa.Integer(), nullable=True),
        sa.Column('processing_notes', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        comment='Facility processing records',
    )
    op.create_index('ix_order_processing_order_id', 'order_processing', ['order_id'])
    op.create_index('ix_order_processing_created_at', 'order_processing', ['created_at'])
    op.create_index(
        'ix_order_processing_order_created',
        'order_processing',
        ['order_id', 'created_at'],
    )

    op.create_table(
        'issue_reports',
        _identity(),
        sa.Column('order_processing_id', sa.Integer(),
                  sa.ForeignKey('order_processing.id', ondelete='RESTRICT'),
                  nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=True),
        sa.Column('issue_type', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('severity', _enum('issue_severity'), nullable=False),
        sa.Column('status', _enum('issue_status'), nullable=False),
        *_timestamps(),
        comment='Issues raised during facility processing',
    )
    op.create_index(
        'ix_issue_reports_order_processing_id', 'issue_reports', ['order_processing_id']
    )
    op.create_index('ix_issue_reports_created_at', 'issue_reports', ['created_at'])

    # Wallets
    op.create_table(
        'wallets',
        _identity(),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        _money('balance'),
        sa.Column('currency', sa.String(length=3), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
        sa.UniqueConstraint('customer_id', name='uq_wallets_customer_id'),
        comment='Customer wallet balances',
    )
    op.create_index('ix_wallets_created_at', 'wallets', ['created_at'])

    op.create_table(
        'wallet_transactions',
        _identity(),
        sa.Column('wallet_id', sa.Integer(),
                  sa.ForeignKey('wallets.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('transaction_type', _enum('wallet_transaction_type'), nullable=False),
        _money('amount'),
        _money('balance_before'),
        _money('balance_after'),
        sa.Column('reference', sa.String(length=100), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint(
            'amount > 0', name='ck_wallet_transactions_amount_positive'
        ),
        comment='Wallet movements',
    )
    op.create_index(
        'ix_wallet_transactions_wallet_id', 'wallet_transactions', ['wallet_id']
    )
    op.create_index(
        'ix_wallet_transactions_created_at', 'wallet_transactions', ['created_at']
    )


def downgrade() -> None:
    """
    Downgrade database schema by removing the order tracking core tables.

    Drops tables in reverse dependency order, then the enum types.
    """
    for table in (
        'wallet_transactions',
        'wallets',
        'issue_reports',
        'order_processing',
        'driver_assignments',
        'payment_records',
        'order_updates',
        'order_history',
        'orders',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUM_TYPES)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
