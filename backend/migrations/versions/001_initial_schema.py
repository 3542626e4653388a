"""
Alembic migration: Initial schema for orders, yards, e-mail outbox and leads.

Enum columns are stored as VARCHAR holding the display values, so new
statuses do not need a type migration.

Revision ID: 001
Revises:
Create Date: 2025-09-01 09:00:00.000000
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


def _id() -> sa.Column:
    return sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False,
                     comment='Surrogate key for the record')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()'),
                  comment='Timestamp when record was created'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()'),
                  comment='Timestamp when record was last updated'),
    ]


def _money(name: str, nullable: bool = True) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.Numeric(12, 2), nullable=True)
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default='0')


def _text(name: str, length: Union[int, None] = None) -> sa.Column:
    """Non-null string column defaulting to ''."""
    type_ = sa.String(length) if length else sa.Text()
    return sa.Column(name, type_, nullable=False, server_default='')


def _when(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def _jsonb(name: str, empty: str = "'[]'::jsonb") -> sa.Column:
    return sa.Column(name, postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                     server_default=sa.text(empty))


def upgrade() -> None:
    """Create the four application tables with their indexes and constraints."""
    op.create_table(
        'orders',
        _id(),
        sa.Column('order_no', sa.String(64), nullable=False, comment='Human order number'),
        sa.Column('order_date', sa.DateTime(timezone=True), nullable=False,
                  comment='When the order was placed'),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('f_name', sa.String(120), nullable=True),
        sa.Column('l_name', sa.String(120), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(64), nullable=True),
        sa.Column('sales_agent', sa.String(120), nullable=True),
        _jsonb('billing', "'{}'::jsonb"),
        _jsonb('shipping', "'{}'::jsonb"),
        sa.Column('year', sa.String(8), nullable=True),
        sa.Column('make', sa.String(64), nullable=True),
        sa.Column('model', sa.String(64), nullable=True),
        sa.Column('part_required', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('part_no', sa.String(120), nullable=True),
        sa.Column('vin', sa.String(32), nullable=True),
        sa.Column('warranty', sa.Integer(), nullable=True),
        _money('sold_price', nullable=False),
        _money('cost_price', nullable=False),
        _money('shipping_fee', nullable=False),
        _money('sales_tax', nullable=False),
        _money('gross_profit', nullable=False),
        _money('actual_gp'),
        sa.Column('order_status', sa.String(64), nullable=False,
                  server_default='Placed', comment='Dashboard order status'),
        _money('cust_ref_amount'),
        _when('cust_refund_date'),
        _money('cust_refunded_amount'),
        _when('cancelled_date'),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        _when('disputed_date'),
        sa.Column('dispute_reason', sa.Text(), nullable=True),
        _money('reimbursement_amount'),
        _when('reimbursement_date'),
        _jsonb('order_history'),
        _jsonb('support_notes'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_no', name='uq_orders_order_no'),
        comment='Customer part orders',
    )
    op.create_index('ix_orders_sales_agent', 'orders', ['sales_agent'])
    op.create_index('idx_orders_order_date', 'orders', ['order_date'])
    op.create_index('idx_orders_status_date', 'orders', ['order_status', 'order_date'])
    op.create_index('idx_orders_cancelled_date', 'orders', ['cancelled_date'])
    op.create_index('idx_orders_refund_date', 'orders', ['cust_refund_date'])
    op.create_index('idx_orders_disputed_date', 'orders', ['disputed_date'])

    op.create_table(
        'yards',
        _id(),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False,
                  comment='1-based index of the yard within its order'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1',
                  comment='Optimistic concurrency stamp'),
        sa.Column('yard_name', sa.String(255), nullable=False),
        sa.Column('agent_name', sa.String(120), nullable=True),
        sa.Column('yard_rating', sa.String(32), nullable=True),
        sa.Column('phone', sa.String(64), nullable=True),
        sa.Column('alt_no', sa.String(64), nullable=True),
        sa.Column('ext', sa.String(16), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('street', sa.String(255), nullable=True),
        sa.Column('city', sa.String(120), nullable=True),
        sa.Column('state', sa.String(64), nullable=True),
        sa.Column('zipcode', sa.String(16), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('country', sa.String(64), nullable=True),
        sa.Column('stock_no', sa.String(120), nullable=True),
        sa.Column('warranty', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(64), nullable=False, server_default='Yard located'),
        _when('po_sent_date'),
        _when('po_cancelled_date'),
        _when('part_shipped_date'),
        _when('delivered_date'),
        _when('label_voided_date'),
        _when('shipment_cancelled_date'),
        sa.Column('payment_status', sa.String(64), nullable=True),
        _when('card_charged_date'),
        _money('part_price'),
        _text('shipping_details', 120),
        _money('others'),
        _text('tracking_no', 120),
        _text('eta', 64),
        _text('shipper_name', 120),
        _text('tracking_link'),
        sa.Column('refund_status', sa.String(64), nullable=True),
        _money('refunded_amount'),
        _when('refunded_date'),
        _money('refund_to_collect'),
        sa.Column('refund_reason', sa.Text(), nullable=True),
        _money('store_credit'),
        sa.Column('collect_refund_checkbox', sa.String(64), nullable=False, server_default='Unticked'),
        sa.Column('ups_claim_checkbox', sa.String(64), nullable=False, server_default='Unticked'),
        sa.Column('store_credit_checkbox', sa.String(64), nullable=False, server_default='Unticked'),
        _text('esc_ticked', 8),
        _when('escalation_date'),
        sa.Column('escalation_process', sa.String(64), nullable=True),
        sa.Column('escalation_cause', sa.String(64), nullable=True),
        _text('cust_reason', 64),
        _text('cust_ship_to_rep'),
        _text('customer_shipping_method_replacement', 32),
        _money('cust_own_ship_replacement'),
        _text('customer_shipper_replacement', 120),
        _text('customer_tracking_number_replacement', 120),
        _text('customer_eta_replacement', 64),
        _text('cust_replacement_delivery', 64),
        _text('yard_shipping_status', 64),
        _text('yard_shipping_method', 32),
        _money('yard_own_shipping'),
        _text('yard_shipper', 120),
        _text('yard_tracking_number', 120),
        _text('yard_tracking_eta', 64),
        _text('yard_tracking_link'),
        _text('cust_ship_to_ret'),
        _text('customer_shipping_method_return', 32),
        _money('cust_own_shipping_return'),
        _text('customer_shipper_return', 120),
        _text('return_tracking_cust', 120),
        _text('cust_ret_part_eta', 64),
        _text('cust_return_delivery', 64),
        _jsonb('notes'),
        _jsonb('label_history'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('order_id', 'position', name='uq_yards_order_position'),
        sa.CheckConstraint('position >= 1', name='ck_yards_position_positive'),
        sa.CheckConstraint(
            "(CASE WHEN collect_refund_checkbox = 'Ticked' THEN 1 ELSE 0 END"
            " + CASE WHEN ups_claim_checkbox = 'Ticked' THEN 1 ELSE 0 END"
            " + CASE WHEN store_credit_checkbox = 'Ticked' THEN 1 ELSE 0 END) <= 1",
            name='ck_yards_single_refund_flag',
        ),
        comment='Supplier attempts per order',
    )
    op.create_index('idx_yards_tracking_no', 'yards', ['tracking_no'])
    op.create_index('idx_yards_store_credit', 'yards', ['store_credit'])

    op.create_table(
        'email_outbox',
        _id(),
        sa.Column('order_no', sa.String(64), nullable=False),
        sa.Column('yard_index', sa.Integer(), nullable=True),
        sa.Column('kind', sa.String(64), nullable=False),
        sa.Column('sender', sa.String(255), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=False),
        _jsonb('bcc'),
        sa.Column('subject', sa.String(500), nullable=False),
        sa.Column('html_body', sa.Text(), nullable=False),
        sa.Column('text_body', sa.Text(), nullable=True),
        _jsonb('attachments'),
        sa.Column('status', sa.String(64), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('message_id', sa.String(255), nullable=True),
        _when('sent_at'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('attempts >= 0', name='ck_email_outbox_attempts_non_negative'),
        sa.CheckConstraint('length(recipient) >= 3', name='ck_email_outbox_recipient_min_length'),
        comment='Transactional e-mail outbox',
    )
    op.create_index('ix_email_outbox_order_no', 'email_outbox', ['order_no'])
    op.create_index('ix_email_outbox_status_attempts', 'email_outbox', ['status', 'attempts'])

    op.create_table(
        'gmail_lead_messages',
        _id(),
        sa.Column('message_id', sa.String(255), nullable=False),
        sa.Column('thread_id', sa.String(255), nullable=True),
        _text('subject', 1000),
        _text('sender', 500),
        _text('snippet'),
        sa.Column('body_html', sa.Text(), nullable=True),
        sa.Column('agent_email', sa.String(255), nullable=True),
        _when('internal_date'),
        sa.Column('status', sa.String(64), nullable=False, server_default='active'),
        sa.Column('claimed_by', sa.String(255), nullable=True),
        sa.Column('claimed_by_name', sa.String(120), nullable=True),
        _when('claimed_at'),
        _when('closed_at'),
        _jsonb('labels'),
        _jsonb('comments'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('message_id', name='uq_gmail_lead_messages_message_id'),
        comment='Sales leads ingested from Gmail',
    )
    op.create_index('ix_gmail_lead_messages_thread_id', 'gmail_lead_messages', ['thread_id'])
    op.create_index('ix_gmail_lead_messages_agent_email', 'gmail_lead_messages', ['agent_email'])
    op.create_index('ix_gmail_lead_messages_claimed_by', 'gmail_lead_messages', ['claimed_by'])
    op.create_index(
        'ix_gmail_lead_messages_status_date', 'gmail_lead_messages', ['status', 'internal_date']
    )


def downgrade() -> None:
    """Drop all application tables."""
    op.drop_table('gmail_lead_messages')
    op.drop_table('email_outbox')
    op.drop_table('yards')
    op.drop_table('orders')
