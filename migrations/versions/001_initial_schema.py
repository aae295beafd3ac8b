"""
Alembic migration: initial parts ordering schema.

Creates users, catalog, order aggregate, offers, payments, notifications,
comments, coupons and the audit log. Enum columns are stored as VARCHAR.

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _order_fk(ondelete: str = 'CASCADE') -> sa.Column:
    return sa.Column(
        'order_request_id',
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey('order_requests.id', ondelete=ondelete),
        nullable=False,
    )


def upgrade() -> None:
    """Create every table of the initial schema."""
    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='USER'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        comment='Accounts known to the storefront',
    )
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'categories',
        sa.Column('id', sa.String(120), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('path', sa.String(500), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'upsell_items',
        _id(),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint('price >= 0', name='ck_upsell_items_price_non_negative'),
    )
    op.create_index('ix_upsell_items_active', 'upsell_items', ['active'])

    op.create_table(
        'coupons',
        _id(),
        sa.Column('code', sa.String(40), nullable=False, unique=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint('value >= 0', name='ck_coupons_value_non_negative'),
        sa.CheckConstraint("type <> 'PERCENT' OR value <= 100", name='ck_coupons_percent_range'),
        sa.CheckConstraint('usage_count >= 0', name='ck_coupons_usage_count_non_negative'),
    )

    op.create_table(
        'order_requests',
        _id(),
        sa.Column('short_code', sa.String(8), nullable=False, unique=True),
        sa.Column('vin', sa.String(17), nullable=False),
        sa.Column('guest_email', sa.String(255), nullable=True),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('status_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('magic_link_hash', sa.String(64), nullable=True),
        sa.Column('magic_link_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'selection_draft',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('coupon_code', sa.String(40), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=True),
        sa.Column('discount', sa.Numeric(12, 2), nullable=True),
        sa.Column('shipping_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('terms_accepted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('char_length(vin) = 17', name='ck_order_requests_vin_length'),
        sa.CheckConstraint(
            'total_amount IS NULL OR total_amount >= 0',
            name='ck_order_requests_total_non_negative',
        ),
        comment='Customer parts requests',
    )
    op.create_index('ix_order_requests_status_created', 'order_requests', ['status', 'created_at'])
    op.create_index('ix_order_requests_user', 'order_requests', ['user_id'])
    op.create_index('ix_order_requests_guest_email', 'order_requests', ['guest_email'])

    op.create_table(
        'order_items',
        _id(),
        _order_fk(),
        sa.Column(
            'category_id',
            sa.String(120),
            sa.ForeignKey('categories.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('category_path', sa.String(500), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('note', sa.String(200), nullable=True),
        sa.Column('photo_url', sa.String(500), nullable=True),
        sa.Column('state', sa.String(20), nullable=False, server_default='REQUESTED'),
        *_timestamps(),
        sa.CheckConstraint(
            'quantity >= 1 AND quantity <= 999',
            name='ck_order_items_quantity_range',
        ),
        comment='Requested part lines',
    )
    op.create_index('ix_order_items_order', 'order_items', ['order_request_id'])

    op.create_table(
        'offers',
        _id(),
        sa.Column(
            'order_item_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('order_items.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('manufacturer', sa.String(120), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity_available', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('slot', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('order_item_id', 'slot', name='uq_offers_item_slot'),
        sa.CheckConstraint('slot >= 1 AND slot <= 3', name='ck_offers_slot_range'),
        sa.CheckConstraint('unit_price >= 0', name='ck_offers_unit_price_non_negative'),
        sa.CheckConstraint(
            'quantity_available >= 0',
            name='ck_offers_quantity_available_non_negative',
        ),
        sa.CheckConstraint('version >= 1', name='ck_offers_version_positive'),
        comment='Supplier quotes, at most three per order item',
    )
    op.create_index('ix_offers_order_item', 'offers', ['order_item_id'])

    op.create_table(
        'chosen_offers',
        _id(),
        sa.Column(
            'order_item_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('order_items.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            'offer_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('offers.id', ondelete='CASCADE'),
            nullable=False,
        ),
        *_timestamps(),
    )

    op.create_table(
        'order_addresses',
        _id(),
        _order_fk(),
        sa.Column('kind', sa.String(20), nullable=False, server_default='SHIPPING'),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(40), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('line1', sa.String(200), nullable=False),
        sa.Column('line2', sa.String(200), nullable=True),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('postal_code', sa.String(20), nullable=False),
        sa.Column('country', sa.String(2), nullable=False, server_default='PL'),
        *_timestamps(),
        sa.UniqueConstraint('order_request_id', 'kind', name='uq_order_addresses_order_kind'),
    )

    op.create_table(
        'invoice_details',
        _id(),
        sa.Column(
            'order_request_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('order_requests.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
        ),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('company_name', sa.String(200), nullable=True),
        sa.Column('tax_id', sa.String(20), nullable=True),
        sa.Column('address', sa.String(300), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'shipments',
        _id(),
        sa.Column(
            'order_request_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('order_requests.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
        ),
        sa.Column('method', sa.String(30), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('price >= 0', name='ck_shipments_price_non_negative'),
    )

    op.create_table(
        'order_addons',
        _id(),
        _order_fk(),
        sa.Column(
            'upsell_item_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('upsell_items.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('quantity >= 1', name='ck_order_addons_quantity_positive'),
    )

    op.create_table(
        'payments',
        _id(),
        _order_fk(),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='PLN'),
        sa.Column('status', sa.String(20), nullable=False, server_default='INIT'),
        sa.Column('provider_reference', sa.String(120), nullable=True),
        sa.Column('raw_payload', postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount >= 0', name='ck_payments_amount_non_negative'),
    )
    op.create_index('ix_payments_order_status', 'payments', ['order_request_id', 'status'])

    op.create_table(
        'notifications',
        _id(),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('audience', sa.String(20), nullable=False),
        sa.Column(
            'order_request_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('order_requests.id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('idempotency_key', sa.String(200), nullable=True, unique=True),
        *_timestamps(),
        comment='In-app notifications',
    )
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'is_read'])
    op.create_index(
        'ix_notifications_order_audience', 'notifications', ['order_request_id', 'audience']
    )
    op.create_index(
        'ix_notifications_audience_created', 'notifications', ['audience', 'created_at']
    )

    op.create_table(
        'order_comments',
        _id(),
        _order_fk(),
        sa.Column(
            'author_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('author_role', sa.String(20), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(
            'char_length(body) >= 1 AND char_length(body) <= 2000',
            name='ck_order_comments_body_length',
        ),
    )
    op.create_index(
        'ix_order_comments_order_created', 'order_comments', ['order_request_id', 'created_at']
    )

    op.create_table(
        'audit_logs',
        _id(),
        sa.Column(
            'order_request_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('order_requests.id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column(
            'actor_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('actor_role', sa.String(20), nullable=False),
        sa.Column('action', sa.String(30), nullable=False),
        sa.Column('from_status', sa.String(20), nullable=True),
        sa.Column('to_status', sa.String(20), nullable=True),
        sa.Column(
            'details',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
    )
    op.create_index('ix_audit_logs_order_created', 'audit_logs', ['order_request_id', 'created_at'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    for table in (
        'audit_logs',
        'order_comments',
        'notifications',
        'payments',
        'order_addons',
        'shipments',
        'invoice_details',
        'order_addresses',
        'chosen_offers',
        'offers',
        'order_items',
        'order_requests',
        'coupons',
        'upsell_items',
        'categories',
        'users',
    ):
        op.drop_table(table)
