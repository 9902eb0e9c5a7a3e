"""marketday core schema

Revision ID: 5c1d8e2a7b40
Revises:
Create Date: 2026-10-12 09:14:03.512207

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c1d8e2a7b40'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=True),
            sa.Column('phone', sa.String(length=32), nullable=True),
            sa.Column('role', sa.String(length=24), nullable=False, server_default='buyer'),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
            _ts('created_at', nullable=False),
        )
        op.create_index('ix_users_email', 'users', ['email'], unique=True)
        op.create_index('ix_users_role', 'users', ['role'])

    if 'vendor_profiles' not in tables:
        op.create_table(
            'vendor_profiles',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('vertical_id', sa.String(length=48), nullable=True),
            sa.Column('business_name', sa.String(length=160), nullable=False, server_default=''),
            sa.Column('stripe_account_id', sa.String(length=64), nullable=True),
            sa.Column('stripe_payouts_enabled', sa.Boolean(), nullable=False, server_default=sa.text('false')),
            sa.Column('orders_confirmed_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('orders_cancelled_count', sa.Integer(), nullable=False, server_default='0'),
            _ts('cancellation_warning_sent_at'),
            _ts('created_at', nullable=False),
        )
        op.create_index('ix_vendor_profiles_user_id', 'vendor_profiles', ['user_id'])
        op.create_index('ix_vendor_profiles_vertical_id', 'vendor_profiles', ['vertical_id'])

    if 'markets' not in tables:
        op.create_table(
            'markets',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=160), nullable=False),
            sa.Column('market_type', sa.String(length=24), nullable=False, server_default='traditional'),
            sa.Column('vertical_id', sa.String(length=48), nullable=True),
            sa.Column('address', sa.String(length=255), nullable=True),
            sa.Column('city', sa.String(length=80), nullable=True),
            sa.Column('state', sa.String(length=64), nullable=True),
            sa.Column('timezone', sa.String(length=64), nullable=False, server_default='America/Chicago'),
            sa.Column('cutoff_hours', sa.Float(), nullable=True),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
            _ts('created_at', nullable=False),
        )
        op.create_index('ix_markets_vertical_id', 'markets', ['vertical_id'])

    if 'market_schedules' not in tables:
        op.create_table(
            'market_schedules',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('market_id', sa.Integer(), sa.ForeignKey('markets.id'), nullable=False),
            sa.Column('day_of_week', sa.Integer(), nullable=False),
            sa.Column('start_time', sa.String(length=8), nullable=False),
            sa.Column('end_time', sa.String(length=8), nullable=False),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        )
        op.create_index('ix_market_schedules_market_id', 'market_schedules', ['market_id'])

    if 'listings' not in tables:
        op.create_table(
            'listings',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('vendor_profile_id', sa.Integer(), sa.ForeignKey('vendor_profiles.id'), nullable=False),
            sa.Column('vertical_id', sa.String(length=48), nullable=True),
            sa.Column('title', sa.String(length=160), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='draft'),
            sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('quantity', sa.Integer(), nullable=True),
            _ts('created_at', nullable=False),
            _ts('deleted_at'),
        )
        op.create_index('ix_listings_vendor_profile_id', 'listings', ['vendor_profile_id'])
        op.create_index('ix_listings_vertical_id', 'listings', ['vertical_id'])
        op.create_index('ix_listings_status', 'listings', ['status'])

    if 'listing_markets' not in tables:
        op.create_table(
            'listing_markets',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id'), nullable=False),
            sa.Column('market_id', sa.Integer(), sa.ForeignKey('markets.id'), nullable=False),
            sa.UniqueConstraint('listing_id', 'market_id', name='uq_listing_market'),
        )
        op.create_index('ix_listing_markets_listing_id', 'listing_markets', ['listing_id'])
        op.create_index('ix_listing_markets_market_id', 'listing_markets', ['market_id'])

    if 'orders' not in tables:
        op.create_table(
            'orders',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_number', sa.String(length=32), nullable=False),
            sa.Column('buyer_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('vertical_id', sa.String(length=48), nullable=True),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
            sa.Column('payment_method', sa.String(length=24), nullable=False, server_default='stripe'),
            sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
            _ts('created_at', nullable=False),
            _ts('updated_at', nullable=False),
        )
        op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
        op.create_index('ix_orders_buyer_user_id', 'orders', ['buyer_user_id'])
        op.create_index('ix_orders_vertical_id', 'orders', ['vertical_id'])
        op.create_index('ix_orders_status', 'orders', ['status'])

    if 'order_items' not in tables:
        op.create_table(
            'order_items',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id'), nullable=True),
            sa.Column('vendor_profile_id', sa.Integer(), sa.ForeignKey('vendor_profiles.id'), nullable=False),
            sa.Column('market_id', sa.Integer(), sa.ForeignKey('markets.id'), nullable=True),
            sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
            _ts('confirmed_at'),
            _ts('ready_at'),
            _ts('fulfilled_at'),
            _ts('cancelled_at'),
            sa.Column('cancelled_by', sa.String(length=24), nullable=True),
            sa.Column('cancellation_reason', sa.String(length=500), nullable=True),
            sa.Column('refund_amount_cents', sa.Integer(), nullable=True),
            sa.Column('refund_status', sa.String(length=24), nullable=False, server_default='none'),
            sa.Column('refund_reference', sa.String(length=120), nullable=True),
            _ts('issue_reported_at'),
            sa.Column('issue_description', sa.String(length=1000), nullable=True),
            sa.Column('issue_status', sa.String(length=24), nullable=True),
            _ts('issue_resolved_at'),
            sa.Column('issue_resolved_by', sa.Integer(), nullable=True),
            sa.Column('issue_notes', sa.String(length=1000), nullable=True),
            _ts('issue_escalated_at'),
            _ts('created_at', nullable=False),
            _ts('updated_at', nullable=False),
        )
        for col in ('order_id', 'listing_id', 'vendor_profile_id', 'market_id', 'status'):
            op.create_index(f'ix_order_items_{col}', 'order_items', [col])

    if 'payments' not in tables:
        op.create_table(
            'payments',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('stripe_payment_intent_id', sa.String(length=120), nullable=True),
            sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
            _ts('created_at', nullable=False),
        )
        op.create_index('ix_payments_order_id', 'payments', ['order_id'])
        op.create_index('ix_payments_stripe_payment_intent_id', 'payments', ['stripe_payment_intent_id'])

    if 'vendor_payouts' not in tables:
        op.create_table(
            'vendor_payouts',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_item_id', sa.Integer(), sa.ForeignKey('order_items.id'), nullable=False),
            sa.Column('vendor_profile_id', sa.Integer(), sa.ForeignKey('vendor_profiles.id'), nullable=False),
            sa.Column('kind', sa.String(length=32), nullable=False, server_default='cancellation_fee'),
            sa.Column('amount_cents', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=24), nullable=False),
            sa.Column('stripe_transfer_id', sa.String(length=120), nullable=True),
            sa.Column('last_error', sa.String(length=240), nullable=True),
            _ts('created_at', nullable=False),
            _ts('updated_at', nullable=False),
        )
        op.create_index('ix_vendor_payouts_order_item_id', 'vendor_payouts', ['order_item_id'])
        op.create_index('ix_vendor_payouts_vendor_profile_id', 'vendor_payouts', ['vendor_profile_id'])
        op.create_index('ix_vendor_payouts_status', 'vendor_payouts', ['status'])

    if 'order_item_transitions' not in tables:
        op.create_table(
            'order_item_transitions',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_item_id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.Integer(), nullable=False),
            sa.Column('from_status', sa.String(length=24), nullable=False),
            sa.Column('to_status', sa.String(length=24), nullable=False),
            sa.Column('actor_type', sa.String(length=32), nullable=False),
            sa.Column('actor_id', sa.Integer(), nullable=True),
            sa.Column('reason', sa.String(length=240), nullable=True),
            sa.Column('metadata_json', sa.Text(), nullable=True),
            _ts('created_at', nullable=False),
        )
        op.create_index('ix_order_item_transitions_order_item_id', 'order_item_transitions', ['order_item_id'])
        op.create_index('ix_order_item_transitions_order_id', 'order_item_transitions', ['order_id'])

    if 'notifications' not in tables:
        op.create_table(
            'notifications',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('type', sa.String(length=64), nullable=False),
            sa.Column('channel', sa.String(length=32), nullable=False),
            sa.Column('title', sa.String(length=160), nullable=True),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('action_url', sa.String(length=255), nullable=True),
            sa.Column('status', sa.String(length=24), nullable=False),
            sa.Column('provider', sa.String(length=64), nullable=True),
            sa.Column('provider_ref', sa.String(length=120), nullable=True),
            _ts('created_at', nullable=False),
            _ts('sent_at'),
            _ts('read_at'),
            sa.Column('meta', sa.Text(), nullable=True),
        )
        op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
        op.create_index('ix_notifications_type', 'notifications', ['type'])

    if 'platform_events' not in tables:
        op.create_table(
            'platform_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            _ts('created_at', nullable=False),
            sa.Column('event_type', sa.String(length=80), nullable=False),
            sa.Column('actor_user_id', sa.Integer(), nullable=True),
            sa.Column('subject_type', sa.String(length=80), nullable=True),
            sa.Column('subject_id', sa.String(length=120), nullable=True),
            sa.Column('request_id', sa.String(length=80), nullable=True),
            sa.Column('severity', sa.String(length=16), nullable=False),
            sa.Column('needs_reconciliation', sa.Boolean(), nullable=False, server_default=sa.text('false')),
            sa.Column('metadata_json', sa.Text(), nullable=True),
        )
        for col in ('created_at', 'event_type', 'actor_user_id', 'subject_type', 'subject_id', 'severity', 'needs_reconciliation'):
            op.create_index(f'ix_platform_events_{col}', 'platform_events', [col])


def downgrade():
    for name in (
        'platform_events',
        'notifications',
        'order_item_transitions',
        'vendor_payouts',
        'payments',
        'order_items',
        'orders',
        'listing_markets',
        'listings',
        'market_schedules',
        'markets',
        'vendor_profiles',
        'users',
    ):
        op.drop_table(name)
