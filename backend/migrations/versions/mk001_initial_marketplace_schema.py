"""initial marketplace schema

Revision ID: mk001
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete marketplace schema:
- stores, users, store_members, session_tokens: tenancy and dashboard auth
- listings, listing_variants: catalog
- inventory_locations, inventory_items, inventory_levels, inventory_adjustments:
  cached stock counters plus the append-only ledger they replay from
- customers, draft_orders, orders (+ items, discounts, events, fulfillments)
- order_payments, processed_webhook_events, seller_balances,
  seller_balance_transactions, seller_payouts: payment reconciliation and payouts
- document_sequences: gap-free per-store order/draft numbering
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'mk001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated=True):
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                                 server_default=sa.text('CURRENT_TIMESTAMP')))
    return columns


def _address_columns():
    columns = []
    for kind in ('shipping', 'billing'):
        columns += [
            sa.Column(f'{kind}_name', sa.String(length=255), nullable=True),
            sa.Column(f'{kind}_phone', sa.String(length=32), nullable=True),
            sa.Column(f'{kind}_address_line1', sa.String(length=255), nullable=True),
            sa.Column(f'{kind}_address_line2', sa.String(length=255), nullable=True),
            sa.Column(f'{kind}_city', sa.String(length=120), nullable=True),
            sa.Column(f'{kind}_region', sa.String(length=120), nullable=True),
            sa.Column(f'{kind}_postal_code', sa.String(length=32), nullable=True),
            sa.Column(f'{kind}_country', sa.String(length=2), nullable=True),
        ]
    return columns


def _money_columns():
    return [
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('subtotal_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('shipping_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
    ]


def _line_item_columns():
    return [
        sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id'), nullable=True),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('listing_variants.id'), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('line_subtotal', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('line_total', sa.Numeric(10, 2), nullable=False, server_default='0'),
    ]


def upgrade():
    # ============================================================================
    # Tenancy and auth
    # ============================================================================
    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('slug', sa.String(length=120), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('stripe_account_id', sa.String(length=64), nullable=True),
        sa.Column('stripe_charges_enabled', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('stripe_payouts_enabled', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('stripe_onboarding_complete', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug', name='uq_stores_slug'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stores_stripe_account_id', 'stores', ['stripe_account_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(updated=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'store_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='owner'),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'user_id', name='uq_store_members_store_user'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_store_members_store_id', 'store_members', ['store_id'])
    op.create_index('ix_store_members_user_id', 'store_members', ['user_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        *_timestamps(updated=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'listings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_listings_store_id', 'listings', ['store_id'])
    op.create_index('ix_listings_store_status', 'listings', ['store_id', 'status'])

    op.create_table(
        'listing_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False, server_default='Default'),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_listing_variants_listing_id', 'listing_variants', ['listing_id'])
    op.create_index('ix_listing_variants_sku', 'listing_variants', ['sku'])

    # ============================================================================
    # Inventory: cached counters + append-only ledger
    # ============================================================================
    op.create_table(
        'inventory_locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'name', name='uq_inventory_locations_store_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_locations_store_id', 'inventory_locations', ['store_id'])

    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('listing_variants.id'), nullable=False),
        sa.Column('cost_per_item', sa.Numeric(10, 2), nullable=True),
        sa.Column('requires_shipping', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('weight_grams', sa.Integer(), nullable=True),
        sa.Column('length_cm', sa.Numeric(8, 2), nullable=True),
        sa.Column('width_cm', sa.Numeric(8, 2), nullable=True),
        sa.Column('height_cm', sa.Numeric(8, 2), nullable=True),
        sa.Column('country_of_origin', sa.String(length=2), nullable=True),
        sa.Column('hs_code', sa.String(length=16), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_items_variant_id', 'inventory_items', ['variant_id'])

    op.create_table(
        'inventory_levels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_item_id', sa.Integer(), sa.ForeignKey('inventory_items.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('inventory_locations.id'), nullable=False),
        sa.Column('available', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('committed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('incoming', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('damaged', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('inventory_item_id', 'location_id', name='uq_inventory_levels_item_location'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_levels_inventory_item_id', 'inventory_levels', ['inventory_item_id'])
    op.create_index('ix_inventory_levels_location_id', 'inventory_levels', ['location_id'])

    # No FK to items/levels: ledger rows outlive the level they describe
    op.create_table(
        'inventory_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_item_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=16), nullable=False),
        sa.Column('change', sa.Integer(), nullable=False),
        sa.Column('available_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('committed_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('on_hand_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('incoming_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_adjustments_inventory_item_id', 'inventory_adjustments', ['inventory_item_id'])
    op.create_index('ix_inventory_adjustments_location_id', 'inventory_adjustments', ['location_id'])
    op.create_index('ix_inventory_adjustments_event_type', 'inventory_adjustments', ['event_type'])
    op.create_index('ix_inventory_adjustments_created_at', 'inventory_adjustments', ['created_at'])
    op.create_index('ix_inv_adj_item_location_created', 'inventory_adjustments',
                    ['inventory_item_id', 'location_id', 'created_at'])
    op.create_index('ix_inv_adj_reference', 'inventory_adjustments', ['reference_type', 'reference_id'])

    # ============================================================================
    # Customers and orders
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=120), nullable=True),
        sa.Column('last_name', sa.String(length=120), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('orders_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_spent', sa.Numeric(10, 2), nullable=False, server_default='0'),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'email', name='uq_customers_store_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_store_id', 'customers', ['store_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id'), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_first_name', sa.String(length=120), nullable=True),
        sa.Column('customer_last_name', sa.String(length=120), nullable=True),
        *_money_columns(),
        sa.Column('refunded_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open'),
        sa.Column('payment_status', sa.String(length=24), nullable=False, server_default='pending'),
        sa.Column('fulfillment_status', sa.String(length=16), nullable=False, server_default='unfulfilled'),
        sa.Column('workflow_status', sa.String(length=16), nullable=False, server_default='normal'),
        sa.Column('hold_reason', sa.String(length=255), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('shipping_method', sa.String(length=64), nullable=True),
        sa.Column('guest_checkout', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_address_columns(),
        sa.Column('placed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_store_id', 'orders', ['store_id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_fulfillment_status', 'orders', ['fulfillment_status'])
    op.create_index('ix_orders_store_status', 'orders', ['store_id', 'status'])
    op.create_index('ix_orders_store_placed', 'orders', ['store_id', 'placed_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        *_line_item_columns(),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('fulfilled_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('fulfilled_quantity >= 0', name='ck_order_items_fulfilled_nonneg'),
        sa.CheckConstraint('fulfilled_quantity <= quantity', name='ck_order_items_fulfilled_bounded'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_listing_id', 'order_items', ['listing_id'])
    op.create_index('ix_order_items_variant_id', 'order_items', ['variant_id'])

    op.create_table(
        'draft_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('draft_number', sa.String(length=32), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id'), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_first_name', sa.String(length=120), nullable=True),
        sa.Column('customer_last_name', sa.String(length=120), nullable=True),
        *_money_columns(),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('converted_to_order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('invoice_token', sa.String(length=64), nullable=True),
        sa.Column('invoice_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invoice_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invoice_sent_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_address_columns(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('draft_number', name='uq_draft_orders_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_draft_orders_store_id', 'draft_orders', ['store_id'])
    op.create_index('ix_draft_orders_customer_id', 'draft_orders', ['customer_id'])
    op.create_index('ix_draft_orders_invoice_token', 'draft_orders', ['invoice_token'], unique=True)
    op.create_index('ix_draft_orders_store_completed', 'draft_orders', ['store_id', 'completed'])

    op.create_table(
        'draft_order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('draft_order_id', sa.Integer(), sa.ForeignKey('draft_orders.id'), nullable=False),
        *_line_item_columns(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_draft_order_items_draft_order_id', 'draft_order_items', ['draft_order_id'])
    op.create_index('ix_draft_order_items_listing_id', 'draft_order_items', ['listing_id'])
    op.create_index('ix_draft_order_items_variant_id', 'draft_order_items', ['variant_id'])

    op.create_table(
        'order_discounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('code', sa.String(length=100), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False, server_default='order'),
        sa.Column('value_type', sa.String(length=20), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_discounts_order_id', 'order_discounts', ['order_id'])

    op.create_table(
        'order_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('visibility', sa.String(length=16), nullable=False, server_default='internal'),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_events_order_id', 'order_events', ['order_id'])
    op.create_index('ix_order_events_order_created', 'order_events', ['order_id', 'created_at'])

    op.create_table(
        'fulfillments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=True),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('inventory_locations.id'), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='success'),
        sa.Column('carrier', sa.String(length=64), nullable=True),
        sa.Column('tracking_number', sa.String(length=128), nullable=True),
        sa.Column('tracking_url', sa.String(length=512), nullable=True),
        sa.Column('line_items', sa.JSON(), nullable=False),
        sa.Column('fulfilled_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_fulfillments_order_id', 'fulfillments', ['order_id'])

    # ============================================================================
    # Payments, webhooks and seller balances
    # ============================================================================
    op.create_table(
        'order_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=True),
        sa.Column('provider_payment_id', sa.String(length=128), nullable=True),
        sa.Column('checkout_session_id', sa.String(length=128), nullable=True),
        sa.Column('platform_fee_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('net_amount_to_store', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('refunded_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
        sa.Column('transfer_status', sa.String(length=16), nullable=False, server_default='held'),
        sa.Column('transfer_id', sa.String(length=128), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'provider_payment_id', name='uq_order_payments_order_provider_payment'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_payments_order_id', 'order_payments', ['order_id'])
    op.create_index('ix_order_payments_provider_payment', 'order_payments', ['provider_payment_id'])

    op.create_table(
        'processed_webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False, server_default='stripe'),
        sa.Column('event_id', sa.String(length=128), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'event_id', name='uq_processed_webhook_events_provider_event'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'seller_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('available_balance', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('pending_balance', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', name='uq_seller_balances_store'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'seller_balance_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('order_payment_id', sa.Integer(), sa.ForeignKey('order_payments.id'), nullable=True),
        sa.Column('release_of_id', sa.Integer(), sa.ForeignKey('seller_balance_transactions.id'), nullable=True),
        sa.Column('balance_before', sa.Numeric(10, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='available'),
        sa.Column('available_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('release_of_id', name='uq_seller_balance_tx_release_of'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_seller_balance_transactions_store_id', 'seller_balance_transactions', ['store_id'])
    op.create_index('ix_seller_balance_transactions_type', 'seller_balance_transactions', ['type'])
    op.create_index('ix_seller_balance_transactions_order_id', 'seller_balance_transactions', ['order_id'])
    op.create_index('ix_seller_balance_tx_store_created', 'seller_balance_transactions', ['store_id', 'created_at'])
    op.create_index('ix_seller_balance_tx_status_available_at', 'seller_balance_transactions',
                    ['status', 'available_at'])

    op.create_table(
        'seller_payouts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('provider_payout_id', sa.String(length=128), nullable=True),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('requested_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_seller_payouts_store_id', 'seller_payouts', ['store_id'])
    op.create_index('ix_seller_payouts_store_status', 'seller_payouts', ['store_id', 'status'])

    # ============================================================================
    # Document numbering
    # ============================================================================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_type', name='uq_document_sequences_store_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_store_id', 'document_sequences', ['store_id'])


def downgrade():
    for table in (
        'document_sequences',
        'seller_payouts',
        'seller_balance_transactions',
        'seller_balances',
        'processed_webhook_events',
        'order_payments',
        'fulfillments',
        'order_events',
        'order_discounts',
        'draft_order_items',
        'draft_orders',
        'order_items',
        'orders',
        'customers',
        'inventory_adjustments',
        'inventory_levels',
        'inventory_items',
        'inventory_locations',
        'listing_variants',
        'listings',
        'session_tokens',
        'store_members',
        'users',
        'stores',
    ):
        op.drop_table(table)
