"""Initial schema: users, sessions, customers, products, customer POs, QuickBooks connections

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17

This migration adds:
1. users, session_tokens (bearer sessions, hashed)
2. customers, products (QuickBooks-mirrored master data)
3. customer_pos, customer_po_items, customer_po_status_history
4. qb_connections (OAuth credentials per QuickBooks company)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_initial'
down_revision = None
branch_labels = None
depends_on = None


PRODUCTION_STATUSES = (
    'draft', 'pending_approval', 'approved', 'sent_to_production', 'in_production',
    'on_hold', 'quality_check', 'ready_for_invoice', 'invoiced', 'cancelled',
)


def upgrade():
    # ==========================================================================
    # 1. USERS AND SESSIONS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='staff'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_email'), ['email'], unique=True)

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_tokens_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)

    # ==========================================================================
    # 2. CUSTOMERS AND PRODUCTS
    # ==========================================================================
    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('mobile', sa.String(length=64), nullable=True),
        sa.Column('billing_address', sa.JSON(), nullable=True),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('qb_customer_id', sa.String(length=64), nullable=True),
        sa.Column('qb_sync_token', sa.String(length=32), nullable=True),
        sa.Column('qb_created_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('qb_last_updated_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('qb_customer_id', name='uq_customers_qb_customer_id'),
        sqlite_autoincrement=True
    )

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('unit_of_measure', sa.String(length=32), nullable=False, server_default='Each'),
        sa.Column('units_per_case', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('product_type', sa.String(length=32), nullable=False, server_default='finished_good'),
        sa.Column('cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sell_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('qb_item_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.UniqueConstraint('qb_item_id', name='uq_products_qb_item_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_name', ['name'], unique=False)

    # ==========================================================================
    # 3. CUSTOMER POS
    # ==========================================================================
    status_list = ", ".join(f"'{s}'" for s in PRODUCTION_STATUSES)
    op.create_table('customer_pos',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('po_number', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('po_date', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('production_status', sa.String(length=32), nullable=False, server_default='draft'),
        sa.Column('hold_reason', sa.String(length=500), nullable=True),
        sa.Column('production_notes', sa.Text(), nullable=True),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('qb_estimate_id', sa.String(length=64), nullable=True),
        sa.Column('qb_estimate_number', sa.String(length=64), nullable=True),
        sa.Column('qb_sync_token', sa.String(length=32), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint(f"production_status IN ({status_list})", name='ck_customer_pos_status'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['updated_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('po_number', name='uq_customer_pos_po_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_pos', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_customer_pos_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index('ix_customer_pos_status_created', ['production_status', 'created_at'], unique=False)

    op.create_table('customer_po_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('po_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_customer_po_items_quantity_positive'),
        sa.CheckConstraint('unit_price_cents >= 0', name='ck_customer_po_items_price_nonnegative'),
        sa.ForeignKeyConstraint(['po_id'], ['customer_pos.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('po_id', 'line_number', name='uq_customer_po_items_po_line'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_po_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_customer_po_items_po_id'), ['po_id'], unique=False)

    op.create_table('customer_po_status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('po_id', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=False),
        sa.Column('changed_by', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=500), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['po_id'], ['customer_pos.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['changed_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_po_status_history', schema=None) as batch_op:
        batch_op.create_index('ix_customer_po_status_history_po_changed', ['po_id', 'changed_at'], unique=False)

    # ==========================================================================
    # 4. QUICKBOOKS CONNECTIONS
    # ==========================================================================
    op.create_table('qb_connections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.String(length=64), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('realm_id', sa.String(length=64), nullable=False),
        sa.Column('base_url', sa.String(length=255), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('sync_enabled', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', name='uq_qb_connections_company'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('qb_connections', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_qb_connections_is_active'), ['is_active'], unique=False)
        batch_op.create_index('ix_qb_connections_active_expiry', ['is_active', 'token_expires_at'], unique=False)


def downgrade():
    op.drop_table('qb_connections')
    op.drop_table('customer_po_status_history')
    op.drop_table('customer_po_items')
    op.drop_table('customer_pos')
    op.drop_table('products')
    op.drop_table('customers')
    op.drop_table('session_tokens')
    op.drop_table('users')
