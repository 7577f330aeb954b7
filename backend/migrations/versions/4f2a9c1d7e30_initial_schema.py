"""initial schema

Revision ID: 4f2a9c1d7e30
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete poscore schema:
- tenancy: businesses, stores, tills, users, session_tokens, customers
- catalog: units, products, product_units
- ledger: accounts, journal_entries, journal_lines, expenses
- inventory: inventory_balances, stock_movements, stock_adjustments
- registers: shifts (one OPEN shift per till), shift_closures, cash_drawer_entries
- documents: sales, purchases, stock transfers, document_sequences
- audit: audit_logs, risk_alerts
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4f2a9c1d7e30'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # Tenancy
    # ============================================================================
    op.create_table(
        'businesses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('vat_enabled', sa.Boolean(), nullable=False),
        sa.Column('variance_reason_required', sa.Boolean(), nullable=False),
        sa.Column('cash_variance_threshold_pence', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_businesses_is_active', 'businesses', ['is_active'])

    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'name', name='uq_stores_business_name'),
        sa.UniqueConstraint('business_id', 'code', name='uq_stores_business_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stores_business_id', 'stores', ['business_id'])
    op.create_index('ix_stores_code', 'stores', ['code'])
    op.create_index('ix_stores_is_active', 'stores', ['is_active'])

    op.create_table(
        'tills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'name', name='uq_tills_store_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tills_store_id', 'tills', ['store_id'])
    op.create_index('ix_tills_is_active', 'tills', ['is_active'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('approval_pin_hash', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'username', name='uq_users_business_username'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_business_id', 'users', ['business_id'])
    op.create_index('ix_users_username', 'users', ['username'])
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_business_id', 'session_tokens', ['business_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_business_id', 'customers', ['business_id'])
    op.create_index('ix_customers_is_active', 'customers', ['is_active'])
    op.create_index('ix_customers_business_active', 'customers', ['business_id', 'is_active'])

    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('symbol', sa.String(length=16), nullable=True),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'name', name='uq_units_business_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_units_business_id', 'units', ['business_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('selling_price_base_pence', sa.Integer(), nullable=False),
        sa.Column('default_cost_base_pence', sa.Integer(), nullable=False),
        sa.Column('vat_rate_bps', sa.Integer(), nullable=False),
        sa.Column('promo_buy_qty', sa.Integer(), nullable=False),
        sa.Column('promo_get_qty', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'sku', name='uq_products_business_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_business_id', 'products', ['business_id'])
    op.create_index('ix_products_is_active', 'products', ['is_active'])

    op.create_table(
        'product_units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('conversion_to_base', sa.Integer(), nullable=False),
        sa.Column('is_base_unit', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'unit_id', name='uq_product_units_product_unit'),
        sa.CheckConstraint('conversion_to_base >= 1', name='ck_product_units_conversion_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_units_product_id', 'product_units', ['product_id'])
    op.create_index('ix_product_units_unit_id', 'product_units', ['unit_id'])

    # ============================================================================
    # Ledger
    # ============================================================================
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'code', name='uq_accounts_business_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_accounts_business_id', 'accounts', ['business_id'])

    op.create_table(
        'journal_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('entry_date', sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_journal_entries_business_id', 'journal_entries', ['business_id'])
    op.create_index('ix_journal_entries_entry_date', 'journal_entries', ['entry_date'])
    op.create_index('ix_journal_entries_reference', 'journal_entries',
                    ['business_id', 'reference_type', 'reference_id'])

    op.create_table(
        'journal_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('journal_entry_id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('debit_pence', sa.Integer(), nullable=False),
        sa.Column('credit_pence', sa.Integer(), nullable=False),
        sa.Column('memo', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['journal_entry_id'], ['journal_entries.id']),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('debit_pence >= 0 AND credit_pence >= 0', name='ck_journal_lines_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_journal_lines_journal_entry_id', 'journal_lines', ['journal_entry_id'])
    op.create_index('ix_journal_lines_account_id', 'journal_lines', ['account_id'])

    # ============================================================================
    # Inventory
    # ============================================================================
    op.create_table(
        'inventory_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('qty_on_hand_base', sa.Integer(), nullable=False),
        sa.Column('avg_cost_base_pence', sa.Integer(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'product_id', name='uq_inventory_balances_store_product'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_balances_store_id', 'inventory_balances', ['store_id'])
    op.create_index('ix_inventory_balances_product_id', 'inventory_balances', ['product_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=24), nullable=False),
        sa.Column('qty_base', sa.Integer(), nullable=False),
        sa.Column('before_qty_base', sa.Integer(), nullable=False),
        sa.Column('after_qty_base', sa.Integer(), nullable=False),
        sa.Column('unit_cost_base_pence', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_store_product', 'stock_movements', ['store_id', 'product_id'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    op.create_table(
        'stock_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('qty_in_unit', sa.Integer(), nullable=False),
        sa.Column('qty_base', sa.Integer(), nullable=False),
        sa.Column('unit_cost_base_pence', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_adjustments_business_id', 'stock_adjustments', ['business_id'])
    op.create_index('ix_stock_adjustments_store_id', 'stock_adjustments', ['store_id'])
    op.create_index('ix_stock_adjustments_product_id', 'stock_adjustments', ['product_id'])

    # ============================================================================
    # Registers
    # ============================================================================
    op.create_table(
        'shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('till_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('opening_cash_pence', sa.Integer(), nullable=False),
        sa.Column('expected_cash_pence', sa.Integer(), nullable=False),
        sa.Column('actual_cash_pence', sa.Integer(), nullable=True),
        sa.Column('variance_pence', sa.Integer(), nullable=True),
        sa.Column('card_total_pence', sa.Integer(), nullable=True),
        sa.Column('transfer_total_pence', sa.Integer(), nullable=True),
        sa.Column('mobile_money_total_pence', sa.Integer(), nullable=True),
        sa.Column('variance_reason_code', sa.String(length=32), nullable=True),
        sa.Column('variance_reason', sa.Text(), nullable=True),
        sa.Column('approval_mode', sa.String(length=16), nullable=True),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('override_reason_code', sa.String(length=32), nullable=True),
        sa.Column('override_justification', sa.Text(), nullable=True),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['till_id'], ['tills.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['closed_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shifts_business_id', 'shifts', ['business_id'])
    op.create_index('ix_shifts_store_id', 'shifts', ['store_id'])
    op.create_index('ix_shifts_till_id', 'shifts', ['till_id'])
    op.create_index('ix_shifts_user_id', 'shifts', ['user_id'])
    op.create_index('ix_shifts_status', 'shifts', ['status'])
    op.create_index('ix_shifts_opened_at', 'shifts', ['opened_at'])
    op.create_index('ix_shifts_closed_at', 'shifts', ['closed_at'])
    # At most one OPEN shift per till, enforced by the database
    op.create_index(
        'uq_shifts_one_open_per_till', 'shifts', ['till_id'], unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        'shift_closures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('schema_version', sa.Integer(), nullable=False),
        sa.Column('opening_cash_pence', sa.Integer(), nullable=False),
        sa.Column('cash_entries_total_pence', sa.Integer(), nullable=False),
        sa.Column('expected_cash_pence', sa.Integer(), nullable=False),
        sa.Column('counted_cash_pence', sa.Integer(), nullable=False),
        sa.Column('variance_pence', sa.Integer(), nullable=False),
        sa.Column('card_total_pence', sa.Integer(), nullable=False),
        sa.Column('transfer_total_pence', sa.Integer(), nullable=False),
        sa.Column('mobile_money_total_pence', sa.Integer(), nullable=False),
        sa.Column('variance_reason_code', sa.String(length=32), nullable=True),
        sa.Column('variance_reason', sa.Text(), nullable=True),
        sa.Column('approval_mode', sa.String(length=16), nullable=False),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=False),
        sa.Column('approved_by_username', sa.String(length=64), nullable=False),
        sa.Column('approved_by_role', sa.String(length=16), nullable=False),
        sa.Column('override_reason_code', sa.String(length=32), nullable=True),
        sa.Column('override_justification', sa.Text(), nullable=True),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['closed_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shift_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shift_closures_business_id', 'shift_closures', ['business_id'])

    op.create_table(
        'cash_drawer_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('till_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('entry_type', sa.String(length=32), nullable=False),
        sa.Column('amount_pence', sa.Integer(), nullable=False),
        sa.Column('before_expected_cash_pence', sa.Integer(), nullable=False),
        sa.Column('after_expected_cash_pence', sa.Integer(), nullable=False),
        sa.Column('reason_code', sa.String(length=32), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.ForeignKeyConstraint(['till_id'], ['tills.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_drawer_entries_business_id', 'cash_drawer_entries', ['business_id'])
    op.create_index('ix_cash_drawer_entries_till_id', 'cash_drawer_entries', ['till_id'])
    op.create_index('ix_cash_drawer_entries_entry_type', 'cash_drawer_entries', ['entry_type'])
    op.create_index('ix_cash_drawer_entries_shift', 'cash_drawer_entries', ['shift_id', 'created_at'])

    # ============================================================================
    # Sales
    # ============================================================================
    op.create_table(
        'sales_invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('till_id', sa.Integer(), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('cashier_user_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('invoice_number', sa.String(length=32), nullable=False),
        sa.Column('external_ref', sa.String(length=128), nullable=True),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('gross_pence', sa.Integer(), nullable=False),
        sa.Column('promo_discount_pence', sa.Integer(), nullable=False),
        sa.Column('line_discount_pence', sa.Integer(), nullable=False),
        sa.Column('order_discount_type', sa.String(length=16), nullable=False),
        sa.Column('order_discount_value', sa.String(length=32), nullable=True),
        sa.Column('order_discount_pence', sa.Integer(), nullable=False),
        sa.Column('subtotal_pence', sa.Integer(), nullable=False),
        sa.Column('vat_pence', sa.Integer(), nullable=False),
        sa.Column('total_pence', sa.Integer(), nullable=False),
        sa.Column('cogs_pence', sa.Integer(), nullable=False),
        sa.Column('amount_paid_pence', sa.Integer(), nullable=False),
        sa.Column('change_pence', sa.Integer(), nullable=False),
        sa.Column('balance_due_pence', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['till_id'], ['tills.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.ForeignKeyConstraint(['cashier_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        # Idempotency key for externally originated (offline) sales
        sa.UniqueConstraint('business_id', 'external_ref', name='uq_sales_invoices_business_external_ref'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_invoices_business_id', 'sales_invoices', ['business_id'])
    op.create_index('ix_sales_invoices_store_id', 'sales_invoices', ['store_id'])
    op.create_index('ix_sales_invoices_till_id', 'sales_invoices', ['till_id'])
    op.create_index('ix_sales_invoices_shift_id', 'sales_invoices', ['shift_id'])
    op.create_index('ix_sales_invoices_cashier_user_id', 'sales_invoices', ['cashier_user_id'])
    op.create_index('ix_sales_invoices_customer_id', 'sales_invoices', ['customer_id'])
    op.create_index('ix_sales_invoices_payment_status', 'sales_invoices', ['payment_status'])
    op.create_index('ix_sales_invoices_store_occurred', 'sales_invoices', ['store_id', 'occurred_at'])

    op.create_table(
        'sales_invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('line_no', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('qty_in_unit', sa.Integer(), nullable=False),
        sa.Column('conversion_to_base', sa.Integer(), nullable=False),
        sa.Column('qty_base', sa.Integer(), nullable=False),
        sa.Column('unit_price_pence', sa.Integer(), nullable=False),
        sa.Column('gross_pence', sa.Integer(), nullable=False),
        sa.Column('promo_free_qty_base', sa.Integer(), nullable=False),
        sa.Column('promo_discount_pence', sa.Integer(), nullable=False),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.String(length=32), nullable=True),
        sa.Column('line_discount_pence', sa.Integer(), nullable=False),
        sa.Column('order_discount_pence', sa.Integer(), nullable=False),
        sa.Column('net_pence', sa.Integer(), nullable=False),
        sa.Column('vat_rate_bps', sa.Integer(), nullable=False),
        sa.Column('vat_pence', sa.Integer(), nullable=False),
        sa.Column('total_pence', sa.Integer(), nullable=False),
        sa.Column('unit_cost_base_pence', sa.Integer(), nullable=False),
        sa.Column('cogs_pence', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['sales_invoices.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_invoice_lines_invoice_id', 'sales_invoice_lines', ['invoice_id'])
    op.create_index('ix_sales_invoice_lines_product_id', 'sales_invoice_lines', ['product_id'])

    op.create_table(
        'sales_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('amount_pence', sa.Integer(), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['invoice_id'], ['sales_invoices.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_pence > 0', name='ck_sales_payments_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_payments_invoice_id', 'sales_payments', ['invoice_id'])
    op.create_index('ix_sales_payments_shift_id', 'sales_payments', ['shift_id'])

    op.create_table(
        'sales_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('refund_method', sa.String(length=16), nullable=True),
        sa.Column('refund_cash_pence', sa.Integer(), nullable=False),
        sa.Column('refund_bank_pence', sa.Integer(), nullable=False),
        sa.Column('receivable_cleared_pence', sa.Integer(), nullable=False),
        sa.Column('restocked_cost_pence', sa.Integer(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['invoice_id'], ['sales_invoices.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_returns_business_id', 'sales_returns', ['business_id'])

    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('account_code', sa.String(length=16), nullable=False),
        sa.Column('amount_pence', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expenses_business_id', 'expenses', ['business_id'])
    op.create_index('ix_expenses_store_id', 'expenses', ['store_id'])
    op.create_index('ix_expenses_shift_id', 'expenses', ['shift_id'])

    # ============================================================================
    # Purchases
    # ============================================================================
    op.create_table(
        'purchase_invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('document_number', sa.String(length=32), nullable=False),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        sa.Column('supplier_invoice_ref', sa.String(length=64), nullable=True),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('subtotal_pence', sa.Integer(), nullable=False),
        sa.Column('vat_pence', sa.Integer(), nullable=False),
        sa.Column('total_pence', sa.Integer(), nullable=False),
        sa.Column('amount_paid_pence', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_invoices_business_id', 'purchase_invoices', ['business_id'])
    op.create_index('ix_purchase_invoices_store_id', 'purchase_invoices', ['store_id'])

    op.create_table(
        'purchase_invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('qty_in_unit', sa.Integer(), nullable=False),
        sa.Column('conversion_to_base', sa.Integer(), nullable=False),
        sa.Column('qty_base', sa.Integer(), nullable=False),
        sa.Column('unit_cost_pence', sa.Integer(), nullable=False),
        sa.Column('unit_cost_base_pence', sa.Integer(), nullable=False),
        sa.Column('line_total_pence', sa.Integer(), nullable=False),
        sa.Column('vat_rate_bps', sa.Integer(), nullable=False),
        sa.Column('vat_pence', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['purchase_invoices.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_invoice_lines_invoice_id', 'purchase_invoice_lines', ['invoice_id'])
    op.create_index('ix_purchase_invoice_lines_product_id', 'purchase_invoice_lines', ['product_id'])

    op.create_table(
        'purchase_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('amount_pence', sa.Integer(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['invoice_id'], ['purchase_invoices.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_payments_invoice_id', 'purchase_payments', ['invoice_id'])

    # ============================================================================
    # Stock transfers and document sequences
    # ============================================================================
    op.create_table(
        'stock_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=32), nullable=False),
        sa.Column('from_store_id', sa.Integer(), nullable=False),
        sa.Column('to_store_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('requested_by_user_id', sa.Integer(), nullable=False),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['from_store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['to_store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['requested_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('from_store_id <> to_store_id', name='ck_stock_transfers_distinct_stores'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_transfers_business_id', 'stock_transfers', ['business_id'])
    op.create_index('ix_stock_transfers_from_store_id', 'stock_transfers', ['from_store_id'])
    op.create_index('ix_stock_transfers_to_store_id', 'stock_transfers', ['to_store_id'])
    op.create_index('ix_stock_transfers_status', 'stock_transfers', ['status'])

    op.create_table(
        'stock_transfer_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('qty_base', sa.Integer(), nullable=False),
        sa.Column('unit_cost_base_pence', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['transfer_id'], ['stock_transfers.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('qty_base > 0', name='ck_stock_transfer_lines_qty_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_transfer_lines_transfer_id', 'stock_transfer_lines', ['transfer_id'])
    op.create_index('ix_stock_transfer_lines_product_id', 'stock_transfer_lines', ['product_id'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_type', name='uq_doc_sequences_store_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_store_id', 'document_sequences', ['store_id'])
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    # ============================================================================
    # Audit
    # ============================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_business_created', 'audit_logs', ['business_id', 'created_at'])
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])

    op.create_table(
        'risk_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('alert_type', sa.String(length=32), nullable=False),
        sa.Column('severity', sa.String(length=16), nullable=False),
        sa.Column('message', sa.String(length=255), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('is_acknowledged', sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_risk_alerts_business_id', 'risk_alerts', ['business_id'])
    op.create_index('ix_risk_alerts_user_id', 'risk_alerts', ['user_id'])
    op.create_index('ix_risk_alerts_alert_type', 'risk_alerts', ['alert_type'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('risk_alerts')
    op.drop_table('audit_logs')
    op.drop_table('document_sequences')
    op.drop_table('stock_transfer_lines')
    op.drop_table('stock_transfers')
    op.drop_table('purchase_payments')
    op.drop_table('purchase_invoice_lines')
    op.drop_table('purchase_invoices')
    op.drop_table('expenses')
    op.drop_table('sales_returns')
    op.drop_table('sales_payments')
    op.drop_table('sales_invoice_lines')
    op.drop_table('sales_invoices')
    op.drop_table('cash_drawer_entries')
    op.drop_table('shift_closures')
    op.drop_index('uq_shifts_one_open_per_till', table_name='shifts')
    op.drop_table('shifts')
    op.drop_table('stock_adjustments')
    op.drop_table('stock_movements')
    op.drop_table('inventory_balances')
    op.drop_table('journal_lines')
    op.drop_table('journal_entries')
    op.drop_table('accounts')
    op.drop_table('product_units')
    op.drop_table('products')
    op.drop_table('units')
    op.drop_table('customers')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('tills')
    op.drop_table('stores')
    op.drop_table('businesses')
