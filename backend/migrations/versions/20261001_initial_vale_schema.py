"""Initial vale schema: catalog refs, warehouses, stock ledger, vales, sales, shifts

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01

This migration adds:
1. product_variants, price_modalities (read-only catalog references)
2. warehouses, warehouse_stock, stock_movements, stock_reservations
3. customers
4. orders, order_lines (vales)
5. cashier_shifts, sales, payments
6. document_sequences, system_settings
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _qty(name, nullable=False):
    return sa.Column(name, sa.Numeric(precision=12, scale=2), nullable=nullable)


def _now(name):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False)


def upgrade():
    # ==========================================================================
    # 1. CATALOG REFERENCES
    # ==========================================================================
    op.create_table('product_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _now('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_product_variants_sku'),
        sqlite_autoincrement=True
    )

    op.create_table('price_modalities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('standard_price', sa.Integer(), nullable=False),
        sa.Column('invoice_price', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('price_modalities', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_price_modalities_variant_id'), ['variant_id'], unique=False)

    # ==========================================================================
    # 2. WAREHOUSES AND STOCK LEDGER
    # ==========================================================================
    op.create_table('warehouses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_point_of_sale', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_virtual', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _now('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_warehouses_code'),
        sqlite_autoincrement=True
    )

    op.create_table('warehouse_stock',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        _qty('available'),
        _qty('reserved'),
        _qty('min_threshold'),
        _qty('max_threshold', nullable=True),
        _now('updated_at'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'warehouse_id', name='uq_warehouse_stock_variant_warehouse'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('warehouse_stock', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_warehouse_stock_variant_id'), ['variant_id'], unique=False)
        batch_op.create_index('ix_warehouse_stock_warehouse', ['warehouse_id'], unique=False)

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('destination_warehouse_id', sa.Integer(), nullable=True),
        sa.Column('kind', sa.String(length=16), nullable=False),
        _qty('quantity'),
        _qty('quantity_before'),
        _qty('quantity_after'),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        _now('occurred_at'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['destination_warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movements_warehouse_id'), ['warehouse_id'], unique=False)
        batch_op.create_index('ix_stock_movements_variant_occurred', ['variant_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_stock_movements_reference', ['reference'], unique=False)

    # ==========================================================================
    # 3. CUSTOMERS
    # ==========================================================================
    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tax_id', sa.String(length=16), nullable=True),
        sa.Column('legal_name', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('data_complete', sa.Boolean(), nullable=False, server_default='0'),
        _now('created_at'),
        _now('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tax_id', name='uq_customers_tax_id'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 4. VALES
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('number', sa.String(length=32), nullable=False),
        sa.Column('daily_sequence', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('subtotal', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('document_type', sa.String(length=16), nullable=False, server_default='ticket'),
        sa.Column('state', sa.String(length=32), nullable=False, server_default='draft'),
        sa.Column('reservation_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('locked_by', sa.Integer(), nullable=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('number', name='uq_orders_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_seller_id'), ['seller_id'], unique=False)
        batch_op.create_index('ix_orders_state_created', ['state', 'created_at'], unique=False)

    op.create_table('order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('price_modality_id', sa.Integer(), nullable=True),
        _qty('quantity'),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('price_kind', sa.String(length=16), nullable=False, server_default='standard'),
        sa.Column('approver_id', sa.Integer(), nullable=True),
        sa.Column('subtotal', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.ForeignKeyConstraint(['price_modality_id'], ['price_modalities.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_lines_order_id'), ['order_id'], unique=False)

    op.create_table('stock_reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('order_line_id', sa.Integer(), nullable=True),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        _qty('quantity'),
        sa.Column('oversold', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        _now('created_at'),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['order_line_id'], ['order_lines.id'], ),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_reservations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_reservations_order_line_id'), ['order_line_id'], unique=False)
        batch_op.create_index('ix_stock_reservations_order_status', ['order_id', 'status'], unique=False)

    # ==========================================================================
    # 5. SHIFTS, SALES, PAYMENTS
    # ==========================================================================
    op.create_table('cashier_shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('register_code', sa.String(length=32), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open'),
        sa.Column('opening_cash', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_cash', sa.Integer(), nullable=True),
        sa.Column('expected_cash', sa.Integer(), nullable=True),
        sa.Column('variance', sa.Integer(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cashier_shifts', schema=None) as batch_op:
        batch_op.create_index('ix_cashier_shifts_cashier_status', ['cashier_id', 'status'], unique=False)

    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('document_type', sa.String(length=16), nullable=False),
        sa.Column('subtotal', sa.Integer(), nullable=False),
        sa.Column('discount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total', sa.Integer(), nullable=False),
        sa.Column('payments_total', sa.Integer(), nullable=False),
        sa.Column('change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('customer_tax_id', sa.String(length=16), nullable=True),
        sa.Column('customer_legal_name', sa.String(length=255), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('is_cancelled', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['cashier_shifts.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_sales_order'),
        sa.UniqueConstraint('sale_number', name='uq_sales_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_shift', ['shift_id'], unique=False)

    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('change_given', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reference', sa.String(length=128), nullable=True),
        _now('created_at'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payments_sale_id'), ['sale_id'], unique=False)

    # ==========================================================================
    # 6. SEQUENCES AND SETTINGS
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sequence_key', sa.String(length=32), nullable=False),
        sa.Column('period', sa.String(length=8), nullable=False),
        sa.Column('next_value', sa.Integer(), nullable=False, server_default='1'),
        _now('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sequence_key', name='uq_document_sequences_key'),
        sqlite_autoincrement=True
    )

    op.create_table('system_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('value_type', sa.String(length=16), nullable=False, server_default='string'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False, server_default='general'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _now('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', name='uq_system_settings_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('system_settings', schema=None) as batch_op:
        batch_op.create_index('ix_system_settings_category', ['category'], unique=False)


def downgrade():
    op.drop_table('system_settings')
    op.drop_table('document_sequences')
    op.drop_table('payments')
    op.drop_table('sales')
    op.drop_table('cashier_shifts')
    op.drop_table('stock_reservations')
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_table('customers')
    op.drop_table('stock_movements')
    op.drop_table('warehouse_stock')
    op.drop_table('warehouses')
    op.drop_table('price_modalities')
    op.drop_table('product_variants')
