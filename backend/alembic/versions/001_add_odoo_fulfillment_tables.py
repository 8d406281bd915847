"""Add Odoo fulfillment tables

Revision ID: 001_odoo_fulfillment
Revises:
Create Date: 2026-10-17

Adds:
- sales_orders: local mirror of sale.order headers
- sales_order_lines: mirrored lines plus operator prepared quantities
- odoo_pickings: stock.picking cache used by the delivery-state fallback
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_odoo_fulfillment'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'sales_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('external_order_id', sa.String(length=100), nullable=False),
        sa.Column('odoo_sale_order_id', sa.Integer(), nullable=True),
        sa.Column('odoo_name', sa.String(length=100), nullable=True),
        sa.Column('source', sa.String(length=50), nullable=False, server_default='odoo'),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='draft'),
        sa.Column('delivery_status', sa.String(length=50), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('shipping_name', sa.String(length=255), nullable=True),
        sa.Column('shipping_phone', sa.String(length=50), nullable=True),
        sa.Column('shipping_street1', sa.String(length=255), nullable=True),
        sa.Column('shipping_street2', sa.String(length=255), nullable=True),
        sa.Column('shipping_zip', sa.String(length=20), nullable=True),
        sa.Column('shipping_city', sa.String(length=100), nullable=True),
        sa.Column('shipping_country_code', sa.String(length=2), nullable=True),
        sa.Column('item_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('payload_json', sa.Text(), nullable=True),
        sa.Column('tracking_number', sa.String(length=255), nullable=True),
        sa.Column('shipping_carrier', sa.String(length=100), nullable=True),
        sa.Column('placed_at', sa.DateTime(), nullable=True),
        sa.Column('odoo_synced_at', sa.DateTime(), nullable=True),
        sa.Column('picking_validated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sales_orders_id', 'sales_orders', ['id'])
    op.create_index('ix_sales_orders_external_order_id', 'sales_orders', ['external_order_id'], unique=True)
    op.create_index('ix_sales_orders_odoo_sale_order_id', 'sales_orders', ['odoo_sale_order_id'], unique=True)
    op.create_index('ix_sales_orders_odoo_name', 'sales_orders', ['odoo_name'])
    op.create_index('ix_sales_orders_source', 'sales_orders', ['source'])
    op.create_index('ix_sales_orders_status', 'sales_orders', ['status'])
    op.create_index('ix_sales_orders_created_at', 'sales_orders', ['created_at'])

    op.create_table(
        'sales_order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sales_order_id', sa.Integer(), nullable=False),
        sa.Column('odoo_line_id', sa.Integer(), nullable=True),
        sa.Column('odoo_product_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('quantity', sa.Numeric(precision=12, scale=3), nullable=False, server_default='0'),
        sa.Column('prepared_quantity', sa.Numeric(precision=12, scale=3), nullable=True),
        sa.Column('odoo_qty_available', sa.Numeric(precision=12, scale=3), nullable=True),
        sa.ForeignKeyConstraint(['sales_order_id'], ['sales_orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sales_order_lines_id', 'sales_order_lines', ['id'])
    op.create_index('ix_sales_order_lines_sales_order_id', 'sales_order_lines', ['sales_order_id'])
    op.create_index('ix_sales_order_lines_odoo_line_id', 'sales_order_lines', ['odoo_line_id'])
    op.create_index('ix_sales_order_lines_odoo_product_id', 'sales_order_lines', ['odoo_product_id'])

    op.create_table(
        'odoo_pickings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('odoo_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('origin', sa.String(length=255), nullable=True),
        sa.Column('state', sa.String(length=20), nullable=True),
        sa.Column('scheduled_date', sa.DateTime(), nullable=True),
        sa.Column('write_date', sa.DateTime(), nullable=True),
        sa.Column('payload_json', sa.Text(), nullable=True),
        sa.Column('synced_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_odoo_pickings_id', 'odoo_pickings', ['id'])
    op.create_index('ix_odoo_pickings_odoo_id', 'odoo_pickings', ['odoo_id'], unique=True)
    op.create_index('ix_odoo_pickings_origin', 'odoo_pickings', ['origin'])
    op.create_index('ix_odoo_pickings_state', 'odoo_pickings', ['state'])


def downgrade() -> None:
    op.drop_index('ix_odoo_pickings_state', table_name='odoo_pickings')
    op.drop_index('ix_odoo_pickings_origin', table_name='odoo_pickings')
    op.drop_index('ix_odoo_pickings_odoo_id', table_name='odoo_pickings')
    op.drop_index('ix_odoo_pickings_id', table_name='odoo_pickings')
    op.drop_table('odoo_pickings')

    op.drop_index('ix_sales_order_lines_odoo_product_id', table_name='sales_order_lines')
    op.drop_index('ix_sales_order_lines_odoo_line_id', table_name='sales_order_lines')
    op.drop_index('ix_sales_order_lines_sales_order_id', table_name='sales_order_lines')
    op.drop_index('ix_sales_order_lines_id', table_name='sales_order_lines')
    op.drop_table('sales_order_lines')

    op.drop_index('ix_sales_orders_created_at', table_name='sales_orders')
    op.drop_index('ix_sales_orders_status', table_name='sales_orders')
    op.drop_index('ix_sales_orders_source', table_name='sales_orders')
    op.drop_index('ix_sales_orders_odoo_name', table_name='sales_orders')
    op.drop_index('ix_sales_orders_odoo_sale_order_id', table_name='sales_orders')
    op.drop_index('ix_sales_orders_external_order_id', table_name='sales_orders')
    op.drop_index('ix_sales_orders_id', table_name='sales_orders')
    op.drop_table('sales_orders')
