"""initial vending schema

Revision ID: v1a2b3c4d5e6
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the vending sales schema:
- vending_machines: machines with location refs and pickup window
- products: catalog with flat price in cents
- slots: dispensing positions with capacity/available/reserved counters
- sales: sale lifecycle (draft -> reserved -> paid -> fulfilled/canceled/expired)

Slot counter invariants are enforced by CHECK constraints in addition to the
conditional updates in the stock ledger service.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'v1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # vending_machines
    # ============================================================================
    op.create_table(
        'vending_machines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('location_ref', sa.String(length=64), nullable=True),
        sa.Column('service_point_ref', sa.String(length=64), nullable=True),
        sa.Column('pickup_window_minutes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_vending_machines_location_ref', 'vending_machines', ['location_ref'])
    op.create_index('ix_vending_machines_service_point_ref', 'vending_machines', ['service_point_ref'])

    # ============================================================================
    # products
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # slots: counters written only by the stock ledger
    # ============================================================================
    op.create_table(
        'slots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('machine_id', sa.Integer(), nullable=False),
        sa.Column('slot_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('available', sa.Integer(), nullable=False),
        sa.Column('reserved', sa.Integer(), nullable=False),
        sa.Column('price_override', sa.Integer(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['machine_id'], ['vending_machines.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('machine_id', 'slot_number', name='uq_slots_machine_number'),
        sa.CheckConstraint('slot_number > 0', name='ck_slots_slot_number_positive'),
        sa.CheckConstraint('capacity >= 1 AND capacity <= 50', name='ck_slots_capacity_bounds'),
        sa.CheckConstraint('available >= 0', name='ck_slots_available_nonnegative'),
        sa.CheckConstraint('reserved >= 0', name='ck_slots_reserved_nonnegative'),
        sa.CheckConstraint('available + reserved <= capacity', name='ck_slots_within_capacity'),
        sa.CheckConstraint('price_override IS NULL OR price_override > 0',
                           name='ck_slots_price_override_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_slots_machine_id', 'slots', ['machine_id'])
    op.create_index('ix_slots_product_id', 'slots', ['product_id'])

    # ============================================================================
    # sales
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slot_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(length=16), nullable=False),
        sa.Column('pickup_code', sa.String(length=16), nullable=True),
        sa.Column('payment_ref', sa.String(length=128), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('reserved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['slot_id'], ['slots.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity >= 1 AND quantity <= 100', name='ck_sales_quantity_bounds'),
        sa.CheckConstraint('total_price = unit_price * quantity', name='ck_sales_total_price'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_slot_id', 'sales', ['slot_id'])
    op.create_index('ix_sales_product_id', 'sales', ['product_id'])
    op.create_index('ix_sales_state', 'sales', ['state'])
    op.create_index('ix_sales_pickup_code', 'sales', ['pickup_code'])
    op.create_index('ix_sales_state_expires', 'sales', ['state', 'expires_at'])
    op.create_index('ix_sales_user_state', 'sales', ['user_id', 'state'])


def downgrade():
    op.drop_table('sales')
    op.drop_table('slots')
    op.drop_table('products')
    op.drop_table('vending_machines')
