"""Initial cutover schema: catalog, suppliers, opening balances, review and cutover state

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Locations, products and catalog mappings (external variation -> product)
2. Suppliers, supplier products and supplier cost history
3. Cutovers, cutover locks and cost approvals
4. Inventory lots with one OPENING_BALANCE lot per (product, location)
5. Extraction sessions and batches (cost review)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. CATALOG
    # ==========================================================================
    op.create_table('locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('external_location_id', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('locations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_locations_external_location_id'), ['external_location_id'], unique=True)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('external_name', sa.String(length=255), nullable=True),
        sa.Column('external_description', sa.Text(), nullable=True),
        sa.Column('external_image_url', sa.String(length=512), nullable=True),
        sa.Column('external_variation_name', sa.String(length=255), nullable=True),
        sa.Column('external_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_name', ['name'], unique=False)

    op.create_table('catalog_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('external_variation_id', sa.String(length=64), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('price_currency', sa.String(length=3), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_variation_id', 'location_id', name='uq_catalog_mapping_variation_location'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('catalog_mappings', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_catalog_mappings_external_variation_id'), ['external_variation_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_catalog_mappings_location_id'), ['location_id'], unique=False)
        batch_op.create_index('ix_catalog_mapping_product', ['product_id'], unique=False)

    # ==========================================================================
    # 2. SUPPLIERS
    # ==========================================================================
    op.create_table('suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('normalized_name', sa.String(length=128), nullable=False),
        sa.Column('initials', sa.JSON(), nullable=False),
        sa.Column('contact_info', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('suppliers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_suppliers_normalized_name'), ['normalized_name'], unique=True)

    op.create_table('supplier_products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('cost_cents', sa.Integer(), nullable=False),
        sa.Column('is_preferred', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('supplier_id', 'product_id', name='uq_supplier_products_supplier_product'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('supplier_products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_supplier_products_supplier_id'), ['supplier_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_supplier_products_product_id'), ['product_id'], unique=False)

    op.create_table('supplier_cost_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('effective_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('supplier_cost_history', schema=None) as batch_op:
        batch_op.create_index('ix_supplier_cost_history_product_supplier', ['product_id', 'supplier_id'], unique=False)

    # ==========================================================================
    # 3. CUTOVERS
    # ==========================================================================
    op.create_table('cutovers',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('cutover_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cost_basis', sa.String(length=32), nullable=False),
        sa.Column('owner_approved', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('owner_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('owner_approved_by', sa.String(length=128), nullable=True),
        sa.Column('approval_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('batch_size', sa.Integer(), nullable=True),
        sa.Column('current_batch', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_batches', sa.Integer(), nullable=True),
        sa.Column('total_items', sa.Integer(), nullable=True),
        sa.Column('processed_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('resume_state', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('cutovers', schema=None) as batch_op:
        batch_op.create_index('ix_cutovers_status', ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_cutovers_approval_id'), ['approval_id'], unique=False)

    op.create_table('cutover_locks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('cutover_id', sa.String(length=36), nullable=False),
        sa.Column('cutover_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('locked_by', sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(['cutover_id'], ['cutovers.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'cutover_date', name='uq_cutover_locks_location_date'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cutover_locks', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cutover_locks_location_id'), ['location_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cutover_locks_cutover_id'), ['cutover_id'], unique=False)

    # cutover_id is the approval scope: an extraction session id or a cutover id
    op.create_table('cost_approvals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cutover_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('approved_cost_cents', sa.Integer(), nullable=True),
        sa.Column('source', sa.String(length=32), nullable=False, server_default='MANUAL_INPUT'),
        sa.Column('migration_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('selling_price_cents', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cutover_id', 'product_id', name='uq_cost_approvals_cutover_product'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cost_approvals', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cost_approvals_product_id'), ['product_id'], unique=False)
        batch_op.create_index('ix_cost_approvals_cutover_status', ['cutover_id', 'migration_status'], unique=False)

    # ==========================================================================
    # 4. INVENTORY LOTS
    # ==========================================================================
    op.create_table('inventory_lots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('cost_source', sa.String(length=32), nullable=True),
        sa.Column('cutover_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_inventory_lots_quantity_non_negative'),
        sa.ForeignKeyConstraint(['cutover_id'], ['cutovers.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_lots', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_inventory_lots_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_lots_location_id'), ['location_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_lots_source'), ['source'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_lots_cutover_id'), ['cutover_id'], unique=False)
        batch_op.create_index('ix_inventory_lots_product_location', ['product_id', 'location_id'], unique=False)

    # At most one opening balance per (product, location)
    op.create_index(
        'uq_inventory_lots_opening_balance',
        'inventory_lots',
        ['product_id', 'location_id'],
        unique=True,
        sqlite_where=sa.text("source = 'OPENING_BALANCE'"),
        postgresql_where=sa.text("source = 'OPENING_BALANCE'"),
    )

    # ==========================================================================
    # 5. COST REVIEW (EXTRACTION)
    # ==========================================================================
    op.create_table('extraction_sessions',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('location_ids', sa.JSON(), nullable=False),
        sa.Column('cost_basis', sa.String(length=32), nullable=False, server_default='DESCRIPTION'),
        sa.Column('current_batch', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('total_batches', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('batch_size', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='IN_PROGRESS'),
        sa.Column('learned_supplier_initials', sa.JSON(), nullable=False),
        sa.Column('last_approved_batch_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('extraction_sessions', schema=None) as batch_op:
        batch_op.create_index('ix_extraction_sessions_status', ['status'], unique=False)

    op.create_table('extraction_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('batch_number', sa.Integer(), nullable=False),
        sa.Column('location_ids', sa.JSON(), nullable=False),
        sa.Column('product_ids', sa.JSON(), nullable=False),
        sa.Column('total_products', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('products_with_extraction', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('products_requiring_manual_input', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('approved_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='EXTRACTED'),
        sa.Column('extracted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by', sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['extraction_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'batch_number', name='uq_extraction_batches_session_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('extraction_batches', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_extraction_batches_session_id'), ['session_id'], unique=False)


def downgrade():
    op.drop_table('extraction_batches')
    op.drop_table('extraction_sessions')
    op.drop_index('uq_inventory_lots_opening_balance', table_name='inventory_lots')
    op.drop_table('inventory_lots')
    op.drop_table('cost_approvals')
    op.drop_table('cutover_locks')
    op.drop_table('cutovers')
    op.drop_table('supplier_cost_history')
    op.drop_table('supplier_products')
    op.drop_table('suppliers')
    op.drop_table('catalog_mappings')
    op.drop_table('products')
    op.drop_table('locations')
