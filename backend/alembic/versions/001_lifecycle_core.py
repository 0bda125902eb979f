"""Lifecycle core tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

Adds:
- lifecycle_entities table (current status + version per entity)
- lifecycle_transitions journal
- suppliers, stock_items and stock_ledger_entries
- derived_records for transition side effects
- finance_transactions
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'lifecycle_entities',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entity_type', sa.String(40), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(40), nullable=False),
        sa.Column('attributes', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('entity_type', 'entity_id', name='uq_lifecycle_entity'),
    )
    op.create_index('idx_lifecycle_type_status', 'lifecycle_entities', ['entity_type', 'status'])

    op.create_table(
        'lifecycle_transitions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entity_type', sa.String(40), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('from_status', sa.String(40), nullable=True),
        sa.Column('to_status', sa.String(40), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('entity_type', 'entity_id', 'sequence', name='uq_transition_sequence'),
    )

    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('contact_person', sa.String(200), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('category', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.String(1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_suppliers_name', 'suppliers', ['name'])

    op.create_table(
        'stock_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('sku', sa.String(64), nullable=True, unique=True),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('min_level', sa.Integer(), nullable=False),
        sa.Column('max_level', sa.Integer(), nullable=True),
        sa.Column('unit_cost', sa.Integer(), nullable=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('suppliers.id', ondelete='SET NULL'), nullable=True),
        sa.Column('location', sa.String(100), nullable=True),
        sa.Column('allow_negative', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('cached_level', sa.Integer(), server_default='0', nullable=False),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_stock_items_supplier_id', 'stock_items', ['supplier_id'])

    op.create_table(
        'stock_ledger_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('stock_items.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('kind', sa.String(10), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(50), nullable=False),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('actor_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("kind IN ('in', 'out', 'adjust')", name='ck_ledger_kind'),
    )
    op.create_index('ix_stock_ledger_entries_item_id', 'stock_ledger_entries', ['item_id'])

    op.create_table(
        'derived_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('idempotency_key', sa.String(64), nullable=False, unique=True),
        sa.Column('dispatch_key', sa.String(64), nullable=False),
        sa.Column('effect', sa.String(40), nullable=False),
        sa.Column('ordinal', sa.Integer(), nullable=False),
        sa.Column('source_entity_type', sa.String(40), nullable=False),
        sa.Column('source_entity_id', sa.String(64), nullable=False),
        sa.Column('source_from', sa.String(40), nullable=True),
        sa.Column('source_to', sa.String(40), nullable=False),
        sa.Column('source_sequence', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_derived_records_dispatch_key', 'derived_records', ['dispatch_key'])
    op.create_index('ix_derived_records_source_entity_id', 'derived_records', ['source_entity_id'])

    op.create_table(
        'finance_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('subcategory', sa.String(100), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(10), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('payment_method', sa.String(30), nullable=True),
        sa.Column('derived_record_key', sa.String(64), nullable=True, unique=True),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_finance_amount_positive'),
    )
    op.create_index('ix_finance_transactions_transaction_date', 'finance_transactions', ['transaction_date'])


def downgrade() -> None:
    op.drop_index('ix_finance_transactions_transaction_date', table_name='finance_transactions')
    op.drop_table('finance_transactions')
    op.drop_index('ix_derived_records_source_entity_id', table_name='derived_records')
    op.drop_index('ix_derived_records_dispatch_key', table_name='derived_records')
    op.drop_table('derived_records')
    op.drop_index('ix_stock_ledger_entries_item_id', table_name='stock_ledger_entries')
    op.drop_table('stock_ledger_entries')
    op.drop_index('ix_stock_items_supplier_id', table_name='stock_items')
    op.drop_table('stock_items')
    op.drop_index('ix_suppliers_name', table_name='suppliers')
    op.drop_table('suppliers')
    op.drop_table('lifecycle_transitions')
    op.drop_index('idx_lifecycle_type_status', table_name='lifecycle_entities')
    op.drop_table('lifecycle_entities')
