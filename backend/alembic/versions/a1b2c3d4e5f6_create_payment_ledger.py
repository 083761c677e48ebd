"""create payment pages, items and ledger

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'payment_pages',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('creator_wallet', sa.String(length=42), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(op.f('ix_payment_pages_creator_wallet'), 'payment_pages', ['creator_wallet'])

    op.create_table(
        'payment_items',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('page_id', sa.String(length=36), sa.ForeignKey('payment_pages.id'), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.Enum('fixed', 'open', name='itemtype'), nullable=False),
        sa.Column('price_usdc', sa.String(length=40), nullable=True),
        sa.Column('content_url', sa.String(length=2048), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(op.f('ix_payment_items_page_id'), 'payment_items', ['page_id'])

    # --- payments: tx_hash uniqueness is the double-recording guard ---
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('item_id', sa.String(length=36), sa.ForeignKey('payment_items.id'), nullable=False),
        sa.Column('payer_wallet', sa.String(length=42), nullable=False),
        sa.Column('amount', sa.String(length=78), nullable=False),
        sa.Column('tx_hash', sa.String(length=66), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(op.f('ix_payments_tx_hash'), 'payments', ['tx_hash'], unique=True)
    op.create_index(op.f('ix_payments_item_id'), 'payments', ['item_id'])
    op.create_index(op.f('ix_payments_payer_wallet'), 'payments', ['payer_wallet'])


def downgrade() -> None:
    op.drop_index(op.f('ix_payments_payer_wallet'), table_name='payments')
    op.drop_index(op.f('ix_payments_item_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_tx_hash'), table_name='payments')
    op.drop_table('payments')

    op.drop_index(op.f('ix_payment_items_page_id'), table_name='payment_items')
    op.drop_table('payment_items')

    op.drop_index(op.f('ix_payment_pages_creator_wallet'), table_name='payment_pages')
    op.drop_table('payment_pages')
    sa.Enum(name='itemtype').drop(op.get_bind(), checkfirst=True)
