"""add safe_pickups

Revision ID: 0003_safe_pickups
Revises: 0002_drawer_review_note
Create Date: 2026-03-16 00:00:00.000000

Owner/manager pickups of cash from the store safe. The running safe balance
subtracts them from closeout cash sales less expenses.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0003_safe_pickups'
down_revision = '0002_drawer_review_note'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'safe_pickups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('pickup_date', sa.Date(), nullable=False),
        sa.Column('pickup_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('recorded_by', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['recorded_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_cents >= 0', name='ck_safe_pickups_amount'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_safe_pickups_store_date', 'safe_pickups', ['store_id', 'pickup_date'])
    op.create_index('ix_safe_pickups_pickup_at', 'safe_pickups', ['pickup_at'])


def downgrade():
    op.drop_index('ix_safe_pickups_pickup_at', table_name='safe_pickups')
    op.drop_index('ix_safe_pickups_store_date', table_name='safe_pickups')
    op.drop_table('safe_pickups')
