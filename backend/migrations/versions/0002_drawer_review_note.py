"""add drawer_counts.review_note

Revision ID: 0002_drawer_review_note
Revises: 0001_initial_schema
Create Date: 2026-03-09 00:00:00.000000

Managers may leave a note when they sign off an out-of-threshold drawer
count. The column is part of the mapped schema from this revision on;
SAFELEDGER_DRAWER_REVIEW_NOTES=false turns off note capture (notes are dropped).
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0002_drawer_review_note'
down_revision = '0001_initial_schema'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('drawer_counts', schema=None) as batch_op:
        batch_op.add_column(sa.Column('review_note', sa.Text(), nullable=True))


def downgrade():
    with op.batch_alter_table('drawer_counts', schema=None) as batch_op:
        batch_op.drop_column('review_note')
