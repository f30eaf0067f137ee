"""initial reconciliation schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-03-02 00:00:00.000000

Creates the cash reconciliation schema:
- stores / store_reconciliation_settings: per-store thresholds
- users / user_store_manager_access: caller identity and store scope
- shifts / drawer_counts: checkpoint drawer counts and their review
- rollover_days / rollover_entries: blind dual-entry rollover pairs
- safe_closeouts / safe_closeout_expenses / safe_closeout_photos

drawer_counts.review_note is added separately by 0002_drawer_review_note.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # stores
    # ============================================================================
    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('expected_drawer_cents', sa.Integer(), nullable=False, server_default='20000'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_stores_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stores_code', 'stores', ['code'])
    op.create_index('ix_stores_is_active', 'stores', ['is_active'])

    op.create_table(
        'store_reconciliation_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('ledger_enabled', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('deposit_tolerance_cents', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('denom_tolerance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('photo_retention_days', sa.Integer(), nullable=False, server_default='38'),
        sa.Column('photo_purge_day_of_month', sa.Integer(), nullable=False, server_default='8'),
        sa.Column('rollover_enabled', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('warn_requires_review', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', name='uq_store_recon_settings_store'),
        sa.CheckConstraint('deposit_tolerance_cents >= 0', name='ck_store_recon_deposit_tolerance'),
        sa.CheckConstraint('denom_tolerance_cents >= 0', name='ck_store_recon_denom_tolerance'),
        sa.CheckConstraint('photo_retention_days >= 0', name='ck_store_recon_retention'),
        sa.CheckConstraint('photo_purge_day_of_month BETWEEN 1 AND 28', name='ck_store_recon_purge_day'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_store_reconciliation_settings_store_id', 'store_reconciliation_settings', ['store_id'])

    # ============================================================================
    # users and store access
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table(
        'user_store_manager_access',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('granted_by_user_id', sa.Integer(), nullable=True),
        _timestamp('granted_at'),
        sa.ForeignKeyConstraint(['granted_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'store_id', name='uq_user_store_manager_access'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_user_store_manager_access_user', 'user_store_manager_access', ['user_id'])
    op.create_index('ix_user_store_manager_access_store', 'user_store_manager_access', ['store_id'])

    # ============================================================================
    # shifts and drawer counts
    # ============================================================================
    op.create_table(
        'shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        _timestamp('started_at'),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shifts_store_id', 'shifts', ['store_id'])
    op.create_index('ix_shifts_user_id', 'shifts', ['user_id'])
    op.create_index('ix_shifts_started_at', 'shifts', ['started_at'])

    op.create_table(
        'drawer_counts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('count_type', sa.String(length=16), nullable=False),
        _timestamp('counted_at'),
        sa.Column('drawer_cents', sa.Integer(), nullable=False),
        sa.Column('expected_drawer_cents', sa.Integer(), nullable=False),
        sa.Column('variance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('confirmed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('out_of_threshold', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('notified_manager', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shift_id', 'count_type', name='uq_drawer_counts_shift_type'),
        sa.CheckConstraint("count_type IN ('start', 'changeover', 'end')", name='ck_drawer_counts_count_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_drawer_counts_shift_id', 'drawer_counts', ['shift_id'])
    op.create_index('ix_drawer_counts_store_id', 'drawer_counts', ['store_id'])
    op.create_index('ix_drawer_counts_counted_at', 'drawer_counts', ['counted_at'])
    op.create_index('ix_drawer_counts_needs_review', 'drawer_counts', ['out_of_threshold', 'reviewed_at'])

    # ============================================================================
    # rollover pairs
    # ============================================================================
    op.create_table(
        'rollover_days',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('agreed_cents', sa.Integer(), nullable=True),
        sa.Column('carried_in_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('needs_review', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('review_note', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'business_date', name='uq_rollover_days_store_date'),
        sa.CheckConstraint("status IN ('pending', 'matched', 'mismatch_saved')", name='ck_rollover_days_status'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_rollover_days_status', 'rollover_days', ['status'])
    op.create_index('ix_rollover_days_store_date', 'rollover_days', ['store_id', 'business_date'])

    op.create_table(
        'rollover_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rollover_day_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('mismatch', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('submitted_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['rollover_day_id'], ['rollover_days.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['submitted_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'business_date', 'source', name='uq_rollover_entries_store_date_source'),
        sa.CheckConstraint("source IN ('opener', 'closer')", name='ck_rollover_entries_source'),
        sa.CheckConstraint('amount_cents >= 0', name='ck_rollover_entries_amount'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_rollover_entries_rollover_day_id', 'rollover_entries', ['rollover_day_id'])

    # ============================================================================
    # safe closeouts
    # ============================================================================
    op.create_table(
        'safe_closeouts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('profile_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('cash_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('card_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('other_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expected_deposit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('actual_deposit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('denom_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('drawer_count_cents', sa.Integer(), nullable=True),
        sa.Column('variance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('denom_variance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('denominations', sa.JSON(), nullable=False),
        sa.Column('deposit_override_reason', sa.Text(), nullable=True),
        sa.Column('validation_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requires_manager_review', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('edited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('edited_by', sa.Integer(), nullable=True),
        sa.Column('edit_reason', sa.Text(), nullable=True),
        sa.Column('is_historical_backfill', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['profile_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['edited_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'business_date', name='uq_safe_closeouts_store_date'),
        sa.CheckConstraint(
            "status IN ('draft', 'pass', 'warn', 'fail', 'locked')",
            name='ck_safe_closeouts_status'
        ),
        sa.CheckConstraint('validation_attempts >= 0', name='ck_safe_closeouts_attempts'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_safe_closeouts_status', 'safe_closeouts', ['status'])
    op.create_index('ix_safe_closeouts_is_historical_backfill', 'safe_closeouts', ['is_historical_backfill'])
    op.create_index('ix_safe_closeouts_store_date', 'safe_closeouts', ['store_id', 'business_date'])
    op.create_index(
        'ix_safe_closeouts_status_review', 'safe_closeouts',
        ['status', 'requires_manager_review', 'business_date']
    )

    op.create_table(
        'safe_closeout_expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('closeout_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['closeout_id'], ['safe_closeouts.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_cents >= 0', name='ck_safe_closeout_expenses_amount'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_safe_closeout_expenses_closeout_id', 'safe_closeout_expenses', ['closeout_id'])

    op.create_table(
        'safe_closeout_photos',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('closeout_id', sa.Integer(), nullable=False),
        sa.Column('photo_type', sa.String(length=32), nullable=False),
        sa.Column('storage_path', sa.String(length=512), nullable=False),
        sa.Column('thumb_path', sa.String(length=512), nullable=True),
        sa.Column('purge_after', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['closeout_id'], ['safe_closeouts.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "photo_type IN ('deposit_required', 'pos_optional')",
            name='ck_safe_closeout_photos_type'
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_safe_closeout_photos_closeout_id', 'safe_closeout_photos', ['closeout_id'])
    op.create_index('ix_safe_closeout_photos_purge', 'safe_closeout_photos', ['purge_after'])


def downgrade():
    op.drop_index('ix_safe_closeout_photos_purge', table_name='safe_closeout_photos')
    op.drop_index('ix_safe_closeout_photos_closeout_id', table_name='safe_closeout_photos')
    op.drop_table('safe_closeout_photos')

    op.drop_index('ix_safe_closeout_expenses_closeout_id', table_name='safe_closeout_expenses')
    op.drop_table('safe_closeout_expenses')

    op.drop_index('ix_safe_closeouts_status_review', table_name='safe_closeouts')
    op.drop_index('ix_safe_closeouts_store_date', table_name='safe_closeouts')
    op.drop_index('ix_safe_closeouts_is_historical_backfill', table_name='safe_closeouts')
    op.drop_index('ix_safe_closeouts_status', table_name='safe_closeouts')
    op.drop_table('safe_closeouts')

    op.drop_index('ix_rollover_entries_rollover_day_id', table_name='rollover_entries')
    op.drop_table('rollover_entries')
    op.drop_index('ix_rollover_days_store_date', table_name='rollover_days')
    op.drop_index('ix_rollover_days_status', table_name='rollover_days')
    op.drop_table('rollover_days')

    op.drop_index('ix_drawer_counts_needs_review', table_name='drawer_counts')
    op.drop_index('ix_drawer_counts_counted_at', table_name='drawer_counts')
    op.drop_index('ix_drawer_counts_store_id', table_name='drawer_counts')
    op.drop_index('ix_drawer_counts_shift_id', table_name='drawer_counts')
    op.drop_table('drawer_counts')

    op.drop_index('ix_shifts_started_at', table_name='shifts')
    op.drop_index('ix_shifts_user_id', table_name='shifts')
    op.drop_index('ix_shifts_store_id', table_name='shifts')
    op.drop_table('shifts')

    op.drop_index('ix_user_store_manager_access_store', table_name='user_store_manager_access')
    op.drop_index('ix_user_store_manager_access_user', table_name='user_store_manager_access')
    op.drop_table('user_store_manager_access')

    op.drop_index('ix_users_username', table_name='users')
    op.drop_table('users')

    op.drop_index('ix_store_reconciliation_settings_store_id', table_name='store_reconciliation_settings')
    op.drop_table('store_reconciliation_settings')

    op.drop_index('ix_stores_is_active', table_name='stores')
    op.drop_index('ix_stores_code', table_name='stores')
    op.drop_table('stores')
