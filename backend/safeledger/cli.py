# Overview: Flask CLI command groups for bootstrap, store configuration, access grants and the photo sweep.

# backend/safeledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for versioned schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stores:
# - python -m flask stores list
# - python -m flask stores create --name "Main Street" --code "MAIN" --expected-drawer-cents 20000
# - python -m flask stores settings --store-id 1
#   Show reconciliation settings.
# - python -m flask stores settings --store-id 1 --ledger-enabled --deposit-tolerance-cents 150
#   Update reconciliation settings (only the given options change).
#
# Users and store access:
# - python -m flask users create --username jdoe --display-name "J. Doe" --store-id 1
# - python -m flask users grant-store --user-id 2 --store-id 3 [--granted-by 1]
#   Give a manager oversight of an additional store.
# - python -m flask users revoke-store --user-id 2 --store-id 3
# - python -m flask users list-access --user-id 2
#
# Evidence:
# - python -m flask evidence sweep [--now 2026-03-08T02:00:00Z]
#   Purge expired closeout photos for every store whose purge day is today.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Store, User
from .services import evidence_service
from .services.context import build_system_context
from .services.settings_service import get_store_settings, update_store_settings
from .services.store_access_service import (
    get_manager_store_ids,
    grant_manager_access,
    list_manager_access,
    revoke_manager_access,
)
from .time_utils import parse_iso_datetime
from .validation import ReconciliationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# STORES
# =============================================================================

@click.group('stores')
def stores_group():
    """Store and reconciliation settings commands."""


@stores_group.command('list')
@with_appcontext
def list_stores():
    """List all stores."""
    stores = db.session.query(Store).order_by(Store.id).all()
    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Drawer':<10} {'Active'}")
    click.echo("="*70)
    for store in stores:
        active_str = "Yes" if store.is_active else "No"
        click.echo(f"{store.id:<5} {store.name:<30} {store.code or '-':<12} {store.expected_drawer_cents:<10} {active_str}")
    click.echo("="*70 + "\n")


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--code', help='Store code (unique)')
@click.option('--expected-drawer-cents', type=int, default=None, help='Expected drawer float in cents')
@with_appcontext
def create_store_cli(name, code, expected_drawer_cents):
    """Create a store."""
    if code and db.session.query(Store).filter_by(code=code).first():
        click.echo(f"FAIL Store with code '{code}' already exists")
        return

    if expected_drawer_cents is None:
        expected_drawer_cents = current_app.config["DEFAULT_EXPECTED_DRAWER_CENTS"]
    if expected_drawer_cents < 0:
        click.echo("FAIL --expected-drawer-cents must be >= 0")
        return

    store = Store(name=name, code=code, expected_drawer_cents=expected_drawer_cents)
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")


@stores_group.command('settings')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--ledger-enabled/--ledger-disabled', default=None, help='Toggle the safe ledger')
@click.option('--deposit-tolerance-cents', type=int, default=None)
@click.option('--denom-tolerance-cents', type=int, default=None)
@click.option('--photo-retention-days', type=int, default=None)
@click.option('--photo-purge-day', 'photo_purge_day_of_month', type=int, default=None, help='Day of month (1-28)')
@click.option('--rollover-enabled/--rollover-disabled', default=None)
@click.option('--warn-requires-review/--warn-no-review', default=None)
@with_appcontext
def store_settings_cli(store_id, **options):
    """Show or update a store's reconciliation settings."""
    changes = {key: value for key, value in options.items() if value is not None}

    try:
        if changes:
            settings = update_store_settings(store_id, **changes)
            click.echo(f"PASS Updated settings for store {store_id}: {', '.join(sorted(changes))}")
        else:
            if db.session.get(Store, store_id) is None:
                click.echo(f"FAIL Store ID {store_id} not found")
                return
            settings = get_store_settings(store_id)
    except ReconciliationError as e:
        click.echo(f"FAIL {e}")
        return

    for key, value in settings.to_dict().items():
        if key == "updated_at":
            continue
        click.echo(f"  {key:<28} {value}")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User and store access commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--display-name', default=None, help='Display name')
@click.option('--store-id', type=int, default=None, help='Primary store ID')
@with_appcontext
def create_user_cli(username, display_name, store_id):
    """Create a user (identity only; authentication is external)."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        return
    if store_id is not None and db.session.get(Store, store_id) is None:
        click.echo(f"FAIL Store ID {store_id} not found")
        return

    user = User(username=username, display_name=display_name, store_id=store_id)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} (ID: {user.id})")


@users_group.command('grant-store')
@click.option('--user-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@click.option('--granted-by', 'granted_by_user_id', type=int, default=None, help='Granting user ID')
@with_appcontext
def grant_store_cli(user_id, store_id, granted_by_user_id):
    """Give a user managerial access to a store."""
    try:
        grant_manager_access(user_id=user_id, store_id=store_id, granted_by_user_id=granted_by_user_id)
    except ReconciliationError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS User {user_id} can now manage store {store_id}")


@users_group.command('revoke-store')
@click.option('--user-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@with_appcontext
def revoke_store_cli(user_id, store_id):
    """Remove a user's managerial access to a store."""
    if revoke_manager_access(user_id=user_id, store_id=store_id):
        click.echo(f"PASS Revoked store {store_id} from user {user_id}")
    else:
        click.echo(f"WARN User {user_id} had no grant for store {store_id}")


@users_group.command('list-access')
@click.option('--user-id', type=int, required=True)
@with_appcontext
def list_access_cli(user_id):
    """List the stores a user may reconcile."""
    user = db.session.get(User, user_id)
    if user is None:
        click.echo(f"FAIL User ID {user_id} not found")
        return

    grants = list_manager_access(user_id)
    click.echo(f"User {user.username} (ID: {user.id})")
    click.echo(f"  Primary store: {user.store_id if user.store_id is not None else '-'}")
    for grant in grants:
        click.echo(f"  Granted store: {grant.store_id} (by {grant.granted_by_user_id or '-'})")
    click.echo(f"  Effective stores: {sorted(get_manager_store_ids(user_id)) or '-'}")


# =============================================================================
# EVIDENCE
# =============================================================================

@click.group('evidence')
def evidence_group():
    """Closeout photo evidence commands."""


@evidence_group.command('sweep')
@click.option('--now', 'now_raw', default=None, help='Override "now" (ISO-8601, UTC)')
@with_appcontext
def sweep_cli(now_raw):
    """Purge expired closeout photos for stores whose purge day is today."""
    try:
        now = parse_iso_datetime(now_raw)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--now")

    ctx = build_system_context()
    try:
        purged = evidence_service.run_scheduled_sweep(ctx, now=now)
    except ReconciliationError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Purged {purged} photo(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(users_group)
    app.cli.add_command(evidence_group)
