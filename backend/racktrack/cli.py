# Overview: Flask CLI command groups for user bootstrap and QuickBooks maintenance.

# backend/racktrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Database:
# - python -m flask db upgrade
#   Apply migrations (Flask-Migrate).
#
# Users and API tokens:
# - python -m flask users create --email admin@racktrack.local --name "Admin" --role admin
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#   List users with role and active status.
# - python -m flask users issue-token --email admin@racktrack.local [--hours 24]
#   Issue a bearer token; printed once, only its hash is stored.
#
# QuickBooks:
# - python -m flask quickbooks connections
#   List connections with expiry and error state (tokens are never printed).
# - python -m flask quickbooks refresh-tokens [--window-minutes 30]
#   Run the token refresh sweep (same as POST /api/quickbooks/refresh-token).
# - python -m flask quickbooks sync-items [--connection-id 1] [--page-size 100]
#   Pull QuickBooks Items into products.
# - python -m flask quickbooks sync-customers [--connection-id 1]
#   Pull QuickBooks Customers into customers.

import click
from datetime import timedelta
from flask import current_app
from flask.cli import with_appcontext

from .errors import RackTrackError
from .extensions import db
from .models import User
from .models.auth import VALID_ROLES
from .services import catalog_sync_service, session_service, token_refresh_service
from .services.connection_store import ConnectionStore
from .services.quickbooks_client import client_for_app
from .time_utils import to_utc_z


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(email, name, role):
    """Create a user."""
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        raise click.ClickException(f"User {email} already exists")

    user = User(email=email, name=name, role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"OK Created user {user.id} ({email}, {role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<10} {'Active':<8} {'Name'}")
    click.echo("=" * 80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {user.role:<10} {active_str:<8} {user.name or ''}")
    click.echo("=" * 80 + "\n")


@users_group.command('issue-token')
@click.option('--email', required=True, help='User email')
@click.option('--hours', type=int, default=None, help='Lifetime in hours (default SESSION_TTL_HOURS)')
@with_appcontext
def issue_token_cli(email, hours):
    """Issue a bearer token for a user."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        raise click.ClickException(f"User {email} not found")

    ttl = timedelta(hours=hours or current_app.config.get("SESSION_TTL_HOURS", 24))
    try:
        session, token = session_service.issue_session(user.id, ttl=ttl)
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(f"Token for {user.email} (expires {to_utc_z(session.expires_at)}):")
    click.echo(token)


@click.group('quickbooks')
def quickbooks_group():
    """QuickBooks connection maintenance."""


@quickbooks_group.command('connections')
@with_appcontext
def list_connections_cli():
    """List QuickBooks connections."""
    connections = ConnectionStore(db.session).list_all()
    if not connections:
        click.echo("No QuickBooks connections.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<5} {'Company':<14} {'Name':<30} {'Active':<8} {'Expires':<22} {'Errors'}")
    click.echo("=" * 100)
    for c in connections:
        active_str = "Yes" if c.is_active else "No"
        click.echo(
            f"{c.id:<5} {c.company_id:<14} {(c.company_name or '')[:30]:<30} {active_str:<8} "
            f"{to_utc_z(c.token_expires_at) or '':<22} {c.error_count}"
        )
        if c.last_error:
            click.echo(f"      last error: {c.last_error}")
    click.echo("=" * 100 + "\n")


@quickbooks_group.command('refresh-tokens')
@click.option('--window-minutes', type=int, default=None, help='Refresh tokens expiring within this window')
@with_appcontext
def refresh_tokens_cli(window_minutes):
    """Run the token refresh sweep."""
    config = current_app.config
    window = timedelta(minutes=window_minutes or config.get("QB_REFRESH_WINDOW_MINUTES", 30))
    report = token_refresh_service.refresh_expiring_tokens(
        ConnectionStore(db.session),
        client_for_app(current_app),
        window=window,
        max_workers=config.get("QB_REFRESH_MAX_WORKERS", 4),
    )
    for outcome in report.results:
        click.echo(f"{outcome.connection_id:<5} {outcome.company_id:<14} {outcome.status:<10} {outcome.message or ''}")
    click.echo(f"OK {report.refreshed} refreshed, {report.skipped} skipped, {report.errors} errors")
    if report.errors:
        raise SystemExit(1)


def _run_sync_cli(sync_fn, noun, connection_id, page_size):
    config = current_app.config
    store = ConnectionStore(db.session)
    try:
        connection = store.resolve(connection_id)
        result = sync_fn(
            db.session,
            store,
            client_for_app(current_app),
            connection,
            page_size=page_size or config.get("QB_SYNC_PAGE_SIZE", 20),
            max_pages=config.get("QB_SYNC_MAX_PAGES", 50),
            token_buffer=timedelta(minutes=config.get("QB_TOKEN_EXPIRY_BUFFER_MINUTES", 5)),
        )
    except RackTrackError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"OK Synced {result.synced} {noun} ({result.created} created, {result.updated} updated, "
        f"{result.skipped} skipped) of {result.total}"
    )
    for err in result.errors:
        click.echo(f"   ERROR {err}")


@quickbooks_group.command('sync-items')
@click.option('--connection-id', type=int, default=None, help='Connection to use (default: the only active one)')
@click.option('--page-size', type=int, default=None, help='Rows per QuickBooks query page')
@with_appcontext
def sync_items_cli(connection_id, page_size):
    """Pull QuickBooks Items into products."""
    _run_sync_cli(catalog_sync_service.sync_items, "items", connection_id, page_size)


@quickbooks_group.command('sync-customers')
@click.option('--connection-id', type=int, default=None, help='Connection to use (default: the only active one)')
@click.option('--page-size', type=int, default=None, help='Rows per QuickBooks query page')
@with_appcontext
def sync_customers_cli(connection_id, page_size):
    """Pull QuickBooks Customers into customers."""
    _run_sync_cli(catalog_sync_service.sync_customers, "customers", connection_id, page_size)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(users_group)
    app.cli.add_command(quickbooks_group)
