# Overview: Flask CLI command groups for bootstrap, scheduled maintenance, and platform sync.

# backend/portal/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--admin-email admin@portal.local]
#   Create tables if missing and an admin user.
#
# Clients (tenants):
# - python -m flask clients list
# - python -m flask clients create --name "Acme Goods" --code ACME
#   Creates the client and its available / damaged / quarantine locations.
#
# Users:
# - python -m flask users create --email ops@acme.test --role client --client-id 1
#
# Maintenance (cron):
# - python -m flask maintenance cleanup-oauth-states          daily
# - python -m flask maintenance prune-webhooks --retention-days 30
# - python -m flask maintenance sweep-qc-photos
# - python -m flask maintenance prune-rate-limits
# - python -m flask maintenance cleanup-security-events --retention-days 90
#
# Platform sync:
# - python -m flask sync drain --limit 100                    every minute
# - python -m flask sync resync --client-id 1
# - python -m flask sync backfill-variant-aliases [--client-id 1]
# - python -m flask sync orders --client-id 1

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Client, User
from .services import alias_service, inventory_sync_service, ledger_service, maintenance_service
from .services.auth_service import create_user, PasswordValidationError
from .validation import ConflictError, NotFoundError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@portal.local', show_default=True)
@click.option('--admin-password', default='Password123!', show_default=True)
@with_appcontext
def init_system(admin_email, admin_password):
    """
    Create missing tables and a warehouse admin user.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing portal...")
    db.create_all()
    click.echo("PASS Tables ready")

    if db.session.query(User).filter_by(email=admin_email.lower()).first():
        click.echo(f"WARN  Admin '{admin_email}' already exists, skipping...")
        return

    try:
        create_user(email=admin_email, password=admin_password, role="admin")
        click.echo(f"PASS Created admin: {admin_email}")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")


@click.group('clients')
def clients_group():
    """Client (tenant) management."""


@clients_group.command('list')
@with_appcontext
def list_clients():
    clients = db.session.query(Client).order_by(Client.id.asc()).all()
    if not clients:
        click.echo("No clients found.")
        return
    for client in clients:
        click.echo(f"{client.id:>5}  {client.code or '-':<12} {client.status:<10} {client.name}")


@clients_group.command('create')
@click.option('--name', required=True)
@click.option('--code', default=None)
@click.option('--contact-email', default=None)
@with_appcontext
def create_client_cli(name, code, contact_email):
    """Create a client with one location per kind."""
    if code and db.session.query(Client).filter_by(code=code).first():
        click.echo(f"FAIL Client code '{code}' already exists")
        return
    client = Client(name=name, code=code, contact_email=contact_email, status="active")
    db.session.add(client)
    db.session.flush()
    locations = ledger_service.ensure_client_locations(client.id)
    db.session.commit()
    click.echo(f"PASS Created client {client.name} (ID: {client.id})")
    click.echo(f"     Locations: {', '.join(loc.code for loc in locations.values())}")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(['admin', 'client']), prompt=True)
@click.option('--client-id', type=int, default=None, help='Required for client users')
@with_appcontext
def create_user_cli(email, password, role, client_id):
    try:
        user = create_user(email=email, password=password, role=role, client_id=client_id)
        click.echo(f"PASS Created user: {user.email} with role '{user.role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except (ValidationError, NotFoundError, ConflictError) as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@click.group('maintenance')
def maintenance_group():
    """Scheduled cleanup jobs. Each is idempotent."""


@maintenance_group.command('cleanup-oauth-states')
@with_appcontext
def cleanup_oauth_states_cli():
    deleted = maintenance_service.cleanup_oauth_states()
    click.echo(f"Deleted {deleted} expired OAuth states.")


@maintenance_group.command('prune-webhooks')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def prune_webhooks_cli(retention_days):
    result = maintenance_service.prune_processed_webhooks(retention_days=retention_days)
    click.echo(
        f"Deleted {result['processed_webhooks']} webhook keys and "
        f"{result['delivery_logs']} delivery logs older than {retention_days} days."
    )


@maintenance_group.command('sweep-qc-photos')
@click.option('--retention-days', type=int, default=None, help='Defaults to QC_PHOTO_RETENTION_DAYS')
@with_appcontext
def sweep_qc_photos_cli(retention_days):
    stats = maintenance_service.sweep_qc_photos(retention_days=retention_days)
    click.echo(f"Scanned {stats['scanned']}, deleted {stats['deleted']}, failed {stats['failed']}.")


@maintenance_group.command('prune-rate-limits')
@with_appcontext
def prune_rate_limits_cli():
    deleted = maintenance_service.prune_rate_limits()
    click.echo(f"Deleted {deleted} stale rate limit windows.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


@click.group('sync')
def sync_group():
    """Commerce platform synchronization."""


@sync_group.command('drain')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def drain_cli(limit):
    stats = inventory_sync_service.drain_push_queue(limit=limit)
    click.echo(
        f"Processed {stats['processed']}: {stats['succeeded']} pushed, {stats['skipped']} skipped, "
        f"{stats['retrying']} retrying, {stats['failed']} failed."
    )


@sync_group.command('resync')
@click.option('--client-id', type=int, required=True)
@with_appcontext
def resync_cli(client_id):
    queued = inventory_sync_service.trigger_client_resync(client_id=client_id)
    click.echo(f"Queued {queued} SKU pushes for client {client_id}. Run 'sync drain' to send them.")


@sync_group.command('backfill-variant-aliases')
@click.option('--client-id', type=int, default=None)
@click.option('--batch-size', type=int, default=500, show_default=True)
@with_appcontext
def backfill_variant_aliases_cli(client_id, batch_size):
    stats = alias_service.backfill_variant_aliases(client_id=client_id, batch_size=batch_size)
    for key, value in stats.items():
        click.echo(f"  {key:<22} {value}")


@sync_group.command('orders')
@click.option('--client-id', type=int, required=True)
@with_appcontext
def sync_orders_cli(client_id):
    try:
        stats = inventory_sync_service.sync_orders(client_id=client_id)
    except NotFoundError as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"Pulled {stats['orders']} orders over {stats['pages']} pages ({stats['created']} new).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(clients_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
    app.cli.add_command(sync_group)
