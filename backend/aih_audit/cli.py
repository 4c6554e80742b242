# Overview: Flask CLI command groups for bootstrap, inspection, and archival.

# backend/aih_audit/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the app factory (bash: export FLASK_APP="aih_audit:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create every live and archive table that does not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Records:
# - python -m flask records create --number 1234567890123 --value 1500.00 --competence 07/2025 --encounters "A1,A2"
#   Register a record with its encounters and automatic first intake.
# - python -m flask records show 1234567890123
#   Print the record aggregate (live first, then archive) as JSON.
# - python -m flask records next-movement 42
#   Show which movement type record 42 accepts next.
#
# Denial types:
# - python -m flask denial-types list
# - python -m flask denial-types add "Procedure not performed"
# - python -m flask denial-types remove 3
#
# Archival (for the external scheduler; run every six months):
# - python -m flask archive run [--batch-size 100] [--as-of 2026-01-01T00:00:00Z]
#   Archive finalized records older than the retention window; prints a JSON summary.
#   Exits with status 1 when the store became unavailable mid-pass.
# - python -m flask archive lookup 1234567890123
#   Print an archived record as JSON.
#
# Example crontab entry (00:30 on Jan 1st and Jul 1st):
#   30 0 1 1,7 * cd /srv/aih-audit/backend && FLASK_APP=aih_audit:create_app python -m flask archive run

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import archival_service, denial_service, movement_service, record_service
from .store import StoreUnavailable
from .time_utils import parse_iso_datetime
from .validation import ConflictError, NotFoundError, ValidationError


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str, ensure_ascii=False))


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
    db.create_all()
    click.echo("PASS Database schema is up to date.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, archived records included!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('records')
def records_group():
    """Record registration and inspection."""


@records_group.command('create')
@click.option('--number', required=True, help='Record (AIH) number')
@click.option('--value', required=True, help='Initial value, e.g. 1500.00')
@click.option('--competence', required=True, help='Billing competence MM/YYYY')
@click.option('--encounters', required=True, help='Comma separated encounter numbers')
@click.option('--user-id', type=int, help='Registering user ID')
@with_appcontext
def create_record_cli(number, value, competence, encounters, user_id):
    """Register a record."""
    try:
        record = record_service.create_record(
            number, value, competence, encounters, created_by_user_id=user_id
        )
    except ValidationError as e:
        for reason in e.reasons:
            click.echo(f"FAIL {reason}")
        return
    except ConflictError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Registered record {record.external_number} (ID: {record.id})")


@records_group.command('show')
@click.argument('number')
@with_appcontext
def show_record(number):
    """Print a record aggregate, falling back to the archive."""
    try:
        _echo_json(record_service.find_record(number))
    except NotFoundError as e:
        click.echo(f"FAIL {e}")


@records_group.command('next-movement')
@click.argument('record_id', type=int)
@with_appcontext
def next_movement(record_id):
    """Show the movement type a record accepts next."""
    try:
        hint = movement_service.describe_next_movement(record_id)
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"{hint['next_type']}: {hint['label']}")
    click.echo(hint["explanation"])


@click.group('denial-types')
def denial_types_group():
    """Denial type catalog."""


@denial_types_group.command('list')
@with_appcontext
def list_denial_types():
    """List denial types."""
    types = denial_service.list_denial_types()
    if not types:
        click.echo("No denial types found.")
        return

    click.echo("\n" + "=" * 60)
    click.echo(f"{'ID':<5} {'Description'}")
    click.echo("=" * 60)
    for denial_type in types:
        click.echo(f"{denial_type.id:<5} {denial_type.description}")
    click.echo("=" * 60 + "\n")


@denial_types_group.command('add')
@click.argument('description')
@with_appcontext
def add_denial_type(description):
    """Add a denial type."""
    try:
        denial_type = denial_service.add_denial_type(description)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created denial type: {denial_type.description} (ID: {denial_type.id})")


@denial_types_group.command('remove')
@click.argument('type_id', type=int)
@with_appcontext
def remove_denial_type(type_id):
    """Remove a denial type."""
    try:
        denial_service.remove_denial_type(type_id)
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Removed denial type {type_id}")


@click.group('archive')
def archive_group():
    """Cold-storage archival commands."""


@archive_group.command('run')
@click.option('--batch-size', type=int, help='Records per batch (default: ARCHIVE_BATCH_SIZE)')
@click.option('--as-of', 'as_of', help='Reference time (ISO-8601) for the retention cutoff')
@with_appcontext
def run_archive(batch_size, as_of):
    """Run one archival pass and print its summary."""
    ctx = click.get_current_context()
    try:
        summary = archival_service.run_archival_pass(
            now=parse_iso_datetime(as_of),
            batch_size=batch_size,
        )
    except StoreUnavailable as e:
        click.echo(f"FAIL Store unavailable: {e}")
        ctx.exit(1)

    _echo_json(summary.to_dict())
    if summary.aborted:
        ctx.exit(1)


@archive_group.command('lookup')
@click.argument('number')
@with_appcontext
def lookup_archived(number):
    """Print an archived record."""
    ctx = click.get_current_context()
    try:
        _echo_json(archival_service.lookup_archived(number))
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        ctx.exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(records_group)
    app.cli.add_command(denial_types_group)
    app.cli.add_command(archive_group)
