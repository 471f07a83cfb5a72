# Overview: Flask CLI command groups for cutover inspection, recovery, and cache maintenance.

# backend/inventory_cutover/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Cutover inspection/recovery:
# - python -m flask cutover status [--location-id 1]
#   Show history locks (all locations, or one) and the latest cutover.
# - python -m flask cutover continue <cutover_id>
#   Run the next batch of a cutover from its persisted checkpoint.
# - python -m flask cutover reset <cutover_id>
#   Clear a FAILED cutover so "continue" can replay its next batch.
#
# Cost review:
# - python -m flask extraction cancel <session_id>
#   Cancel an in-progress extraction session.
#
# Maintenance:
# - python -m flask catalog invalidate-cache [--variation-id ID ...]
#   Drop cached POS catalog metadata (everything when no id is given).

import click
from flask.cli import with_appcontext

from .errors import MigrationError
from .services import extraction_service, migration_service
from .services.pos_source import get_pos_source


@click.group('cutover')
def cutover_group():
    """Inventory cutover inspection and recovery commands."""


@cutover_group.command('status')
@click.option('--location-id', type=int, help='Show the lock for one location')
@with_appcontext
def cutover_status_cli(location_id):
    """
    Show cutover lock state.

    Example:
        flask cutover status
        flask cutover status --location-id 1
    """
    status = migration_service.get_cutover_status(location_id=location_id)

    if location_id is not None:
        if status["is_locked"]:
            click.echo(f"LOCKED Location {location_id} since {status['cutover_date']} (cutover {status['cutover_id']})")
        else:
            click.echo(f"OPEN   Location {location_id} has no cutover lock")
        return

    locks = status["locks"]
    if not locks:
        click.echo("No locked locations.")
    else:
        click.echo("\n" + "=" * 80)
        click.echo(f"{'Location':<10} {'Cutover date':<24} {'Locked at':<24} {'Cutover'}")
        click.echo("=" * 80)
        for lock in locks:
            click.echo(
                f"{lock['location_id']:<10} {lock['cutover_date'] or '':<24} "
                f"{lock['locked_at'] or '':<24} {lock['cutover_id']}"
            )
        click.echo("=" * 80)

    latest = status["latest_cutover"]
    if latest:
        click.echo(
            f"Latest cutover {latest['id']}: {latest['status']} "
            f"(batch {latest['current_batch']}/{latest['total_batches']})"
        )


@cutover_group.command('continue')
@click.argument('cutover_id')
@with_appcontext
def cutover_continue_cli(cutover_id):
    """Run the next batch of a cutover."""
    try:
        result = migration_service.continue_cutover(cutover_id=cutover_id, source=get_pos_source())
    except MigrationError as e:
        click.echo(f"FAIL Error: {e.message} ({e.code})")
        if e.recovery_action:
            click.echo(f"   Next step: {e.recovery_action}")
        return

    click.echo(f"PASS Batch {result['current_batch']}/{result['total_batches']} migrated")
    click.echo(f"   Opening balances: {result['opening_balances']}")
    click.echo(f"   Missing costs: {result['missing_costs']}")
    click.echo(f"   Unmapped items: {result['unmapped_items']}")
    if result["is_complete"]:
        click.echo("   Cutover complete; history is now locked.")


@cutover_group.command('reset')
@click.argument('cutover_id')
@with_appcontext
def cutover_reset_cli(cutover_id):
    """Reset a FAILED cutover."""
    try:
        cutover = migration_service.reset_cutover(cutover_id=cutover_id)
    except MigrationError as e:
        click.echo(f"FAIL Error: {e.message} ({e.code})")
        return
    click.echo(f"PASS Cutover {cutover['id']} is {cutover['status']} (batch {cutover['current_batch']})")


@click.group('extraction')
def extraction_group():
    """Cost review session commands."""


@extraction_group.command('cancel')
@click.argument('session_id')
@with_appcontext
def extraction_cancel_cli(session_id):
    """Cancel an extraction session."""
    try:
        session = extraction_service.cancel_extraction_session(session_id=session_id)
    except MigrationError as e:
        click.echo(f"FAIL Error: {e.message} ({e.code})")
        return
    click.echo(f"PASS Session {session['id']} is {session['status']}")


@click.group('catalog')
def catalog_group():
    """POS catalog cache commands."""


@catalog_group.command('invalidate-cache')
@click.option('--variation-id', 'variation_ids', multiple=True, help='Variation id to drop (repeatable)')
@with_appcontext
def invalidate_cache_cli(variation_ids):
    """
    Drop cached catalog metadata.

    Example:
        flask catalog invalidate-cache
        flask catalog invalidate-cache --variation-id VAR1 --variation-id VAR2
    """
    get_pos_source().invalidate(list(variation_ids) or None)
    if variation_ids:
        click.echo(f"PASS Invalidated {len(variation_ids)} catalog entr{'y' if len(variation_ids) == 1 else 'ies'}")
    else:
        click.echo("PASS Catalog cache cleared")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(cutover_group)
    app.cli.add_command(extraction_group)
    app.cli.add_command(catalog_group)
