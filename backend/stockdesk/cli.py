# Overview: Flask CLI command groups for schema setup and backup maintenance.

# backend/stockdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask db upgrade
#   Apply migrations (preferred for existing databases).
# - python -m flask system init-db
#   Create any missing tables directly from the models.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Maintenance:
# - python -m flask maintenance backup [--dest backups/]
#   Write a consistent snapshot of the database file.
# - python -m flask maintenance restore path/to/backup.db
#   Restore from a snapshot file (same fallbacks as POST /api/backup/restore).

import os
import shutil

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import backup_service
from .services.backup_service import BackupError


@click.group('system')
def system_group():
    """Schema bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables initialized successfully")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('maintenance')
def maintenance_group():
    """Backup and restore commands."""


@maintenance_group.command('backup')
@click.option('--dest', type=click.Path(file_okay=False), default=None,
              help='Directory for the backup file (defaults to BACKUP_DIR)')
@with_appcontext
def backup_cli(dest):
    """Write a consistent snapshot named <prefix>-YYYYmmdd_HHMMSS.db."""
    try:
        snapshot = backup_service.create_snapshot(dest)
    except BackupError as e:
        raise click.ClickException(str(e))

    final_path = os.path.join(os.path.dirname(snapshot), backup_service.backup_filename())
    shutil.move(snapshot, final_path)
    click.echo(f"PASS Backup written to {final_path}")


@maintenance_group.command('restore')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def restore_cli(path):
    """Restore the database from a snapshot file."""
    with open(path, "rb") as fh:
        payload = fh.read()
    try:
        result = backup_service.restore_database(payload)
    except BackupError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS {result.message} (strategy: {result.strategy})")
    if result.restart_required:
        click.echo("WARN Restart the application to apply the restored database.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(maintenance_group)
