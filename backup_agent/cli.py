"""
Command line entry points.

    backup-now                  Run one backup now (exit 0 on success)
    backup-agent run            Same as backup-now
    backup-agent prune          Apply the retention policy without a new backup
    backup-agent list           Show artifacts and their retention decision
    backup-agent serve          Run the scheduler, config watcher and status API
"""

import signal
import sys

import click

from backup_agent import configure_logging
from backup_agent.backup.executor import execute_backup
from backup_agent.backup.retention import RetentionManager
from backup_agent.backup.storage import LocalStorage
from backup_agent.errors import ConfigError, RunInterrupted, StorageError
from backup_agent.settings import load_settings
from backup_agent.utils.formatting import human_size


DEFAULT_CONFIG_FILE = '/config/config.yaml'

config_option = click.option(
    '--config', 'config_file',
    envvar='CONFIG_FILE',
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help='Path to the YAML configuration file.'
)
backup_dir_option = click.option(
    '--backup-dir',
    envvar='BACKUP_DIR',
    default=None,
    help='Artifact directory (overrides backup_dir in the config file).'
)


def _load(config_file, backup_dir):
    try:
        settings = load_settings(config_file, backup_dir=backup_dir)
    except ConfigError as e:
        raise click.ClickException(str(e))
    configure_logging(settings.logging)
    return settings


def _raise_interrupted(signum, frame):
    raise RunInterrupted(f"Process received signal {signal.Signals(signum).name}")


@click.command('run')
@config_option
@backup_dir_option
def run_backup(config_file, backup_dir):
    """Run one backup now."""
    settings = _load(config_file, backup_dir)

    # Termination during a run becomes an exception so the run's crash guard
    # still sends the failure notification
    previous = {
        sig: signal.signal(sig, _raise_interrupted)
        for sig in (signal.SIGTERM, signal.SIGINT)
    }
    try:
        state = execute_backup(settings)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    sys.exit(state.exit_code)


@click.group()
def cli():
    """Scheduled backup agent."""


cli.add_command(run_backup)


@cli.command('prune')
@config_option
@backup_dir_option
@click.option('--dry-run', is_flag=True, help='Show what would be deleted without deleting.')
def prune(config_file, backup_dir, dry_run):
    """Apply the retention policy to the artifact directory."""
    settings = _load(config_file, backup_dir)

    try:
        manager = RetentionManager(LocalStorage(settings.backup_dir), settings.retention)
        result = manager.prune(dry_run=dry_run)
    except StorageError as e:
        raise click.ClickException(str(e))

    verb = 'Would delete' if dry_run else 'Deleted'
    for artifact in result.deleted:
        click.echo(f"{verb}: {artifact.name}")
    for artifact in result.failed:
        click.echo(f"Failed to delete: {artifact.name}", err=True)
    click.echo(f"Kept {len(result.kept)}, {verb.lower()} {len(result.deleted)}")

    if result.failed:
        sys.exit(1)


@cli.command('list')
@config_option
@backup_dir_option
def list_backups(config_file, backup_dir):
    """List artifacts and whether the retention policy keeps them."""
    settings = _load(config_file, backup_dir)

    try:
        manager = RetentionManager(LocalStorage(settings.backup_dir), settings.retention)
        preview = manager.prune(dry_run=True)
    except StorageError as e:
        raise click.ClickException(str(e))

    kept = set(preview.kept)
    for artifact in sorted(preview.kept + preview.deleted, key=lambda a: a.sort_key):
        marker = 'keep' if artifact in kept else 'prune'
        click.echo(f"{artifact.name}\t{human_size(artifact.size)}\t{marker}")
    for name in preview.ignored:
        click.echo(f"{name}\t-\tignored")


@cli.command('serve')
@click.option('--host', envvar='HOST', default='0.0.0.0', show_default=True)
@click.option('--port', envvar='PORT', default=8080, type=int, show_default=True)
@click.option('--config', 'config_file', envvar='CONFIG_FILE', default=DEFAULT_CONFIG_FILE, show_default=True)
def serve(host, port, config_file):
    """Run the scheduler, config watcher and status API."""
    from backup_agent import create_app

    app = create_app('production', overrides={'CONFIG_FILE': config_file})
    app.run(host=host, port=port, use_reloader=False)


if __name__ == '__main__':
    cli()
