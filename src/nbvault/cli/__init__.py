"""nbvault CLI - backup and restore for notebook workspaces

Command groups live in separate modules:
- init.py: init
- backup.py: backup create, restore, inspect, sweep
- config.py: config set, get, show
- common.py: shared utilities
"""
from pathlib import Path
import click

from .. import __version__
from .common import VERBOSITY_NORMAL, VERBOSITY_QUIET, VERBOSITY_VERBOSE, configure_logging
from .init import init
from .backup import backup_group
from .config import config_group


@click.group()
@click.version_option(version=__version__, prog_name="nbvault")
@click.option('--data-dir', type=click.Path(), default=None, envvar='NBVAULT_BASE_PATH',
              help='Base directory for nbvault data (default: ~/.nbvault)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, verbose, quiet):
    """nbvault - notebook backup and restore

    \b
    Key Commands:
        init              Initialize the data directory
        backup create     Back up notebooks into a zip archive
        backup restore    Restore notebooks from an archive
        backup inspect    Validate an archive and list its notebooks
        backup sweep      Remove stale temporary directories
        config            Configuration management

    \b
    Examples:
        nbvault init
        nbvault backup create ws1 ws2 -o backup.zip
        nbvault backup restore backup.zip --keep-archive
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None
    configure_logging(ctx.obj['verbosity'])


cli.add_command(init)
cli.add_command(backup_group, name='backup')
cli.add_command(config_group, name='config')


def main():
    """Entry point for the CLI."""
    cli()


__all__ = [
    'cli',
    'main',
]
