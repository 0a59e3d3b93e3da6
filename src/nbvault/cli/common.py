"""Shared utilities for nbvault CLI commands."""
import logging
import sys
import click
import yaml

from ..config import NbVaultConfig, get_base_path

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

_LOG_LEVELS = {
    VERBOSITY_QUIET: logging.ERROR,
    VERBOSITY_NORMAL: logging.WARNING,
    VERBOSITY_VERBOSE: logging.INFO,
}

# Exit codes
EXIT_ERROR = 1
EXIT_INVALID_ARCHIVE = 2


class _ClickEchoHandler(logging.Handler):
    """Writes records through click so they follow whatever stderr is current."""

    def emit(self, record):
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def configure_logging(verbosity: int) -> None:
    """Send nbvault logging to stderr at a level matching --verbose/--quiet."""
    logger = logging.getLogger("nbvault")
    logger.setLevel(_LOG_LEVELS.get(verbosity, logging.WARNING))
    if not any(isinstance(h, _ClickEchoHandler) for h in logger.handlers):
        handler = _ClickEchoHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)


def should_print(verbosity: int, message_level: int) -> bool:
    """Determine if a message should be printed based on verbosity settings.

    Args:
        verbosity: Current verbosity level (0=quiet, 1=normal, 2=verbose).
        message_level: Minimum verbosity level required for this message.
    """
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a message that is shown even in quiet mode."""
    click.echo(message)


def fail(message: str, verbosity: int, exit_code: int = EXIT_ERROR) -> None:
    """Print a red error line and exit."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(exit_code)


def load_config(ctx: click.Context) -> NbVaultConfig:
    """Load the configuration for the --data-dir of this invocation, exiting on errors."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    base_path = get_base_path(ctx.obj.get('data_dir'))
    try:
        return NbVaultConfig.load(base_path)
    except (ValueError, OSError, yaml.YAMLError) as e:
        fail(f"Invalid configuration in {base_path}: {e}", verbosity)


def require_initialized(config: NbVaultConfig, verbosity: int) -> None:
    if not config.storage.database_path.exists():
        fail("nbvault not initialized. Run 'nbvault init' first.", verbosity)

