"""Initialization command for nbvault CLI."""
import click

from ..config import NbVaultConfig, get_base_path, write_default_config
from ..storage import WorkspaceStore
from .common import VERBOSITY_NORMAL, echo_normal, echo_verbose, fail


@click.command("init")
@click.pass_context
def init(ctx) -> None:
    """Initialize the data directory.

    Creates the following:
    - ~/.nbvault/ (or --data-dir)
    - config.yaml with default settings
    - SQLite database with the notebook schema
    - uploads/ root for notebook files
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    base_path = get_base_path(ctx.obj.get('data_dir'))

    echo_normal(click.style("Initializing nbvault...", fg="cyan", bold=True), verbosity)

    config_path = base_path / "config.yaml"
    existed = config_path.exists()
    write_default_config(base_path)
    if existed:
        echo_normal(f" ⚠ Config exists: {config_path}", verbosity)
    else:
        echo_normal(f" ✓ Created config: {config_path}", verbosity)

    try:
        config = NbVaultConfig.load(base_path)
        with WorkspaceStore(config.storage.database_path, config.storage.uploads_dir):
            pass
    except Exception as e:
        fail(f"Failed to initialize storage: {e}", verbosity)

    echo_normal(f" ✓ Database ready: {config.storage.database_path}", verbosity)
    echo_verbose(f" ✓ Uploads directory: {config.storage.uploads_dir}", verbosity)
    echo_normal(click.style("✓ nbvault initialized", fg="green", bold=True), verbosity)
