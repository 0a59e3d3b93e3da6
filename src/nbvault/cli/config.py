"""Configuration management commands for nbvault CLI."""
import yaml
import click

from ..config import CONFIG_FILENAME, NbVaultConfig, get_base_path
from .common import VERBOSITY_NORMAL, echo_normal, echo_quiet, fail


@click.group()
def config_group():
    """Configuration management commands."""
    pass


def _config_path(ctx):
    base_path = get_base_path(ctx.obj.get('data_dir'))
    config_path = base_path / CONFIG_FILENAME
    if not config_path.exists():
        fail("nbvault not initialized. Run 'nbvault init' first.", ctx.obj.get('verbosity', VERBOSITY_NORMAL))
    return base_path, config_path


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    The value is parsed as YAML, so numbers and booleans keep their type.
    The resulting file is validated before it is written.

    Examples:
        nbvault config set restore.failure_policy continue
        nbvault config set backup.compression_level 6
        nbvault config set restore.delete_uploaded_archive false
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    base_path, config_path = _config_path(ctx)

    try:
        config_data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(config_data, dict):
            raise ValueError(f"{config_path.name} must contain a mapping")

        # Parse nested keys (e.g., 'restore.failure_policy')
        keys = key.split('.')
        current = config_data
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]
        current[keys[-1]] = yaml.safe_load(value)

        NbVaultConfig.from_dict(config_data, base_path)
    except (ValueError, yaml.YAMLError) as e:
        fail(f"Failed to set config: {e}", verbosity)

    config_path.write_text(yaml.safe_dump(config_data, default_flow_style=False), encoding="utf-8")
    echo_normal(click.style(f"✓ Set {key} = {value}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get an effective configuration value (defaults included).

    Examples:
        nbvault config get restore.failure_policy
        nbvault config get storage.uploads_dir
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    base_path, _ = _config_path(ctx)

    try:
        current = NbVaultConfig.load(base_path).to_dict()
    except (ValueError, yaml.YAMLError) as e:
        fail(f"Failed to get config: {e}", verbosity)

    for k in key.split('.'):
        if not isinstance(current, dict) or k not in current:
            echo_quiet(click.style(f"Key '{key}' not found", fg="yellow"), verbosity)
            ctx.exit(1)
        current = current[k]

    echo_quiet(str(current), verbosity)


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display full configuration."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    _, config_path = _config_path(ctx)

    content = config_path.read_text(encoding="utf-8")
    echo_normal(click.style("Current configuration:", fg="cyan", bold=True), verbosity)
    echo_quiet(content, verbosity)
