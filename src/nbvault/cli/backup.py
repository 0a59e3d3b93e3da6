"""Backup and restore commands for nbvault CLI."""
import json
from pathlib import Path
from typing import Dict, Optional, Tuple

import click

from ..backup import (
    ArchiveExtractor,
    ArchiveValidationError,
    BackupError,
    BackupService,
    RestoreAbortedError,
    RestoreFailurePolicy,
    TempWorkspace,
    WorkspaceBackupRequest,
)
from .common import (
    EXIT_ERROR,
    EXIT_INVALID_ARCHIVE,
    VERBOSITY_NORMAL,
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    load_config,
    require_initialized,
)


@click.group()
def backup_group():
    """Backup and restore commands."""
    pass


def _parse_notes_files(values: Tuple[str, ...], verbosity: int) -> Dict[str, str]:
    """Turn repeated ID=PATH options into {workspace_id: payload}."""
    payloads = {}
    for value in values:
        workspace_id, sep, path = value.partition("=")
        if not sep or not workspace_id or not path:
            fail(f"--notes-file expects ID=PATH, got {value!r}", verbosity)
        try:
            payloads[workspace_id] = Path(path).expanduser().read_text(encoding="utf-8")
        except OSError as e:
            fail(f"Cannot read notes file {path}: {e}", verbosity)
    return payloads


@backup_group.command("create")
@click.argument('workspace_ids', nargs=-1, required=True)
@click.option('--notes-file', 'notes_files', multiple=True, metavar='ID=PATH',
              help='Legacy notes JSON to embed for a notebook (repeatable)')
@click.option('--output', '-o', type=click.Path(), default=None,
              help='Archive path (default: notebook_backup_<timestamp>.zip in the current directory)')
@click.pass_context
def create(ctx, workspace_ids: Tuple[str, ...], notes_files: Tuple[str, ...],
           output: Optional[str]) -> None:
    """Back up one or more notebooks into a zip archive.

    Examples:
        nbvault backup create ws1 ws2
        nbvault backup create ws1 --notes-file ws1=notes.json -o ws1.zip
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)
    require_initialized(config, verbosity)

    payloads = _parse_notes_files(notes_files, verbosity)
    unknown = sorted(set(payloads) - set(workspace_ids))
    if unknown:
        fail(f"--notes-file given for notebooks not being backed up: {', '.join(unknown)}", verbosity)

    requests = [
        WorkspaceBackupRequest(workspace_id, payloads.get(workspace_id, ""))
        for workspace_id in workspace_ids
    ]

    try:
        with BackupService.from_config(config) as service:
            with service.create_backup(requests) as stream:
                destination = Path(output) if output else Path.cwd() / stream.filename
                size = stream.size
                stream.copy_to(destination)
    except BackupError as e:
        fail(str(e), verbosity)
    except OSError as e:
        fail(f"Failed to write backup: {e}", verbosity)

    echo_normal(click.style("✓ Backup created", fg="green", bold=True), verbosity)
    echo_normal(f"  Notebooks: {click.style(', '.join(workspace_ids), fg='cyan')}", verbosity)
    echo_verbose(f"  Size: {size} bytes", verbosity)
    echo_quiet(str(destination), verbosity)


@backup_group.command("restore")
@click.argument('archive', type=click.Path(exists=True, dir_okay=False))
@click.option('--policy', type=click.Choice([p.value for p in RestoreFailurePolicy]),
              default=None, help='Failure policy (default: restore.failure_policy)')
@click.option('--keep-archive', is_flag=True, default=False,
              help='Do not delete the archive after restoring')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def restore(ctx, archive: str, policy: Optional[str], keep_archive: bool,
            json_output: bool) -> None:
    """Restore every notebook in a backup archive.

    Existing notebooks with the same ids are replaced. The archive is deleted
    afterwards unless --keep-archive is given or restore.delete_uploaded_archive
    is false.

    Examples:
        nbvault backup restore notebook_backup.zip --keep-archive
        nbvault backup restore upload.zip --policy continue --json-output
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)
    require_initialized(config, verbosity)

    try:
        with BackupService.from_config(config) as service:
            result = service.restore_from_backup(
                archive,
                policy=RestoreFailurePolicy.from_value(policy) if policy else None,
                delete_archive=False if keep_archive else None,
            )
    except ArchiveValidationError as e:
        fail(str(e), verbosity, EXIT_INVALID_ARCHIVE)
    except RestoreAbortedError as e:
        if json_output:
            click.echo(json.dumps({
                "message": str(e),
                "restoredPayloads": [p.to_dict() for p in e.restored_payloads],
                "workspaces": [r.to_dict() for r in e.reports],
            }, indent=2))
        fail(str(e), verbosity)
    except BackupError as e:
        fail(str(e), verbosity)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        color = "green" if result.succeeded else "yellow"
        echo_normal(click.style(result.message, fg=color, bold=True), verbosity)
        for report in result.workspaces:
            status = click.style("✓", fg="green") if report.succeeded else click.style("✗", fg="red")
            echo_normal(f"  {status} {report.workspace_id}", verbosity)
            for step in report.steps:
                echo_verbose(f"      {step.step.value}: {step.outcome.value} {step.detail}".rstrip(), verbosity)

    if not result.succeeded:
        ctx.exit(EXIT_ERROR)


@backup_group.command("inspect")
@click.argument('archive', type=click.Path(exists=True, dir_okay=False))
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def inspect(ctx, archive: str, json_output: bool) -> None:
    """Validate an archive and show its manifest without restoring it."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)

    try:
        with ArchiveExtractor(temp_root=config.backup.temp_dir).extract(archive) as extracted:
            manifest = extracted.manifest
    except ArchiveValidationError as e:
        fail(str(e), verbosity, EXIT_INVALID_ARCHIVE)

    if json_output:
        click.echo(json.dumps(manifest.to_dict(), indent=2))
        return
    echo_normal(click.style("✓ Valid backup archive", fg="green", bold=True), verbosity)
    echo_normal(f"  Format version: {manifest.format_version}", verbosity)
    echo_normal(f"  Created: {manifest.created_at.isoformat()}", verbosity)
    echo_normal(f"  Notebooks ({len(manifest.workspace_ids)}):", verbosity)
    for workspace_id in manifest.workspace_ids:
        echo_quiet(f"    {workspace_id}", verbosity)


@backup_group.command("sweep")
@click.option('--older-than', type=float, default=24.0, show_default=True,
              help='Only remove directories older than this many hours')
@click.pass_context
def sweep(ctx, older_than: float) -> None:
    """Remove temporary directories left behind by interrupted runs."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = load_config(ctx)

    deleted = TempWorkspace.sweep_stale(config.backup.temp_dir, older_than_hours=older_than)
    echo_normal(click.style(f"✓ Removed {deleted} stale temporary directories", fg="green"), verbosity)
