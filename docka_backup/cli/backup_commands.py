"""
Backup commands for docka-backup

Backup, restore, retention and inspection commands with Rich output.
"""

from typing import Optional

import typer
from rich.markup import escape

from ..cores.backup_manager import BackupManager
from ..cores.docker_discovery import discover_targets, resolve_bindings
from ..cores.restore_manager import RestoreManager
from ..cores.retention_manager import RetentionManager
from ..cores.safe_exit_manager import SafeExitManager
from ..helpers.constants import ACTION_RESTORE
from ..helpers.errors import DockaBackupError
from ..helpers.system_utils import SystemUtils
from ..helpers.ui_utils import (
    console,
    create_table,
    format_size,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning,
    print_run_summary,
    with_spinner,
)
from ..types import RestoreRequest
from . import utils


# -------------------------
# Commands
# -------------------------

def cmd_run(ctx: typer.Context):
    """Run the action selected by ACTION (container entry point)."""
    cfg = utils.ensure_config(ctx)
    if cfg.action == ACTION_RESTORE:
        cmd_restore(ctx, backup=None, volumes=None)
    else:
        cmd_backup(ctx)


def cmd_backup(ctx: typer.Context):
    """Back up every folder under the backup root to the server."""
    run_ctx = utils.ensure_run_context(ctx)
    print_header("docka-backup", f"Backup of {run_ctx.config.backup.backup_root}")

    safe_exit = SafeExitManager.get_instance()
    safe_exit.install_handlers()
    try:
        summary = BackupManager(run_ctx).run()
    except DockaBackupError as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    finally:
        safe_exit.restore_handlers()

    utils.exit_with_summary(summary)


def cmd_restore(
    ctx: typer.Context,
    backup: Optional[str] = typer.Option(
        None, "--backup", "-b", help="'latest' or an exact backup file name (BACKUP_TO_BE_RESTORED)"
    ),
    volumes: Optional[str] = typer.Option(
        None, "--volumes", "-v", help="'all' or comma separated targets (VOLUME_TO_BE_RESTORED)"
    ),
):
    """Restore targets from a backup (a safety backup runs first)."""
    cfg = utils.ensure_config(ctx)
    try:
        request = RestoreRequest.parse(backup or cfg.restore.backup, volumes or cfg.restore.volumes)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=1)

    run_ctx = utils.ensure_run_context(ctx)
    print_header("docka-backup", f"Restore of {request.backup_selector}")

    safe_exit = SafeExitManager.get_instance()
    safe_exit.install_handlers()
    manager = RestoreManager(run_ctx)
    try:
        summary = manager.run(request)
    except DockaBackupError as e:
        if manager.safety_summary is not None:
            print_run_summary(manager.safety_summary)
        print_error(str(e))
        raise typer.Exit(code=1)
    finally:
        safe_exit.restore_handlers()

    if manager.safety_summary is not None and manager.safety_summary.archive is not None:
        print_info(f"Safety backup: {manager.safety_summary.archive.file_name}")
    utils.exit_with_summary(summary)


def cmd_list(ctx: typer.Context):
    """List backups stored on the server."""
    transport = utils.ensure_transport(ctx)
    try:
        remote_set = with_spinner("Listing backups...", transport.list)
    except DockaBackupError as e:
        print_error(str(e))
        raise typer.Exit(code=1)

    if not remote_set:
        print_warning("No backups found on server")
        return

    table = create_table(
        f"Backups in {transport.remote_dir}",
        [("Name", "cyan", None), ("Created (UTC)", "white", None), ("Size", "green", None)],
    )
    for archive in reversed(remote_set.archives):
        table.add_row(
            escape(archive.file_name),
            archive.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            format_size(archive.size_bytes),
        )
    console.print(table)
    print_info(f"{len(remote_set)} backup(s), latest: {remote_set.latest.file_name}")


def cmd_prune(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted"),
):
    """Apply the retention policy to the backups on the server."""
    cfg = utils.ensure_config(ctx)
    transport = utils.ensure_transport(ctx)
    retention = RetentionManager.from_policy(transport, cfg.retention)
    if not retention.enabled:
        print_warning("No retention policy configured (BACKUP_RETENTION_COUNT / "
                      "BACKUP_RETENTION_PERIOD_IN_DAYS), nothing to prune")
        return

    try:
        result = retention.prune(transport.list(), dry_run=dry_run)
    except DockaBackupError as e:
        print_error(str(e))
        raise typer.Exit(code=1)

    table = create_table(
        "Retention (dry run)" if dry_run else "Retention",
        [("Name", "cyan", None), ("Created (UTC)", "white", None), ("Action", "white", None)],
    )
    everything = result.decision.keep + result.decision.delete
    for archive in sorted(everything, key=lambda a: a.sort_key, reverse=True):
        action = result.decision.action_for(archive)
        if action == "delete" and archive.file_name in result.failed:
            label = "[red]delete failed[/red]"
        elif action == "delete":
            label = "[yellow]delete[/yellow]"
        else:
            label = "[green]keep[/green]"
        table.add_row(escape(archive.file_name),
                      archive.created_at.strftime("%Y-%m-%d %H:%M:%S"), label)
    console.print(table)

    if dry_run:
        print_info(f"Would delete {len(result.decision.delete)} backup(s)")
    elif result.success:
        print_success(f"Deleted {len(result.deleted)} backup(s)")
    else:
        print_error(f"{len(result.failed)} deletion(s) failed")
        raise typer.Exit(code=1)


def cmd_targets(ctx: typer.Context):
    """Show backup targets with their volumes and containers."""
    run_ctx = utils.ensure_run_context(ctx)
    try:
        targets = discover_targets(run_ctx.config.backup.backup_root)
        bindings = resolve_bindings(run_ctx.runtime, targets, run_ctx.self_container_id)
    except (DockaBackupError, FileNotFoundError) as e:
        print_error(str(e))
        raise typer.Exit(code=1)

    if not bindings:
        print_warning(f"No targets found in {run_ctx.config.backup.backup_root}")
        return

    table = create_table(
        "Backup targets",
        [("Target", "cyan", None), ("Volume", "white", None), ("Containers", "green", None),
         ("Size", "white", None)],
    )
    for binding in bindings:
        containers = ", ".join(
            f"{c.name} (running)" if c.is_running else c.name for c in binding.containers
        )
        table.add_row(
            escape(binding.name),
            "-" if binding.is_plain_directory else escape(binding.volume.name),
            escape(containers) or "-",
            format_size(SystemUtils.estimate_directory_size(binding.target.local_path)),
        )
    console.print(table)


# -------------------------
# Registration
# -------------------------

def register_to_main_app(app: typer.Typer):
    """Register backup commands to main app"""
    app.command("run")(cmd_run)
    app.command("backup")(cmd_backup)
    app.command("restore")(cmd_restore)
    app.command("list")(cmd_list)
    app.command("prune")(cmd_prune)
    app.command("targets")(cmd_targets)
