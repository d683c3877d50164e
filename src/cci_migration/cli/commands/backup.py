"""
Ledger backup and restore commands.
"""

from pathlib import Path

import click

from cci_migration.cli.context import MigrationContext
from cci_migration.cli.decorators import handle_errors, org_options, pass_context
from cci_migration.cli.utils import echo_info, echo_success, prepare_context
from cci_migration.migration.database import create_database_backup, restore_database_backup
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="backup")
@org_options
@pass_context
@handle_errors
def backup(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Copy the ledger to a timestamped file in the backup directory."""
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)

    path = create_database_backup(ctx.config.state.database_url, ctx.config.paths.backup_dir)
    echo_success(f"Ledger backed up to {path}")


@click.command(name="restore")
@org_options
@click.option(
    "--backup-file",
    type=click.Path(path_type=Path),
    help="Backup to restore (defaults to the newest in the backup directory)",
)
@pass_context
@handle_errors
def restore(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
    backup_file: Path | None,
) -> None:
    """Replace the ledger with a backup.

    The current ledger is kept next to it as <db>.before-restore.<timestamp>.
    """
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)

    ctx.close_ledger()
    source, previous = restore_database_backup(
        ctx.config.state.database_url,
        ctx.config.paths.backup_dir,
        backup_file,
    )
    if previous:
        echo_info(f"Previous ledger saved as {previous}")
    echo_success(f"Ledger restored from {source}")
