"""
Status command: migration progress per organization.
"""

import click

from cci_migration.cli.context import MigrationContext
from cci_migration.cli.decorators import handle_errors, org_options, pass_context
from cci_migration.cli.utils import console, prepare_context, resolve_org_ids
from cci_migration.migration.status import collect_status
from cci_migration.reporting.report import render_status


@click.command(name="status")
@org_options
@pass_context
@handle_errors
def status(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Show counts per phase and the overall migration state."""
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)

    for current_org in resolve_org_ids(ctx, org_id, group_id):
        render_status(console, collect_status(ctx.ledger, current_org))
