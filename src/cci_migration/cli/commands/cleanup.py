"""
Cleanup command: delete legacy ignores that have been migrated.
"""

import click

from cci_migration.cli.context import MigrationContext
from cci_migration.cli.decorators import (
    confirm_action,
    handle_errors,
    org_options,
    pass_context,
)
from cci_migration.cli.utils import (
    console,
    prepare_context,
    resolve_org_ids,
    run_async,
    with_gateway,
)
from cci_migration.migration.cleanup import CleanupPhase
from cci_migration.reporting.report import render_phase_summary


@click.command(name="cleanup")
@org_options
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@confirm_action("This deletes the migrated legacy ignores from Snyk. Continue?")
@handle_errors
def cleanup(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
    yes: bool,
) -> None:
    """Delete legacy ignores whose policy has been created.

    Run 'cci-bridge backup' first; 'cci-bridge rollback --remote' can
    recreate deleted ignores from their collected state.
    """
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)
    org_ids = resolve_org_ids(ctx, org_id, group_id)

    async def run_cleanup(gateway):
        phase = CleanupPhase(gateway, ctx.ledger)
        return [await phase.run(current_org) for current_org in org_ids]

    results = run_async(lambda: with_gateway(ctx, run_cleanup))
    render_phase_summary(console, results)
