"""
Rollback command: reset migration bookkeeping.
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
    echo_success,
    echo_warning,
    prepare_context,
    resolve_org_ids,
    run_async,
    with_gateway,
)
from cci_migration.migration.rollback import RollbackPhase
from cci_migration.reporting.report import render_phase_summary


@click.command(name="rollback")
@org_options
@click.option(
    "--remote",
    is_flag=True,
    help="Also delete created policies and recreate deleted legacy ignores (best effort)",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@confirm_action("This resets migration progress in the ledger. Continue?")
@handle_errors
def rollback(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
    remote: bool,
    yes: bool,
) -> None:
    """Reset execute, retest and cleanup progress so the org can be re-run.

    Without --remote only the ledger changes; policies already created in
    Snyk stay and deleted legacy ignores stay deleted.
    """
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)
    org_ids = resolve_org_ids(ctx, org_id, group_id)

    if remote:

        async def run_rollback(gateway):
            phase = RollbackPhase(ctx.ledger, gateway)
            return [await phase.run(current_org, remote=True) for current_org in org_ids]

        results = run_async(lambda: with_gateway(ctx, run_rollback))
        render_phase_summary(console, results)
    else:
        phase = RollbackPhase(ctx.ledger)
        results = [
            run_async(lambda current_org=current_org: phase.run(current_org))
            for current_org in org_ids
        ]
        echo_warning("Local rollback only: remote policies and deleted ignores are unchanged")

    for result in results:
        echo_success(
            f"{result.org_id}: reset {result.details.get('ignores', 0):,} ignores, "
            f"{result.details.get('policies', 0):,} policies, "
            f"{result.details.get('projects', 0):,} projects"
        )
