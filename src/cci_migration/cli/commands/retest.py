"""
Retest command: rescan projects whose ignores were migrated.
"""

import click

from cci_migration.cli.context import MigrationContext
from cci_migration.cli.decorators import handle_errors, org_options, pass_context
from cci_migration.cli.utils import (
    console,
    echo_info,
    prepare_context,
    resolve_org_ids,
    run_async,
    with_gateway,
)
from cci_migration.migration.retest import RetestPhase
from cci_migration.reporting.report import render_phase_summary


@click.command(name="retest")
@org_options
@pass_context
@handle_errors
def retest(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Trigger rescans so findings pick up the new policies.

    CLI-origin projects cannot be rescanned and are skipped.
    """
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)
    org_ids = resolve_org_ids(ctx, org_id, group_id)

    async def run_retest(gateway):
        phase = RetestPhase(gateway, ctx.ledger)
        return [await phase.run(current_org) for current_org in org_ids]

    results = run_async(lambda: with_gateway(ctx, run_retest))
    render_phase_summary(console, results)

    skipped = sum(result.skipped for result in results)
    if skipped:
        echo_info(f"{skipped:,} CLI projects skipped; rescan them with the Snyk CLI")
