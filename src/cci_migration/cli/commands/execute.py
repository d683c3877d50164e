"""
Execute command: create the planned policies.
"""

import click

from cci_migration.cli.context import MigrationContext
from cci_migration.cli.decorators import handle_errors, org_options, pass_context
from cci_migration.cli.utils import (
    console,
    prepare_context,
    resolve_org_ids,
    run_async,
    with_gateway,
)
from cci_migration.client.exceptions import PhaseTimeoutError
from cci_migration.migration.executor import ExecutePhase
from cci_migration.migration.results import PhaseResult
from cci_migration.reporting.report import render_phase_summary
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="execute")
@org_options
@pass_context
@handle_errors
def execute(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Create a policy for every planned asset key.

    Interrupted or timed-out runs resume at the first policy not yet created.
    """
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)
    org_ids = resolve_org_ids(ctx, org_id, group_id)
    timeout = ctx.config.performance.execute_timeout

    results: list[PhaseResult] = []

    async def run_execute(gateway):
        phase = ExecutePhase(gateway, ctx.ledger, timeout=timeout)
        for current_org in org_ids:
            results.append(await phase.run(current_org))

    try:
        run_async(lambda: with_gateway(ctx, run_execute))
    except PhaseTimeoutError as e:
        if e.result is not None:
            results.append(e.result)
        render_phase_summary(console, results)
        raise
    render_phase_summary(console, results)
