"""
Planning commands: plan and print-plan.
"""

import click

from cci_migration.cli.context import MigrationContext
from cci_migration.cli.decorators import handle_errors, org_options, pass_context
from cci_migration.cli.utils import (
    console,
    echo_info,
    prepare_context,
    resolve_org_ids,
)
from cci_migration.migration.planner import PlanPhase, preview_plan
from cci_migration.reporting.report import render_phase_summary, render_plan
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="plan")
@org_options
@pass_context
@handle_errors
def plan(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Group ignores by asset key and plan one policy per group.

    Re-planning replaces the organization's previous plan.
    """
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)

    phase = PlanPhase(ctx.ledger, ctx.config.plan)
    results = [phase.run(current_org) for current_org in resolve_org_ids(ctx, org_id, group_id)]
    render_phase_summary(console, results)

    for result in results:
        if result.details.get("ignores_without_asset_key"):
            echo_info(
                f"{result.org_id}: {result.details['ignores_without_asset_key']:,} ignores "
                "without an asset key were not planned"
            )


@click.command(name="print-plan")
@org_options
@pass_context
@handle_errors
def print_plan(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Show the planned policies."""
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)

    for current_org in resolve_org_ids(ctx, org_id, group_id):
        render_plan(console, preview_plan(ctx.ledger, current_org))
