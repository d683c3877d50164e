"""
Collection commands: gather, verify and print.
"""

import click

from cci_migration.cli.context import MigrationContext
from cci_migration.cli.decorators import handle_errors, org_options, pass_context
from cci_migration.cli.utils import (
    console,
    echo_info,
    echo_success,
    echo_warning,
    prepare_context,
    resolve_org_ids,
    run_async,
    with_gateway,
)
from cci_migration.client.exceptions import MigrationError
from cci_migration.migration.gather import (
    GatherPhase,
    failed_organizations,
    preview_collection,
    verify_collection,
)
from cci_migration.reporting.report import (
    render_collection_preview,
    render_phase_summary,
    render_verify,
)
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="gather")
@org_options
@pass_context
@handle_errors
def gather(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Collect projects, ignores and findings into the ledger.

    Safe to re-run: rows are refreshed without losing migration progress.

    Examples:

        cci-bridge gather --org-id <org>

        cci-bridge gather --group-id <group>
    """
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)
    phase_config = ctx.config.gather

    async def run_gather(gateway):
        phase = GatherPhase(gateway, ctx.ledger, phase_config)
        if group_id:
            return await phase.run_group(group_id)
        return [await phase.run(org_id)]

    echo_info(f"Gathering {'group ' + group_id if group_id else 'organization ' + org_id}")
    results = run_async(lambda: with_gateway(ctx, run_gather))
    render_phase_summary(console, results)

    failed = failed_organizations(results)
    if failed:
        raise MigrationError(
            f"Gather failed for {len(failed)} of {len(results)} organizations: {', '.join(failed)}"
        )

    for result in results:
        details = result.details
        echo_success(
            f"{result.org_id}: {details.get('projects', 0):,} projects, "
            f"{details.get('ignores', 0):,} ignores, {details.get('issues', 0):,} issues, "
            f"{details.get('asset_keys_backfilled', 0):,} asset keys back-filled"
        )


@click.command(name="verify")
@org_options
@pass_context
@handle_errors
def verify(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Check that the collection is complete enough to plan."""
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)

    for current_org in resolve_org_ids(ctx, org_id, group_id):
        report = verify_collection(ctx.ledger, current_org)
        render_verify(console, report)
        if not report.complete:
            echo_warning(
                f"{current_org}: collection incomplete. Ignores without an asset key "
                "will not be migrated."
            )


@click.command(name="print")
@org_options
@pass_context
@handle_errors
def print_collection(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None,
    backup_dir: str | None,
) -> None:
    """Show the first collected ignores, issues and projects."""
    prepare_context(ctx, org_id, group_id, api_token, db_path, backup_dir)

    for current_org in resolve_org_ids(ctx, org_id, group_id):
        render_collection_preview(console, preview_collection(ctx.ledger, current_org))
