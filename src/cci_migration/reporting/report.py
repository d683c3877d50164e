"""Terminal reports for phase results and ledger views.

Every renderer takes the console to print on so commands and tests can
capture output.
"""

from collections.abc import Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from cci_migration.migration.gather import CollectionPreview, VerifyReport
from cci_migration.migration.models import CollectionMetadata
from cci_migration.migration.planner import PlanPreview
from cci_migration.migration.results import PhaseResult
from cci_migration.migration.status import StatusReport
from cci_migration.reporting.colors import MigrationColors

MAX_ERRORS_SHOWN = 10
REASON_PREVIEW_LENGTH = 60


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def _truncate(text: str, length: int = REASON_PREVIEW_LENGTH) -> str:
    text = text.replace("\n", " ")
    return escape(text if len(text) <= length else text[: length - 3] + "...")


def render_phase_summary(console: Console, results: Sequence[PhaseResult]) -> None:
    """Attempted/succeeded/failed counts per organization."""
    if not results:
        console.print(f"[{MigrationColors.WARNING}]No organizations processed[/]")
        return

    phase = results[0].phase
    table = Table(title=f"{phase.title()} Summary", border_style=MigrationColors.BORDER)
    table.add_column("Organization", style=MigrationColors.LABEL)
    table.add_column("Attempted", justify="right", style=MigrationColors.RESOURCE_COUNT)
    table.add_column("Succeeded", justify="right", style=MigrationColors.SUCCESS)
    table.add_column("Failed", justify="right", style=MigrationColors.ERROR)
    table.add_column("Skipped", justify="right", style=MigrationColors.SKIPPED)
    table.add_column("Success", justify="right", style=MigrationColors.METRIC)

    for result in results:
        _add_result_row(table, result.org_id, result)

    if len(results) > 1:
        total = PhaseResult(phase=phase, org_id="all")
        for result in results:
            total.merge(result)
        table.add_section()
        _add_result_row(table, "Total", total)
    console.print(table)

    for result in results:
        if "fatal_error" in result.details:
            message = escape(result.details["fatal_error"])
            console.print(f"[{MigrationColors.ERROR}]✗ {result.org_id}: {message}[/]")

    errors = [(result.org_id, error) for result in results for error in result.errors]
    for org_id, error in errors[:MAX_ERRORS_SHOWN]:
        message = f"{escape(error['item'])}: {escape(error['error'])}"
        console.print(f"[{MigrationColors.ERROR}]✗ {org_id} {message}[/]")
    if len(errors) > MAX_ERRORS_SHOWN:
        hidden = len(errors) - MAX_ERRORS_SHOWN
        console.print(f"[{MigrationColors.DEBUG}]... and {hidden} more errors (see log file)[/]")


def _add_result_row(table: Table, label: str, result: PhaseResult) -> None:
    failed = "FATAL" if "fatal_error" in result.details else f"{result.failed:,}"
    rate = f"{result.success_rate:.1f}%" if result.attempted else "-"
    table.add_row(
        label,
        f"{result.attempted:,}",
        f"{result.succeeded:,}",
        failed,
        f"{result.skipped:,}",
        rate,
    )


def render_metadata(console: Console, metadata: CollectionMetadata | None) -> None:
    if metadata is None:
        console.print(f"[{MigrationColors.WARNING}]⚠ No collection metadata recorded[/]")
        return
    console.print(
        f"Collection completed "
        f"[{MigrationColors.TIME}]{_fmt_time(metadata.collection_completed_at)}[/] "
        f"(version {metadata.collection_version}, API {metadata.api_version})"
    )


def render_status(console: Console, report: StatusReport) -> None:
    """Per-phase counts, percentages and the overall label."""
    table = Table(title=f"Migration Status: {report.org_id}", border_style=MigrationColors.BORDER)
    table.add_column("Phase", style=MigrationColors.PHASE)
    table.add_column("Progress", justify="right")
    table.add_column("Percent", justify="right", style=MigrationColors.METRIC)

    table.add_row("Collected ignores", f"{report.total_ignores:,}", "")
    table.add_row(
        "Planned (selected)",
        f"{report.selected_ignores:,} / {report.total_ignores:,}",
        f"{report.planning_percentage:.1f}%",
    )
    table.add_row(
        "Policies created",
        f"{report.created_policies:,} / {report.total_policies:,}",
        f"{report.execution_percentage:.1f}%",
    )
    table.add_row("Ignores migrated", f"{report.migrated_ignores:,}", "")
    table.add_row(
        "Projects retested",
        f"{report.retested_projects:,} / {report.projects_needing_retest:,}",
        f"{report.retest_percentage:.1f}%",
    )
    table.add_row(
        "Legacy ignores deleted",
        f"{report.deleted_ignores:,} / {report.migrated_ignores:,}",
        f"{report.cleanup_percentage:.1f}%",
    )
    table.add_row(
        "Projects (regular / CLI)",
        f"{report.regular_projects:,} / {report.cli_projects:,}",
        "",
    )
    console.print(table)

    overall = report.overall
    color = MigrationColors.for_status(overall)
    panel = Panel(f"[{color}]{overall}[/]", title="Overall", border_style=MigrationColors.BORDER)
    console.print(panel)
    render_metadata(console, report.metadata)


def render_verify(console: Console, report: VerifyReport) -> None:
    table = Table(title=f"Collection Check: {report.org_id}", border_style=MigrationColors.BORDER)
    table.add_column("Check", style=MigrationColors.LABEL)
    table.add_column("Value", justify="right")
    table.add_row("Ignores", f"{report.ignores:,}")
    table.add_row("Ignores without asset key", f"{report.ignores_without_asset_key:,}")
    table.add_row("Projects", f"{report.projects:,}")
    table.add_row("Scannable projects without target", f"{report.projects_without_target:,}")
    table.add_row("Collection metadata", "present" if report.metadata else "missing")
    console.print(table)

    color = MigrationColors.SUCCESS if report.complete else MigrationColors.WARNING
    console.print(f"[{color}]{report.label}[/]")


def render_collection_preview(console: Console, preview: CollectionPreview) -> None:
    ignores = Table(title=f"Ignores ({preview.totals.get('ignores', 0):,} total)")
    for column in ("ID", "Project", "Type", "Created", "Asset Key", "Reason"):
        ignores.add_column(column)
    for ignore in preview.ignores:
        ignores.add_row(
            ignore.id,
            ignore.project_id,
            ignore.ignore_type,
            _fmt_time(ignore.created_at),
            ignore.asset_key or "-",
            _truncate(ignore.reason),
        )
    console.print(ignores)

    issues = Table(title=f"Issues ({preview.totals.get('issues', 0):,} total)")
    for column in ("ID", "Project", "Asset Key", "Project Key"):
        issues.add_column(column)
    for issue in preview.issues:
        issues.add_row(issue.id, issue.project_id, issue.asset_key, issue.project_key)
    console.print(issues)

    projects = Table(title=f"Projects ({preview.totals.get('projects', 0):,} total)")
    for column in ("ID", "Name", "CLI", "Target", "Retested"):
        projects.add_column(column)
    for project in preview.projects:
        projects.add_row(
            project.id,
            project.name,
            "yes" if project.is_cli_project else "no",
            "yes" if project.target_information else "no",
            _fmt_time(project.retested_at),
        )
    console.print(projects)


def render_plan(console: Console, preview: PlanPreview) -> None:
    table = Table(title=f"Migration Plan: {preview.org_id}", border_style=MigrationColors.BORDER)
    for column in ("Asset Key", "Type", "Source Ignores", "Expires", "External ID"):
        table.add_column(column)
    for policy in preview.policies:
        table.add_row(
            policy.asset_key,
            policy.policy_type,
            ", ".join(policy.source_ignore_ids),
            _fmt_time(policy.expires_at),
            policy.external_id or "-",
        )
    console.print(table)
    console.print(
        f"[{MigrationColors.INFO}]{len(preview.policies):,} policies planned, "
        f"{preview.selected_ignores:,} ignores selected[/]"
    )
