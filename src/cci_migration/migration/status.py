"""Status: read-only aggregation of migration progress for an org."""

from dataclasses import dataclass

from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import CollectionMetadata

NOT_STARTED = "NOT STARTED"
COLLECTION_COMPLETE = "COLLECTION COMPLETE"
PLANNING_COMPLETE = "PLANNING COMPLETE"
EXECUTION_IN_PROGRESS = "EXECUTION IN PROGRESS"
RETEST_IN_PROGRESS = "RETEST IN PROGRESS"
CLEANUP_IN_PROGRESS = "CLEANUP IN PROGRESS"
MIGRATION_COMPLETE = "MIGRATION COMPLETE"

_STATUS_COUNTS_SQL = """
SELECT
    (SELECT COUNT(*) FROM ignores WHERE org_id = :org_id) AS total_ignores,
    (SELECT COUNT(*) FROM ignores
        WHERE org_id = :org_id AND selected_for_migration = :true) AS selected_ignores,
    (SELECT COUNT(*) FROM ignores
        WHERE org_id = :org_id AND migrated_at IS NOT NULL) AS migrated_ignores,
    (SELECT COUNT(*) FROM ignores
        WHERE org_id = :org_id AND deleted_at IS NOT NULL) AS deleted_ignores,
    (SELECT COUNT(*) FROM policies WHERE org_id = :org_id) AS total_policies,
    (SELECT COUNT(*) FROM policies
        WHERE org_id = :org_id
          AND external_id IS NOT NULL AND external_id != '') AS created_policies,
    (SELECT COUNT(*) FROM projects
        WHERE org_id = :org_id AND is_cli_project = :true) AS cli_projects,
    (SELECT COUNT(*) FROM projects
        WHERE org_id = :org_id AND is_cli_project = :false) AS regular_projects,
    (SELECT COUNT(*) FROM projects
        WHERE org_id = :org_id AND retested_at IS NOT NULL) AS retested_projects,
    (SELECT COUNT(*) FROM projects p
        WHERE p.org_id = :org_id AND p.is_cli_project = :false
          AND EXISTS (
            SELECT 1 FROM ignores i
            WHERE i.project_id = p.id AND i.org_id = p.org_id AND i.migrated_at IS NOT NULL
          )) AS projects_needing_retest
"""


def percentage(part: int, total: int) -> float:
    """Share of part in total as a percentage; 0 when total is 0."""
    if total == 0:
        return 0.0
    return part / total * 100


@dataclass
class StatusReport:
    """Counts per phase for one organization."""

    org_id: str
    total_ignores: int = 0
    selected_ignores: int = 0
    migrated_ignores: int = 0
    deleted_ignores: int = 0
    total_policies: int = 0
    created_policies: int = 0
    cli_projects: int = 0
    regular_projects: int = 0
    retested_projects: int = 0
    projects_needing_retest: int = 0
    metadata: CollectionMetadata | None = None

    @property
    def planning_percentage(self) -> float:
        return percentage(self.selected_ignores, self.total_ignores)

    @property
    def execution_percentage(self) -> float:
        return percentage(self.created_policies, self.total_policies)

    @property
    def retest_percentage(self) -> float:
        return percentage(self.retested_projects, self.projects_needing_retest)

    @property
    def cleanup_percentage(self) -> float:
        return percentage(self.deleted_ignores, self.migrated_ignores)

    @property
    def overall(self) -> str:
        return overall_status(self)


def overall_status(report: StatusReport) -> str:
    """Derive the overall label purely from counts."""
    if report.total_ignores == 0:
        return NOT_STARTED
    if report.selected_ignores == 0:
        return COLLECTION_COMPLETE
    if report.created_policies == 0:
        return PLANNING_COMPLETE
    if report.migrated_ignores < report.selected_ignores:
        return EXECUTION_IN_PROGRESS
    if report.retested_projects < report.projects_needing_retest:
        return RETEST_IN_PROGRESS
    if report.deleted_ignores < report.selected_ignores:
        return CLEANUP_IN_PROGRESS
    return MIGRATION_COMPLETE


def collect_status(ledger: Ledger, org_id: str) -> StatusReport:
    rows = ledger.query(_STATUS_COUNTS_SQL, {"org_id": org_id, "true": True, "false": False})
    counts = {key: int(value or 0) for key, value in rows[0].items()} if rows else {}
    return StatusReport(org_id=org_id, metadata=ledger.get_collection_metadata(), **counts)
