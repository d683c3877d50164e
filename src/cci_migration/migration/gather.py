"""Gather phase: populate the ledger from the remote service.

Collection runs in three passes per organization:

1. Projects, with their repository target descriptors
2. Legacy ignores of every project
3. Org-wide Snyk Code findings, used to back-fill ignore asset keys

Re-running converges on the latest remote content without touching the
progress columns advanced by later phases.
"""

from dataclasses import dataclass, field
from typing import Any

from cci_migration.client.exceptions import CCIMigrationError
from cci_migration.client.gateway import RemoteGateway
from cci_migration.client.models import RemoteFinding, RemoteIgnore, RemoteProject
from cci_migration.config import GatherConfig
from cci_migration.migration.database import utcnow
from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import (
    CollectionMetadata,
    Ignore,
    Issue,
    Organization,
    Project,
)
from cci_migration.migration.results import PhaseResult
from cci_migration.utils.logging import get_logger, log_phase_progress

logger = get_logger(__name__)

PROGRESS_LOG_INTERVAL = 10
PREVIEW_LIMIT = 10


def ignore_row(org_id: str, project_id: str, ignore: RemoteIgnore) -> Ignore:
    """Convert a remote ignore into a ledger row (asset key filled later)."""
    return Ignore(
        id=ignore.id,
        issue_id=ignore.id,
        org_id=org_id,
        project_id=project_id,
        reason=ignore.reason,
        ignore_type=ignore.reason_type,
        created_at=ignore.created,
        expires_at=ignore.expires,
        asset_key="",
        original_state=ignore.model_dump_json(by_alias=True),
    )


def issue_row(org_id: str, finding: RemoteFinding) -> Issue:
    return Issue(
        id=finding.id,
        org_id=org_id,
        project_id=finding.project_id,
        asset_key=finding.key_asset,
        project_key=finding.key,
        original_state=finding.model_dump_json(),
    )


class GatherPhase:
    """Collects projects, ignores and findings for organizations.

    Failing to list projects or findings is fatal for the org. A failure
    on a single project (target lookup or ignore listing) is logged and
    counted, and collection continues.
    """

    def __init__(self, gateway: RemoteGateway, ledger: Ledger, config: GatherConfig | None = None):
        self.gateway = gateway
        self.ledger = ledger
        self.config = config or GatherConfig()

    async def run(self, org_id: str) -> PhaseResult:
        """Gather one organization.

        Args:
            org_id: Organization to collect

        Returns:
            Summary where attempted counts projects

        Raises:
            CCIMigrationError: If projects or findings cannot be listed
        """
        result = PhaseResult(phase="gather", org_id=org_id)
        logger.info(
            "gather_started", org_id=org_id, collection_version=self.config.collection_version
        )

        try:
            projects = await self.gateway.list_projects(org_id)
        except CCIMigrationError as e:
            logger.error("gather_list_projects_failed", org_id=org_id, error=str(e))
            raise

        ignore_count = 0
        for index, project in enumerate(projects, start=1):
            await self._gather_project_target(org_id, project)
            collected = await self._gather_project_ignores(org_id, project, result)
            ignore_count += collected or 0

            if index % PROGRESS_LOG_INTERVAL == 0 or index == len(projects):
                log_phase_progress(logger, "gather", index, len(projects), org_id=org_id)

        try:
            findings = await self.gateway.list_findings(org_id)
        except CCIMigrationError as e:
            logger.error("gather_list_findings_failed", org_id=org_id, error=str(e))
            raise

        self.ledger.run_in_transaction(
            lambda session: [
                self.ledger.upsert_issue(issue_row(org_id, finding), session=session)
                for finding in findings
            ],
            "store findings",
        )

        backfilled = self.ledger.run_in_transaction(
            lambda session: self.ledger.backfill_asset_keys(org_id, session=session),
            "backfill asset keys",
        )

        self.ledger.set_collection_metadata(
            utcnow(),
            self.config.collection_version,
            self.config.api_version,
        )

        result.details.update(
            {
                "projects": len(projects),
                "ignores": ignore_count,
                "issues": len(findings),
                "asset_keys_backfilled": backfilled,
            }
        )
        logger.info(
            "gather_completed",
            org_id=org_id,
            projects=len(projects),
            ignores=ignore_count,
            issues=len(findings),
            asset_keys_backfilled=backfilled,
            failed_projects=result.failed,
        )
        return result

    async def _gather_project_target(self, org_id: str, project: RemoteProject) -> None:
        """Store the project, resolving its target descriptor when possible."""
        target_information = ""
        if project.target_id:
            try:
                target = await self.gateway.resolve_project_target(org_id, project.target_id)
                if not target.branch:
                    target.branch = project.target_reference
                target_information = target.model_dump_json()
            except CCIMigrationError as e:
                logger.warning(
                    "gather_target_resolution_failed",
                    org_id=org_id,
                    project_id=project.id,
                    target_id=project.target_id,
                    error=str(e),
                )

        self.ledger.run_in_transaction(
            lambda session: self.ledger.upsert_project(
                Project(
                    id=project.id,
                    org_id=org_id,
                    name=project.name,
                    target_information=target_information,
                    is_cli_project=project.is_cli,
                ),
                session=session,
            ),
            f"store project {project.id}",
        )

    async def _gather_project_ignores(
        self, org_id: str, project: RemoteProject, result: PhaseResult
    ) -> int | None:
        try:
            ignores = await self.gateway.list_ignores(org_id, project.id)
        except CCIMigrationError as e:
            logger.warning(
                "gather_list_ignores_failed",
                org_id=org_id,
                project_id=project.id,
                error=str(e),
            )
            result.record_failure(project.id, e)
            return None

        self.ledger.run_in_transaction(
            lambda session: [
                self.ledger.upsert_ignore(ignore_row(org_id, project.id, ignore), session=session)
                for ignore in ignores
            ],
            f"store ignores for project {project.id}",
        )
        result.record_success()
        logger.debug("gather_project_ignores", project_id=project.id, ignores=len(ignores))
        return len(ignores)

    async def run_group(self, group_id: str) -> list[PhaseResult]:
        """Record a group's organizations and gather each of them.

        An org that fails fatally gets a result carrying ``fatal_error``;
        the remaining orgs are still gathered.

        Raises:
            CCIMigrationError: If the group's organizations cannot be listed
        """
        try:
            organizations = await self.gateway.list_orgs_in_group(group_id)
        except CCIMigrationError as e:
            logger.error("gather_list_orgs_failed", group_id=group_id, error=str(e))
            raise

        self.ledger.run_in_transaction(
            lambda session: [
                self.ledger.upsert_organization(
                    Organization(
                        id=org.id,
                        name=org.name,
                        slug=org.slug,
                        group_id=org.group_id or group_id,
                        is_personal=org.is_personal,
                        created_at=org.created_at,
                        updated_at=org.updated_at,
                        access_requests_enabled=org.access_requests_enabled,
                    ),
                    session=session,
                )
                for org in organizations
            ],
            f"store organizations for group {group_id}",
        )
        logger.info("gather_group_started", group_id=group_id, organizations=len(organizations))

        results = []
        for org in organizations:
            try:
                results.append(await self.run(org.id))
            except CCIMigrationError as e:
                failed = PhaseResult(phase="gather", org_id=org.id)
                failed.details["fatal_error"] = str(e)
                results.append(failed)

        return results


def failed_organizations(results: list[PhaseResult]) -> list[str]:
    """Org ids whose phase run failed fatally."""
    return [result.org_id for result in results if "fatal_error" in result.details]


@dataclass
class VerifyReport:
    """Completeness of a collection for one organization."""

    org_id: str
    ignores: int = 0
    ignores_without_asset_key: int = 0
    projects: int = 0
    projects_without_target: int = 0
    metadata: CollectionMetadata | None = None

    @property
    def complete(self) -> bool:
        return (
            self.metadata is not None
            and self.ignores_without_asset_key == 0
            and self.projects_without_target == 0
        )

    @property
    def label(self) -> str:
        return "COMPLETE" if self.complete else "INCOMPLETE"


def verify_collection(ledger: Ledger, org_id: str) -> VerifyReport:
    """Check that every ignore has an asset key and every scannable project a target."""
    return VerifyReport(
        org_id=org_id,
        ignores=ledger.count_rows(Ignore, org_id),
        ignores_without_asset_key=ledger.count_rows(Ignore, org_id, Ignore.asset_key == ""),
        projects=ledger.count_rows(Project, org_id),
        projects_without_target=ledger.count_rows(
            Project,
            org_id,
            Project.is_cli_project.is_(False),
            Project.target_information == "",
        ),
        metadata=ledger.get_collection_metadata(),
    )


@dataclass
class CollectionPreview:
    org_id: str
    ignores: list[Ignore] = field(default_factory=list)
    issues: list[Issue] = field(default_factory=list)
    projects: list[Project] = field(default_factory=list)
    totals: dict[str, Any] = field(default_factory=dict)


def preview_collection(
    ledger: Ledger, org_id: str, limit: int = PREVIEW_LIMIT
) -> CollectionPreview:
    """First few collected rows of each kind, for eyeballing a gather."""
    ignores = ledger.get_ignores_by_org(org_id)
    issues = ledger.get_issues_by_org(org_id)
    projects = ledger.get_projects_by_org(org_id)
    return CollectionPreview(
        org_id=org_id,
        ignores=ignores[:limit],
        issues=issues[:limit],
        projects=projects[:limit],
        totals={"ignores": len(ignores), "issues": len(issues), "projects": len(projects)},
    )
