"""Retest phase: rescan projects whose ignores were migrated.

CLI-origin projects cannot be rescanned through the API and are skipped.
"""

from sqlalchemy import update

from cci_migration.client.exceptions import CCIMigrationError, ValidationError
from cci_migration.client.gateway import RemoteGateway
from cci_migration.client.models import RemoteTarget
from cci_migration.migration.database import utcnow
from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import Project
from cci_migration.migration.results import PhaseResult
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)


class RetestPhase:
    """Triggers rescans and stamps ``retested_at``."""

    def __init__(self, gateway: RemoteGateway, ledger: Ledger):
        self.gateway = gateway
        self.ledger = ledger

    async def run(self, org_id: str) -> PhaseResult:
        result = PhaseResult(phase="retest", org_id=org_id)

        projects = self.ledger.get_projects_needing_retest(org_id)
        cli_skipped = self.ledger.count_cli_projects_with_migrations(org_id)
        result.skipped = cli_skipped
        logger.info(
            "retest_started",
            org_id=org_id,
            projects=len(projects),
            cli_projects_skipped=cli_skipped,
        )

        for project in projects:
            try:
                target = await self._target_for(org_id, project)
                await self.gateway.trigger_rescan(org_id, target)
                self.ledger.run_in_transaction(
                    lambda session, project_id=project.id: session.execute(
                        update(Project).where(Project.id == project_id).values(retested_at=utcnow())
                    ),
                    f"stamp retest of project {project.id}",
                )
                result.record_success()
                logger.info("project_retested", org_id=org_id, project_id=project.id)
            except CCIMigrationError as e:
                logger.error(
                    "retest_project_failed",
                    org_id=org_id,
                    project_id=project.id,
                    error=str(e),
                )
                result.record_failure(project.id, e)

        logger.info(
            "retest_completed", org_id=org_id, retested=result.succeeded, failed=result.failed
        )
        return result

    async def _target_for(self, org_id: str, project: Project) -> RemoteTarget:
        """Stored target descriptor, re-fetched and persisted if missing."""
        if project.target_information:
            return RemoteTarget.model_validate_json(project.target_information)

        remote = next(
            (item for item in await self.gateway.list_projects(org_id) if item.id == project.id),
            None,
        )
        if remote is None or not remote.target_id:
            raise ValidationError(f"No target found for project {project.id}")

        target = await self.gateway.resolve_project_target(org_id, remote.target_id)
        target.branch = remote.target_reference
        descriptor = target.model_dump_json()
        self.ledger.run_in_transaction(
            lambda session: session.execute(
                update(Project)
                .where(Project.id == project.id)
                .values(target_information=descriptor)
            ),
            f"store target of project {project.id}",
        )
        logger.debug("retest_target_resolved", project_id=project.id, target_id=remote.target_id)
        return target
