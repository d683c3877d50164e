"""Cleanup phase: delete migrated legacy ignores remotely.

The ledger rows stay; deletion is only tracked through ``deleted_at``.
"""

from sqlalchemy import update

from cci_migration.client.exceptions import CCIMigrationError
from cci_migration.client.gateway import RemoteGateway
from cci_migration.migration.database import utcnow
from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import Ignore
from cci_migration.migration.results import PhaseResult
from cci_migration.utils.logging import get_logger, log_phase_progress

logger = get_logger(__name__)

PROGRESS_LOG_INTERVAL = 50


class CleanupPhase:
    """Deletes legacy ignores whose policy has been created."""

    def __init__(self, gateway: RemoteGateway, ledger: Ledger):
        self.gateway = gateway
        self.ledger = ledger

    async def run(self, org_id: str) -> PhaseResult:
        result = PhaseResult(phase="cleanup", org_id=org_id)
        ignores = self.ledger.get_ignores_pending_deletion(org_id)
        logger.info("cleanup_started", org_id=org_id, ignores=len(ignores))

        for index, ignore in enumerate(ignores, start=1):
            try:
                await self.gateway.delete_ignore(org_id, ignore.project_id, ignore.id)
                self.ledger.run_in_transaction(
                    lambda session, ignore_id=ignore.id: session.execute(
                        update(Ignore).where(Ignore.id == ignore_id).values(deleted_at=utcnow())
                    ),
                    f"stamp deletion of ignore {ignore.id}",
                )
                result.record_success()
            except CCIMigrationError as e:
                logger.error(
                    "cleanup_ignore_failed",
                    org_id=org_id,
                    ignore_id=ignore.id,
                    project_id=ignore.project_id,
                    error=str(e),
                )
                result.record_failure(ignore.id, e)

            if index % PROGRESS_LOG_INTERVAL == 0 or index == len(ignores):
                log_phase_progress(logger, "cleanup", index, len(ignores), org_id=org_id)

        logger.info(
            "cleanup_completed", org_id=org_id, deleted=result.succeeded, failed=result.failed
        )
        return result
