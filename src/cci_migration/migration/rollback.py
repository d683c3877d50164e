"""Rollback: reset an org's migration bookkeeping.

The local reset clears execute, retest and cleanup progress so the pipeline
can run again from planning. Remote side effects are only undone by the
optional best-effort reconciliation, which runs before the reset while the
ledger still knows which policies and deletions to reverse.
"""

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from cci_migration.client.exceptions import CCIMigrationError
from cci_migration.client.gateway import RemoteGateway
from cci_migration.client.models import RemoteIgnore
from cci_migration.migration.executor import UNRESOLVED_EXTERNAL_ID
from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import Ignore, Policy, Project
from cci_migration.migration.results import PhaseResult
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)


def reset_org(ledger: Ledger, org_id: str) -> dict[str, int]:
    """Clear migration progress for every ignore, policy and project of an org.

    Returns:
        Rows touched per table
    """

    def reset(session: Session) -> dict[str, int]:
        ignores = session.execute(
            update(Ignore)
            .where(Ignore.org_id == org_id)
            .values(migrated_at=None, deleted_at=None, policy_id=None, internal_policy_id=None)
        ).rowcount
        policies = session.execute(
            update(Policy).where(Policy.org_id == org_id).values(external_id=None)
        ).rowcount
        projects = session.execute(
            update(Project).where(Project.org_id == org_id).values(retested_at=None)
        ).rowcount
        return {"ignores": ignores, "policies": policies, "projects": projects}

    counts = ledger.run_in_transaction(reset, f"rollback org {org_id}")
    logger.info("rollback_local_reset", org_id=org_id, **counts)
    return counts


class RollbackPhase:
    """Local rollback with optional remote reconciliation."""

    def __init__(self, ledger: Ledger, gateway: RemoteGateway | None = None):
        self.ledger = ledger
        self.gateway = gateway

    async def run(self, org_id: str, remote: bool = False) -> PhaseResult:
        """Roll back an org.

        Args:
            org_id: Organization to roll back
            remote: Also delete created policies and recreate deleted ignores

        Returns:
            Summary where attempted counts remote reconciliation calls
        """
        result = PhaseResult(phase="rollback", org_id=org_id)

        if remote:
            if self.gateway is None:
                raise ValueError("Remote rollback requires a gateway")
            await self._reconcile_remote(org_id, result)

        result.details.update(reset_org(self.ledger, org_id))
        return result

    async def _reconcile_remote(self, org_id: str, result: PhaseResult) -> None:
        policies = [
            policy for policy in self.ledger.get_policies_by_org(org_id) if policy.external_id
        ]
        for policy in policies:
            # Unresolved ids carry no remote handle to delete
            if policy.external_id == UNRESOLVED_EXTERNAL_ID:
                result.record_skip()
                continue
            try:
                await self.gateway.delete_policy(org_id, policy.external_id)
                result.record_success()
                logger.info("rollback_policy_deleted", org_id=org_id, policy_id=policy.external_id)
            except CCIMigrationError as e:
                logger.warning(
                    "rollback_policy_delete_failed",
                    org_id=org_id,
                    policy_id=policy.external_id,
                    error=str(e),
                )
                result.record_failure(policy.external_id, e)

        deleted = [
            ignore
            for ignore in self.ledger.get_ignores_by_org(org_id)
            if ignore.deleted_at is not None
        ]
        for ignore in deleted:
            try:
                original = RemoteIgnore.model_validate_json(ignore.original_state)
            except PydanticValidationError as e:
                logger.warning("rollback_original_state_invalid", ignore_id=ignore.id, error=str(e))
                result.record_failure(ignore.id, e)
                continue

            try:
                await self.gateway.create_ignore(org_id, ignore.project_id, original)
                result.record_success()
                logger.info("rollback_ignore_recreated", org_id=org_id, ignore_id=ignore.id)
            except CCIMigrationError as e:
                logger.warning(
                    "rollback_ignore_recreate_failed",
                    org_id=org_id,
                    ignore_id=ignore.id,
                    error=str(e),
                )
                result.record_failure(ignore.id, e)
