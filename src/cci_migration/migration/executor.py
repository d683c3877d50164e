"""Execute phase: create planned policies remotely and record the outcome.

Each policy is created and then stamped, together with its linked ignores,
in one retrying transaction. Progress committed before a failure or timeout
is kept, so re-running resumes at the first unexecuted policy.
"""

from sqlalchemy import update
from sqlalchemy.orm import Session

from cci_migration.client.exceptions import CCIMigrationError, PhaseTimeoutError
from cci_migration.client.gateway import RemoteGateway
from cci_migration.client.models import PolicyAttributes
from cci_migration.migration.database import utcnow
from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import Ignore, Policy
from cci_migration.migration.results import PhaseResult
from cci_migration.utils.deadline import Deadline
from cci_migration.utils.logging import get_logger, log_phase_progress

logger = get_logger(__name__)

# Recorded when the remote reports the policy exists but its id is unknown
UNRESOLVED_EXTERNAL_ID = "existing-unresolved"

PROGRESS_LOG_INTERVAL = 25


class ExecutePhase:
    """Creates remote policies for unexecuted policy plans."""

    def __init__(self, gateway: RemoteGateway, ledger: Ledger, timeout: float | None = 600):
        self.gateway = gateway
        self.ledger = ledger
        self.timeout = timeout

    async def run(self, org_id: str) -> PhaseResult:
        """Execute every policy plan of an org without an external id.

        Returns:
            Summary where attempted counts policies

        Raises:
            PhaseTimeoutError: If the wall-clock limit passes between policies;
                its ``result`` holds the partial summary
        """
        result = PhaseResult(phase="execute", org_id=org_id)
        deadline = Deadline(self.timeout, phase="execute")

        policies = self.ledger.get_policies_by_org(org_id, unexecuted_only=True)
        logger.info("execute_started", org_id=org_id, policies=len(policies), timeout=self.timeout)

        for index, policy in enumerate(policies, start=1):
            try:
                deadline.check(completed=result.succeeded)
            except PhaseTimeoutError as e:
                result.details["fatal_error"] = str(e)
                e.result = result
                logger.error(
                    "execute_timeout",
                    org_id=org_id,
                    completed=result.succeeded,
                    remaining=len(policies) - index + 1,
                    timeout=self.timeout,
                )
                raise

            try:
                await self._execute_policy(org_id, policy, result)
                result.record_success()
            except CCIMigrationError as e:
                logger.error(
                    "execute_policy_failed",
                    org_id=org_id,
                    internal_id=policy.internal_id,
                    asset_key=policy.asset_key,
                    error=str(e),
                )
                result.record_failure(policy.internal_id, e)

            if index % PROGRESS_LOG_INTERVAL == 0 or index == len(policies):
                log_phase_progress(logger, "execute", index, len(policies), org_id=org_id)

        logger.info(
            "execute_completed",
            org_id=org_id,
            created=result.succeeded,
            failed=result.failed,
            already_existed=result.details.get("already_existed", 0),
        )
        return result

    async def _execute_policy(self, org_id: str, policy: Policy, result: PhaseResult) -> None:
        attributes = PolicyAttributes.for_asset(
            policy.asset_key,
            policy.policy_type,
            policy.reason,
            policy.expires_at,
        )
        created = await self.gateway.create_policy(
            org_id,
            attributes,
            meta={"internal_id": policy.internal_id, "source_ignores": policy.source_ignore_ids},
        )

        if created.already_existed:
            result.details["already_existed"] = result.details.get("already_existed", 0) + 1
        external_id = created.id or UNRESOLVED_EXTERNAL_ID
        if not created.id:
            logger.warning(
                "execute_policy_id_unresolved",
                org_id=org_id,
                internal_id=policy.internal_id,
                asset_key=policy.asset_key,
            )

        migrated = self.ledger.run_in_transaction(
            lambda session: self._record_created(session, policy.internal_id, external_id),
            f"record policy {policy.internal_id}",
        )
        logger.info(
            "policy_created",
            org_id=org_id,
            internal_id=policy.internal_id,
            external_id=external_id,
            asset_key=policy.asset_key,
            already_existed=created.already_existed,
            ignores_migrated=migrated,
        )

    @staticmethod
    def _record_created(session: Session, internal_id: str, external_id: str) -> int:
        now = utcnow()
        session.execute(
            update(Policy)
            .where(Policy.internal_id == internal_id)
            .values(external_id=external_id, created_at=now)
        )
        return session.execute(
            update(Ignore)
            .where(Ignore.internal_policy_id == internal_id)
            .values(migrated_at=now, policy_id=external_id)
        ).rowcount
