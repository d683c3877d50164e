"""Plan phase: collapse ignores sharing an asset key into policy plans.

Planning an org always starts from a clean slate: its existing policy rows
are deleted and its ignores unlinked in a committed cleanup transaction.
Each asset-key group then gets one policy row in its own transaction.
"""

import secrets
from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import groupby

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cci_migration.client.exceptions import CCIMigrationError, MigrationError, StateError
from cci_migration.config import PlanConfig
from cci_migration.migration.database import is_lock_error
from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import Ignore, Policy
from cci_migration.migration.resolver import resolve_conflict
from cci_migration.migration.results import PhaseResult
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)

INTERNAL_ID_PREFIX = "policy-"


def new_internal_policy_id() -> str:
    """Random local policy id: ``policy-`` followed by 16 random bytes in hex."""
    return INTERNAL_ID_PREFIX + secrets.token_hex(16)


def build_policy_reason(
    selected: Ignore,
    group: Sequence[Ignore],
    default_reason: str = "Migrated from SAST ignore",
) -> str:
    """Compose the policy reason, listing every source ignore.

    The selected ignore's own reason (or the default) comes first, followed
    by one provenance line per ignore in the group.
    """
    lines = [
        selected.reason or default_reason,
        "",
        "Migrated from the following ignores:",
    ]
    for ignore in group:
        marker = " (SELECTED)" if ignore.id == selected.id else ""
        lines.append(
            f"Ignore {ignore.id}: type={ignore.ignore_type}, "
            f"created={ignore.created_at.strftime('%Y-%m-%d')}{marker}, "
            f"reason={ignore.reason}"
        )
    return "\n".join(lines)


class PlanPhase:
    """Builds one policy plan per (org, asset key)."""

    def __init__(self, ledger: Ledger, config: PlanConfig | None = None):
        self.ledger = ledger
        self.config = config or PlanConfig()

    def run(self, org_id: str) -> PhaseResult:
        """Re-plan an organization.

        Returns:
            Summary where attempted counts asset-key groups

        Raises:
            MigrationError: If the cleanup transaction fails
        """
        result = PhaseResult(phase="plan", org_id=org_id)
        logger.info("plan_started", org_id=org_id, strategy=self.config.strategy)

        removed = self._reset_org(org_id)

        ignores = self.ledger.get_ignores_by_org(org_id, with_asset_key=True)
        unkeyed = self.ledger.count_rows(Ignore, org_id, Ignore.asset_key == "")
        if unkeyed:
            logger.warning("plan_ignores_without_asset_key", org_id=org_id, count=unkeyed)

        ordered = sorted(ignores, key=lambda ignore: ignore.asset_key)
        conflicts = 0
        for asset_key, members in groupby(ordered, key=lambda ignore: ignore.asset_key):
            group = list(members)
            if len(group) > 1:
                conflicts += 1
            try:
                self._plan_group(org_id, asset_key, group)
                result.record_success()
            except CCIMigrationError as e:
                logger.error(
                    "plan_group_failed",
                    org_id=org_id,
                    asset_key=asset_key,
                    ignores=len(group),
                    error=str(e),
                )
                result.record_failure(asset_key, e)

        result.details.update(
            {
                "policies_removed": removed,
                "ignores_considered": len(ignores),
                "ignores_without_asset_key": unkeyed,
                "conflicting_groups": conflicts,
            }
        )
        logger.info(
            "plan_completed",
            org_id=org_id,
            policies=result.succeeded,
            failed_groups=result.failed,
            conflicting_groups=conflicts,
        )
        return result

    def _reset_org(self, org_id: str) -> int:
        """Delete the org's policies and unlink its ignores, committed on its own."""

        def cleanup(session: Session) -> int:
            try:
                deleted = session.execute(delete(Policy).where(Policy.org_id == org_id)).rowcount
            except SQLAlchemyError as e:
                if is_lock_error(e):
                    raise
                raise MigrationError(f"failed to delete existing policies: {e}") from e

            try:
                session.execute(
                    update(Ignore)
                    .where(Ignore.org_id == org_id)
                    .values(selected_for_migration=False, internal_policy_id=None)
                )
            except SQLAlchemyError as e:
                if is_lock_error(e):
                    raise
                raise MigrationError(f"failed to reset ignore flags: {e}") from e

            return deleted

        try:
            deleted = self.ledger.run_in_transaction(cleanup, f"reset plan for org {org_id}")
        except MigrationError:
            logger.error("plan_cleanup_failed", org_id=org_id)
            raise
        except StateError as e:
            logger.error("plan_cleanup_failed", org_id=org_id, error=str(e))
            raise MigrationError(f"failed to commit cleanup transaction: {e}") from e

        logger.debug("plan_reset", org_id=org_id, policies_removed=deleted)
        return deleted

    def _plan_group(self, org_id: str, asset_key: str, group: list[Ignore]) -> Policy:
        selected = resolve_conflict(group)
        internal_id = new_internal_policy_id()
        others = [ignore.id for ignore in group if ignore.id != selected.id]

        def link(session: Session) -> Policy:
            session.execute(
                update(Ignore)
                .where(Ignore.id == selected.id)
                .values(selected_for_migration=True, internal_policy_id=internal_id)
            )
            if others:
                session.execute(
                    update(Ignore)
                    .where(Ignore.id.in_(others))
                    .values(internal_policy_id=internal_id)
                )
            policy = Policy(
                internal_id=internal_id,
                org_id=org_id,
                asset_key=asset_key,
                policy_type=selected.ignore_type,
                reason=build_policy_reason(selected, group, self.config.default_reason),
                expires_at=selected.expires_at,
                source_ignores=",".join(ignore.id for ignore in group),
                external_id=None,
                created_at=None,
            )
            self.ledger.insert_or_update_policy(policy, session=session)
            return policy

        policy = self.ledger.run_in_transaction(link, f"plan asset key {asset_key}")
        logger.debug(
            "plan_group_planned",
            asset_key=asset_key,
            internal_id=internal_id,
            selected=selected.id,
            source_ignores=len(group),
        )
        return policy


@dataclass
class PlanPreview:
    org_id: str
    policies: list[Policy] = field(default_factory=list)
    selected_ignores: int = 0


def preview_plan(ledger: Ledger, org_id: str) -> PlanPreview:
    """Planned policies of an org with the number of selected ignores."""
    return PlanPreview(
        org_id=org_id,
        policies=ledger.get_policies_by_org(org_id),
        selected_ignores=ledger.count_rows(Ignore, org_id, Ignore.selected_for_migration.is_(True)),
    )
