"""
Migration ledger.

This module provides the Ledger class, the single durable record of what has
been collected, planned, created remotely, retested and cleaned up. Every
phase reads and writes migration state exclusively through it.
"""

import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import and_, exists, func, select, text
from sqlalchemy.orm import Session

from cci_migration.client.exceptions import StateError
from cci_migration.config import StateConfig
from cci_migration.migration.database import (
    create_session_factory,
    init_database,
    session_scope,
    to_ledger_datetime,
)
from cci_migration.migration.models import (
    CollectionMetadata,
    Ignore,
    Issue,
    Organization,
    Policy,
    Project,
)
from cci_migration.utils.logging import get_logger
from cci_migration.utils.retry import retry_on_lock

logger = get_logger(__name__)

T = TypeVar("T")

# Correlates findings to legacy ignores: issues.project_key is the legacy
# issue id within the same org and project.
_BACKFILL_ASSET_KEYS_SQL = """
UPDATE ignores
SET asset_key = (
    SELECT issues.asset_key FROM issues
    WHERE issues.project_key = ignores.issue_id
      AND issues.org_id = ignores.org_id
      AND issues.project_id = ignores.project_id
      AND issues.asset_key != ''
    ORDER BY issues.id
    LIMIT 1
)
WHERE ignores.org_id = :org_id
  AND EXISTS (
    SELECT 1 FROM issues
    WHERE issues.project_key = ignores.issue_id
      AND issues.org_id = ignores.org_id
      AND issues.project_id = ignores.project_id
      AND issues.asset_key != ''
  )
"""


def _refresh(existing: Any, incoming: Any, *fields: str) -> None:
    """Copy content fields onto a stored row, skipping ones left unset.

    Column defaults only apply at INSERT, so an unset attribute on a transient
    row is None and would otherwise write NULL.
    """
    for field in fields:
        value = getattr(incoming, field)
        if value is not None:
            setattr(existing, field, value)


class Ledger:
    """
    Repository over the migration ledger tables.

    Upserts are keyed by natural id and never touch progress columns
    (deleted_at, migrated_at, policy_id, internal_policy_id,
    selected_for_migration, retested_at), so re-collecting after a partial
    migration cannot undo it. The ledger itself never retries; callers
    that need lock retries use run_in_transaction().

    Usage:
        with Ledger(config.state) as ledger:
            ledger.upsert_ignore(ignore)
            ledger.run_in_transaction(lambda session: ..., "stamp policy")
    """

    def __init__(self, config: StateConfig):
        """
        Initialize the ledger, creating tables if needed.

        Args:
            config: State configuration

        Raises:
            ConfigurationError: If the database cannot be initialized
        """
        self.config = config
        self.database_url = config.database_url
        self._lock = threading.RLock()
        self.engine = init_database(self.database_url, busy_timeout=config.busy_timeout)
        self._session_factory = create_session_factory(self.engine)

        logger.debug("Ledger initialized", database_url=self.database_url)

    def __enter__(self) -> "Ledger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()

    # Transactions

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Open a single-attempt transaction."""
        with self._lock, session_scope(self._session_factory) as session:
            yield session

    @contextmanager
    def _scope(self, session: Session | None) -> Generator[Session, None, None]:
        if session is not None:
            yield session
        else:
            with self.session() as own_session:
                yield own_session

    def run_in_transaction(self, work: Callable[[Session], T], description: str = "") -> T:
        """
        Run work in a transaction, retrying when the database is locked.

        Each attempt gets a fresh session; a failed attempt is rolled back
        before the next one. Only LedgerLockedError is retried.

        Args:
            work: Callable receiving the session; its return value is returned
            description: Label used in log entries

        Returns:
            Whatever work returns

        Raises:
            LedgerLockedError: If the database stayed locked for all attempts
            StateError: On any other database failure
        """
        retrying = retry_on_lock(
            max_attempts=self.config.transaction_retry_attempts,
            backoff=self.config.transaction_retry_backoff,
        )
        for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.debug("transaction_attempt", description=description)
                with self.session() as session:
                    return work(session)
        raise StateError(f"Transaction did not run: {description}")  # pragma: no cover

    # Raw access

    def execute(
        self, sql: str, params: dict[str, Any] | None = None, session: Session | None = None
    ) -> int:
        """Execute a parameterized statement and return the affected row count."""
        with self._scope(session) as s:
            result = s.execute(text(sql), params or {})
            return result.rowcount

    def query(
        self, sql: str, params: dict[str, Any] | None = None, session: Session | None = None
    ) -> list[dict[str, Any]]:
        """Run a parameterized query and return rows as dictionaries."""
        with self._scope(session) as s:
            return [dict(row) for row in s.execute(text(sql), params or {}).mappings().all()]

    def scalar(
        self, sql: str, params: dict[str, Any] | None = None, session: Session | None = None
    ) -> Any:
        """Run a parameterized query returning a single value."""
        with self._scope(session) as s:
            return s.execute(text(sql), params or {}).scalar()

    # Upserts

    def upsert_ignore(self, ignore: Ignore, session: Session | None = None) -> bool:
        """
        Insert an ignore or refresh its content fields.

        An empty incoming asset key never clears a back-filled one, and
        original_state is kept from the first insert.

        Returns:
            True if the row was inserted
        """
        ignore.created_at = to_ledger_datetime(ignore.created_at)
        ignore.expires_at = to_ledger_datetime(ignore.expires_at)

        with self._scope(session) as s:
            existing = s.get(Ignore, ignore.id)
            if existing is None:
                s.add(ignore)
                return True

            _refresh(
                existing,
                ignore,
                "issue_id",
                "org_id",
                "project_id",
                "reason",
                "ignore_type",
                "created_at",
            )
            existing.expires_at = ignore.expires_at
            if ignore.asset_key:
                existing.asset_key = ignore.asset_key
            if not existing.original_state:
                existing.original_state = ignore.original_state
            return False

    def upsert_issue(self, issue: Issue, session: Session | None = None) -> bool:
        """Insert an issue or refresh it. Returns True if inserted."""
        with self._scope(session) as s:
            existing = s.get(Issue, issue.id)
            if existing is None:
                s.add(issue)
                return True

            _refresh(
                existing,
                issue,
                "org_id",
                "project_id",
                "asset_key",
                "project_key",
                "original_state",
            )
            return False

    def upsert_project(self, project: Project, session: Session | None = None) -> bool:
        """
        Insert a project or refresh its content fields.

        An empty target descriptor never replaces a resolved one.

        Returns:
            True if the row was inserted
        """
        with self._scope(session) as s:
            existing = s.get(Project, project.id)
            if existing is None:
                s.add(project)
                return True

            _refresh(existing, project, "org_id", "name", "is_cli_project")
            if project.target_information:
                existing.target_information = project.target_information
            return False

    def insert_or_update_policy(self, policy: Policy, session: Session | None = None) -> bool:
        """
        Insert a planned policy or update its plan fields.

        external_id and created_at are only overwritten by non-null values.

        Returns:
            True if the row was inserted
        """
        policy.expires_at = to_ledger_datetime(policy.expires_at)
        policy.created_at = to_ledger_datetime(policy.created_at)

        with self._scope(session) as s:
            existing = s.get(Policy, policy.internal_id)
            if existing is None:
                s.add(policy)
                return True

            existing.org_id = policy.org_id
            existing.asset_key = policy.asset_key
            existing.policy_type = policy.policy_type
            existing.reason = policy.reason
            existing.expires_at = policy.expires_at
            existing.source_ignores = policy.source_ignores
            if policy.external_id is not None:
                existing.external_id = policy.external_id
            if policy.created_at is not None:
                existing.created_at = policy.created_at
            return False

    def upsert_organization(
        self, organization: Organization, session: Session | None = None
    ) -> bool:
        """Insert an organization or refresh it. Returns True if inserted."""
        organization.created_at = to_ledger_datetime(organization.created_at)
        organization.updated_at = to_ledger_datetime(organization.updated_at)

        with self._scope(session) as s:
            existing = s.get(Organization, organization.id)
            if existing is None:
                s.add(organization)
                return True

            _refresh(
                existing,
                organization,
                "name",
                "slug",
                "group_id",
                "is_personal",
                "access_requests_enabled",
            )
            existing.created_at = organization.created_at
            existing.updated_at = organization.updated_at
            return False

    def set_collection_metadata(
        self,
        completed_at: datetime,
        collection_version: str,
        api_version: str,
        session: Session | None = None,
    ) -> None:
        """Overwrite the collection metadata singleton."""
        with self._scope(session) as s:
            s.merge(
                CollectionMetadata(
                    id=1,
                    collection_completed_at=to_ledger_datetime(completed_at),
                    collection_version=collection_version,
                    api_version=api_version,
                )
            )

    def get_collection_metadata(self) -> CollectionMetadata | None:
        with self.session() as s:
            return s.get(CollectionMetadata, 1)

    def backfill_asset_keys(self, org_id: str, session: Session | None = None) -> int:
        """Copy asset keys from issues onto matching ignores. Returns rows updated."""
        return self.execute(_BACKFILL_ASSET_KEYS_SQL, {"org_id": org_id}, session=session)

    # Typed queries

    def get_ignores_by_org(self, org_id: str, with_asset_key: bool = False) -> list[Ignore]:
        """Ignores of an org ordered by creation time then id."""
        stmt = select(Ignore).where(Ignore.org_id == org_id)
        if with_asset_key:
            stmt = stmt.where(Ignore.asset_key != "")
        stmt = stmt.order_by(Ignore.created_at, Ignore.id)
        with self.session() as s:
            return list(s.scalars(stmt).all())

    def get_ignores_pending_deletion(self, org_id: str) -> list[Ignore]:
        """Migrated ignores whose legacy record has not been deleted yet."""
        stmt = (
            select(Ignore)
            .where(
                Ignore.org_id == org_id,
                Ignore.migrated_at.is_not(None),
                Ignore.deleted_at.is_(None),
            )
            .order_by(Ignore.created_at, Ignore.id)
        )
        with self.session() as s:
            return list(s.scalars(stmt).all())

    def get_issues_by_org(self, org_id: str) -> list[Issue]:
        stmt = select(Issue).where(Issue.org_id == org_id).order_by(Issue.id)
        with self.session() as s:
            return list(s.scalars(stmt).all())

    def get_projects_by_org(self, org_id: str) -> list[Project]:
        stmt = select(Project).where(Project.org_id == org_id).order_by(Project.name, Project.id)
        with self.session() as s:
            return list(s.scalars(stmt).all())

    def get_project(self, project_id: str) -> Project | None:
        with self.session() as s:
            return s.get(Project, project_id)

    def get_policies_by_org(self, org_id: str, unexecuted_only: bool = False) -> list[Policy]:
        """Policies of an org ordered by asset key."""
        stmt = select(Policy).where(Policy.org_id == org_id)
        if unexecuted_only:
            stmt = stmt.where((Policy.external_id.is_(None)) | (Policy.external_id == ""))
        stmt = stmt.order_by(Policy.asset_key)
        with self.session() as s:
            return list(s.scalars(stmt).all())

    def get_organizations_by_group(self, group_id: str) -> list[Organization]:
        stmt = (
            select(Organization)
            .where(Organization.group_id == group_id)
            .order_by(Organization.id)
        )
        with self.session() as s:
            return list(s.scalars(stmt).all())

    def _migrated_projects_stmt(self, org_id: str, is_cli: bool):
        has_pending_migrated_ignore = exists().where(
            and_(
                Ignore.project_id == Project.id,
                Ignore.org_id == org_id,
                Ignore.migrated_at.is_not(None),
            )
        )
        return select(Project).where(
            Project.org_id == org_id,
            Project.is_cli_project.is_(is_cli),
            Project.retested_at.is_(None),
            has_pending_migrated_ignore,
        )

    def get_projects_needing_retest(self, org_id: str) -> list[Project]:
        """Non-CLI projects with a migrated ignore that have not been retested."""
        stmt = self._migrated_projects_stmt(org_id, is_cli=False).order_by(Project.id)
        with self.session() as s:
            return list(s.scalars(stmt).all())

    def count_cli_projects_with_migrations(self, org_id: str) -> int:
        """CLI projects that would need a retest if they could be rescanned."""
        stmt = select(func.count()).select_from(
            self._migrated_projects_stmt(org_id, is_cli=True).subquery()
        )
        with self.session() as s:
            return int(s.scalar(stmt) or 0)

    def count_rows(self, model: type, org_id: str, *criteria: Any) -> int:
        """Count rows of a model for an org matching extra criteria."""
        stmt = select(func.count()).select_from(model).where(model.org_id == org_id, *criteria)
        with self.session() as s:
            return int(s.scalar(stmt) or 0)
