"""Shared fixtures: a file-backed ledger and an in-memory Snyk gateway."""

from datetime import datetime
from typing import Any

import pytest

from cci_migration.client.exceptions import NotFoundError
from cci_migration.client.models import (
    PolicyAttributes,
    RemoteFinding,
    RemoteIgnore,
    RemoteOrganization,
    RemotePolicy,
    RemoteProject,
    RemoteTarget,
)
from cci_migration.config import MigrationConfig, StateConfig
from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import Ignore, Policy, Project

ORG_ID = "org-a"
OTHER_ORG_ID = "org-b"


def ts(value: str) -> datetime:
    """Naive UTC datetime from an ISO date."""
    return datetime.fromisoformat(value)


class FakeGateway:
    """In-memory RemoteGateway.

    ``errors`` maps ``(operation, key)`` to an exception raised when that
    call is made; the key is the most specific id the call takes.
    """

    def __init__(self):
        self.projects: dict[str, list[RemoteProject]] = {}
        self.ignores: dict[tuple[str, str], list[RemoteIgnore]] = {}
        self.targets: dict[str, RemoteTarget] = {}
        self.findings: dict[str, list[RemoteFinding]] = {}
        self.orgs: dict[str, list[RemoteOrganization]] = {}
        self.policies: dict[str, dict[str, RemotePolicy]] = {}
        self.errors: dict[tuple[str, str], Exception] = {}
        self.report_unresolved_conflicts = False

        self.calls: list[tuple[str, Any]] = []
        self.rescans: list[tuple[str, RemoteTarget]] = []
        self.deleted_ignores: list[tuple[str, str, str]] = []
        self.created_ignores: list[tuple[str, str, RemoteIgnore]] = []
        self.deleted_policies: list[tuple[str, str]] = []
        self._policy_counter = 0

    def _maybe_fail(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        error = self.errors.get((operation, key))
        if error is not None:
            raise error

    async def list_projects(self, org_id: str) -> list[RemoteProject]:
        self._maybe_fail("list_projects", org_id)
        return list(self.projects.get(org_id, []))

    async def list_ignores(self, org_id: str, project_id: str) -> list[RemoteIgnore]:
        self._maybe_fail("list_ignores", project_id)
        return list(self.ignores.get((org_id, project_id), []))

    async def resolve_project_target(self, org_id: str, target_id: str) -> RemoteTarget:
        self._maybe_fail("resolve_project_target", target_id)
        if target_id not in self.targets:
            raise NotFoundError(f"Target {target_id} not found", status_code=404)
        return self.targets[target_id].model_copy()

    async def list_findings(
        self, org_id: str, project_id: str | None = None
    ) -> list[RemoteFinding]:
        self._maybe_fail("list_findings", org_id)
        findings = self.findings.get(org_id, [])
        if project_id:
            findings = [finding for finding in findings if finding.project_id == project_id]
        return list(findings)

    async def list_orgs_in_group(self, group_id: str) -> list[RemoteOrganization]:
        self._maybe_fail("list_orgs_in_group", group_id)
        return list(self.orgs.get(group_id, []))

    async def create_policy(
        self,
        org_id: str,
        attributes: PolicyAttributes,
        meta: dict[str, Any] | None = None,
    ) -> RemotePolicy:
        asset_key = attributes.conditions_group.conditions[0].value
        self._maybe_fail("create_policy", asset_key)
        org_policies = self.policies.setdefault(org_id, {})

        existing = org_policies.get(asset_key)
        if existing is not None:
            policy_id = "" if self.report_unresolved_conflicts else existing.id
            return RemotePolicy(id=policy_id, name=existing.name, already_existed=True)

        self._policy_counter += 1
        created = RemotePolicy(
            id=f"remote-policy-{self._policy_counter}",
            name=attributes.name,
            action_type=attributes.action_type,
            conditions_group=attributes.conditions_group,
        )
        org_policies[asset_key] = created
        return created

    async def trigger_rescan(self, org_id: str, target: RemoteTarget) -> None:
        self._maybe_fail("trigger_rescan", target.id)
        self.rescans.append((org_id, target))

    async def delete_policy(self, org_id: str, policy_id: str) -> None:
        self._maybe_fail("delete_policy", policy_id)
        self.deleted_policies.append((org_id, policy_id))
        org_policies = self.policies.get(org_id, {})
        for asset_key, policy in list(org_policies.items()):
            if policy.id == policy_id:
                del org_policies[asset_key]

    async def delete_ignore(self, org_id: str, project_id: str, ignore_id: str) -> None:
        self._maybe_fail("delete_ignore", ignore_id)
        self.deleted_ignores.append((org_id, project_id, ignore_id))

    async def create_ignore(self, org_id: str, project_id: str, ignore: RemoteIgnore) -> None:
        self._maybe_fail("create_ignore", ignore.id)
        self.created_ignores.append((org_id, project_id, ignore))

    def calls_to(self, operation: str) -> list[Any]:
        return [key for name, key in self.calls if name == operation]


def remote_ignore(
    ignore_id: str,
    reason_type: str = "temporary",
    created: str = "2023-01-01T00:00:00+00:00",
    reason: str = "",
    expires: str | None = None,
) -> RemoteIgnore:
    return RemoteIgnore.model_validate(
        {
            "id": ignore_id,
            "reason": reason or f"reason for {ignore_id}",
            "reasonType": reason_type,
            "created": created,
            "expires": expires,
            "ignoredBy": {"id": "user-1", "name": "Dev", "email": "dev@example.com"},
            "disregardIfFixable": False,
            "ignoreScope": "project",
            "path": [{"module": "*"}],
        }
    )


@pytest.fixture
def state_config(tmp_path) -> StateConfig:
    return StateConfig(
        db_path=str(tmp_path / "ledger.db"),
        busy_timeout=0.1,
        transaction_retry_backoff=0,
    )


@pytest.fixture
def ledger(state_config):
    with Ledger(state_config) as opened:
        yield opened


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def config(tmp_path, state_config) -> MigrationConfig:
    migration_config = MigrationConfig()
    migration_config.snyk.token = "test-token"
    migration_config.state = state_config
    migration_config.paths.backup_dir = str(tmp_path / "backups")
    migration_config.logging.file = str(tmp_path / "logs" / "test.log")
    return migration_config


@pytest.fixture
def populated_gateway(gateway) -> FakeGateway:
    """One scannable and one CLI project, three ignores and matching findings."""
    gateway.projects[ORG_ID] = [
        RemoteProject(
            id="proj-1",
            name="acme/web",
            origin="github",
            type="sast",
            target_reference="main",
            target_id="target-1",
        ),
        RemoteProject(id="proj-cli", name="local-scan", origin="cli", type="sast"),
    ]
    gateway.targets["target-1"] = RemoteTarget(
        id="target-1",
        display_name="acme/web",
        owner="acme",
        repo="web",
        integration_id="integration-1",
    )
    gateway.ignores[(ORG_ID, "proj-1")] = [
        remote_ignore("i1", "temporary", "2023-01-01T00:00:00+00:00"),
        remote_ignore("i2", "wont-fix", "2023-06-01T00:00:00+00:00"),
    ]
    gateway.ignores[(ORG_ID, "proj-cli")] = [
        remote_ignore("i3", "not-vulnerable", "2023-03-01T00:00:00+00:00"),
    ]
    gateway.findings[ORG_ID] = [
        RemoteFinding(id="f1", project_id="proj-1", key="i1", key_asset="asset-A"),
        RemoteFinding(id="f2", project_id="proj-1", key="i2", key_asset="asset-A"),
        RemoteFinding(id="f3", project_id="proj-cli", key="i3", key_asset="asset-B"),
    ]
    return gateway


def add_ignore(
    ledger: Ledger,
    ignore_id: str,
    asset_key: str = "A",
    ignore_type: str = "temporary",
    created: str = "2023-01-01",
    org_id: str = ORG_ID,
    project_id: str = "proj-1",
    reason: str = "",
) -> None:
    """Insert an ignore row directly, as if gathered and back-filled."""
    ledger.upsert_ignore(
        Ignore(
            id=ignore_id,
            issue_id=ignore_id,
            org_id=org_id,
            project_id=project_id,
            reason=reason,
            ignore_type=ignore_type,
            created_at=ts(created),
            expires_at=None,
            asset_key=asset_key,
            original_state=remote_ignore(
                ignore_id, ignore_type, f"{created}T00:00:00+00:00", reason
            ).model_dump_json(by_alias=True),
        )
    )


def add_project(
    ledger: Ledger,
    project_id: str = "proj-1",
    org_id: str = ORG_ID,
    is_cli: bool = False,
    target_information: str = "",
) -> None:
    ledger.upsert_project(
        Project(
            id=project_id,
            org_id=org_id,
            name=project_id,
            target_information=target_information,
            is_cli_project=is_cli,
        )
    )


def get_ignore(ledger: Ledger, ignore_id: str) -> Ignore:
    with ledger.session() as session:
        return session.get(Ignore, ignore_id)


def get_project(ledger: Ledger, project_id: str) -> Project:
    return ledger.get_project(project_id)


def policies_of(ledger: Ledger, org_id: str = ORG_ID) -> list[Policy]:
    return ledger.get_policies_by_org(org_id)


