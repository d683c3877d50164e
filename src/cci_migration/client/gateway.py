"""Remote Gateway contract.

Migration phases depend only on this protocol. SnykClient implements it over
HTTP and tests substitute in-memory fakes.
"""

from typing import Any, Protocol, runtime_checkable

from cci_migration.client.models import (
    PolicyAttributes,
    RemoteFinding,
    RemoteIgnore,
    RemoteOrganization,
    RemotePolicy,
    RemoteProject,
    RemoteTarget,
)


@runtime_checkable
class RemoteGateway(Protocol):
    """Operations the migration engine needs from the remote service.

    Transient failures (rate limits, 5xx, network) are retried inside the
    gateway. Anything raised from these methods is final for that call.
    """

    async def list_projects(self, org_id: str) -> list[RemoteProject]: ...

    async def list_ignores(self, org_id: str, project_id: str) -> list[RemoteIgnore]: ...

    async def resolve_project_target(self, org_id: str, target_id: str) -> RemoteTarget: ...

    async def list_findings(
        self, org_id: str, project_id: str | None = None
    ) -> list[RemoteFinding]: ...

    async def list_orgs_in_group(self, group_id: str) -> list[RemoteOrganization]: ...

    async def create_policy(
        self,
        org_id: str,
        attributes: PolicyAttributes,
        meta: dict[str, Any] | None = None,
    ) -> RemotePolicy:
        """Create a policy. A duplicate (409) MUST be returned as success."""
        ...

    async def trigger_rescan(self, org_id: str, target: RemoteTarget) -> None: ...

    async def delete_policy(self, org_id: str, policy_id: str) -> None: ...

    async def delete_ignore(self, org_id: str, project_id: str, ignore_id: str) -> None: ...

    async def create_ignore(self, org_id: str, project_id: str, ignore: RemoteIgnore) -> None: ...
