"""Pydantic models for Snyk API payloads.

These are the shapes exchanged with the Remote Gateway. Field aliases follow
the wire names (v1 camelCase, REST snake_case) so responses can be validated
directly and dumped back unchanged as original-state snapshots.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

POLICY_CONDITION_FIELD = "snyk/asset/finding/v1"
POLICY_CONDITION_OPERATOR = "includes"


class RemoteModel(BaseModel):
    """Base for API payload models."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class IgnoredBy(RemoteModel):
    id: str = ""
    name: str = ""
    email: str = ""


class RemoteIgnore(RemoteModel):
    """A legacy v1 ignore as returned by ``/org/{org}/project/{project}/ignores``."""

    id: str
    reason: str = ""
    reason_type: str = Field(default="", alias="reasonType")
    created: datetime
    expires: datetime | None = None
    ignored_by: IgnoredBy | None = Field(default=None, alias="ignoredBy")
    disregard_if_fixable: bool = Field(default=False, alias="disregardIfFixable")
    ignore_scope: str = Field(default="", alias="ignoreScope")
    path: list[dict[str, Any]] = Field(default_factory=list)


class RemoteProject(RemoteModel):
    """A project from the REST projects listing, flattened."""

    id: str
    name: str = ""
    origin: str = ""
    type: str = ""
    status: str = ""
    target_reference: str = ""
    target_id: str = ""
    created: datetime | None = None

    @property
    def is_cli(self) -> bool:
        return self.origin == "cli"


class RemoteTarget(RemoteModel):
    """Repository/target descriptor used to trigger a rescan.

    Stored verbatim as JSON in ``projects.target_information``.
    """

    id: str = ""
    name: str = ""
    display_name: str = ""
    owner: str = ""
    repo: str = ""
    branch: str = ""
    url: str = ""
    origin: str = ""
    integration_id: str = ""
    is_private: bool = False
    created_at: datetime | None = None


class RemoteFinding(RemoteModel):
    """A Snyk Code issue from the REST issues listing, flattened."""

    id: str
    project_id: str = ""
    key: str = ""
    key_asset: str = ""
    title: str = ""
    type: str = ""
    status: str = ""
    effective_severity_level: str = ""
    ignored: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RemoteOrganization(RemoteModel):
    """An organization listed under a group."""

    id: str
    name: str = ""
    slug: str = ""
    group_id: str = ""
    is_personal: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    access_requests_enabled: bool = False


class PolicyCondition(RemoteModel):
    field: str = POLICY_CONDITION_FIELD
    operator: str = POLICY_CONDITION_OPERATOR
    value: str


class PolicyConditionsGroup(RemoteModel):
    conditions: list[PolicyCondition] = Field(default_factory=list)
    logical_operator: str = "and"


class PolicyActionData(RemoteModel):
    ignore_type: str
    reason: str
    expires: datetime | None = None


class PolicyAction(RemoteModel):
    data: PolicyActionData


class PolicyAttributes(RemoteModel):
    """Attributes sent when creating a consistent-ignore policy."""

    name: str
    action_type: str = "ignore"
    action: PolicyAction
    conditions_group: PolicyConditionsGroup

    @classmethod
    def for_asset(
        cls,
        asset_key: str,
        ignore_type: str,
        reason: str,
        expires: datetime | None = None,
    ) -> "PolicyAttributes":
        """Build the ignore policy that matches every finding of one asset."""
        return cls(
            name=f"Migrated policy for {asset_key}",
            action=PolicyAction(
                data=PolicyActionData(ignore_type=ignore_type, reason=reason, expires=expires)
            ),
            conditions_group=PolicyConditionsGroup(
                conditions=[PolicyCondition(value=asset_key)],
                logical_operator="and",
            ),
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RemotePolicy(RemoteModel):
    """A policy returned by the policies API.

    ``already_existed`` is set when creation hit a 409; ``id`` is empty if the
    existing policy could not be looked up.
    """

    id: str = ""
    name: str = ""
    action_type: str = ""
    conditions_group: PolicyConditionsGroup | None = None
    already_existed: bool = False

    @property
    def asset_keys(self) -> list[str]:
        if self.conditions_group is None:
            return []
        return [
            condition.value
            for condition in self.conditions_group.conditions
            if condition.field == POLICY_CONDITION_FIELD
        ]
