"""Snyk API client implementing the Remote Gateway.

Legacy ignores live behind the v1 API, everything else behind the REST API
(JSON:API documents, cursor pagination via ``links.next``). Both are served
from the same host, so one BaseAPIClient rooted at ``https://<endpoint>``
handles them and endpoints carry the ``/v1`` or ``/rest`` prefix.
"""

from typing import Any

import httpx

from cci_migration.client.base_client import BaseAPIClient
from cci_migration.client.exceptions import APIError, ConflictError, NotFoundError, ValidationError
from cci_migration.client.models import (
    PolicyAttributes,
    PolicyConditionsGroup,
    RemoteFinding,
    RemoteIgnore,
    RemoteOrganization,
    RemotePolicy,
    RemoteProject,
    RemoteTarget,
)
from cci_migration.config import PerformanceConfig, SnykConfig
from cci_migration.utils.logging import get_logger
from cci_migration.utils.retry import retry_with_backoff, retry_with_rate_limit_handling

logger = get_logger(__name__)

JSON_API = "application/vnd.api+json"


class SnykClient(BaseAPIClient):
    """Async client for the subset of the Snyk API used by the migration.

    Transient failures are retried here: 429 responses honour Retry-After,
    network errors and 5xx responses back off exponentially.
    """

    def __init__(
        self,
        config: SnykConfig,
        performance: PerformanceConfig | None = None,
        project_type: str = "sast",
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Snyk client.

        Args:
            config: Snyk API configuration
            performance: Retry and rate limit tuning (defaults if None)
            project_type: Project type filter for project listings
            log_payloads: Enable request/response payload logging
            max_payload_size: Maximum payload size to log before truncation
            transport: Optional httpx transport (used by tests)
        """
        performance = performance or PerformanceConfig()

        super().__init__(
            base_url=f"https://{config.api_endpoint}",
            token=config.token,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            rate_limit=performance.rate_limit,
            max_connections=performance.http_max_connections,
            log_payloads=log_payloads,
            max_payload_size=max_payload_size,
            transport=transport,
        )
        self.rest_version = config.rest_version
        self.page_limit = config.page_limit
        self.project_type = project_type
        self.rate_limit_max_retries = performance.rate_limit_max_retries
        self.rate_limit_default_wait = performance.rate_limit_default_wait

        self._send = retry_with_backoff(
            max_attempts=performance.retry_attempts,
            min_wait=performance.retry_backoff_min,
            max_wait=performance.retry_backoff_max,
        )(self._send_rate_limited)

        logger.debug("snyk_client_initialized", endpoint=config.api_endpoint)

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Make a request with rate-limit and transient-error retries."""
        return await self._send(method, endpoint, params, json_data, **kwargs)

    async def _send_rate_limited(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None,
        json_data: dict[str, Any] | None,
        **kwargs: Any,
    ) -> Any:
        send = super().request
        return await retry_with_rate_limit_handling(
            lambda: send(method, endpoint, params=params, json_data=json_data, **kwargs),
            max_attempts=self.rate_limit_max_retries + 1,
            default_wait=self.rate_limit_default_wait,
        )

    def _rest_params(self, **extra: Any) -> dict[str, Any]:
        params: dict[str, Any] = {"version": self.rest_version}
        params.update({k: v for k, v in extra.items() if v is not None})
        return params

    async def _paginate(self, endpoint: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Collect ``data`` items across all pages of a REST listing."""
        items: list[dict[str, Any]] = []
        next_url: str | None = endpoint
        next_params: dict[str, Any] | None = params
        page = 0

        while next_url:
            page += 1
            response = await self.get(next_url, params=next_params, headers={"Accept": JSON_API})
            items.extend(response.get("data") or [])

            next_link = (response.get("links") or {}).get("next")
            # Next links already carry the full query string
            next_url = next_link or None
            next_params = None

        logger.debug("pagination_complete", endpoint=endpoint, pages=page, items=len(items))
        return items

    # Projects and targets

    async def list_projects(self, org_id: str) -> list[RemoteProject]:
        """List projects of the configured type in an organization."""
        items = await self._paginate(
            f"/rest/orgs/{org_id}/projects",
            self._rest_params(types=self.project_type, limit=self.page_limit),
        )

        projects = []
        for item in items:
            attributes = item.get("attributes") or {}
            target = ((item.get("relationships") or {}).get("target") or {}).get("data") or {}
            projects.append(
                RemoteProject(
                    id=item["id"],
                    name=attributes.get("name", ""),
                    origin=attributes.get("origin", ""),
                    type=attributes.get("type", ""),
                    status=attributes.get("status", ""),
                    target_reference=attributes.get("target_reference") or "",
                    target_id=target.get("id", ""),
                    created=attributes.get("created"),
                )
            )

        logger.info("projects_listed", org_id=org_id, count=len(projects))
        return projects

    async def resolve_project_target(self, org_id: str, target_id: str) -> RemoteTarget:
        """Fetch a target and map it to the descriptor used for rescans.

        The owner and repository are derived from an ``owner/repo`` display
        name; the branch is not part of the target and stays empty.
        """
        if not target_id:
            raise ValidationError("Project has no target id")

        response = await self.get(
            f"/rest/orgs/{org_id}/targets/{target_id}",
            params=self._rest_params(),
            headers={"Accept": JSON_API},
        )
        data = response.get("data") or {}
        attributes = data.get("attributes") or {}
        integration = (
            ((data.get("relationships") or {}).get("integration") or {}).get("data") or {}
        )
        display_name = attributes.get("display_name", "")

        owner, repo = "", ""
        parts = display_name.split("/")
        if len(parts) == 2:
            owner, repo = parts

        return RemoteTarget(
            id=data.get("id") or target_id,
            name=display_name,
            display_name=display_name,
            owner=owner,
            repo=repo,
            url=attributes.get("url") or "",
            integration_id=integration.get("id", ""),
            is_private=bool(attributes.get("is_private", False)),
            created_at=attributes.get("created_at"),
        )

    async def trigger_rescan(self, org_id: str, target: RemoteTarget) -> None:
        """Re-import a target through the integration that owns it."""
        integration_id = target.integration_id.strip()
        if not integration_id:
            raise ValidationError("Target missing integration_id, cannot trigger import")

        payload_target = {"owner": target.owner, "name": target.repo}
        if target.branch:
            payload_target["branch"] = target.branch

        await self.post(
            f"/v1/org/{org_id}/integrations/{integration_id}/import",
            json_data={"target": payload_target},
        )
        logger.info("rescan_triggered", org_id=org_id, target=target.display_name)

    # Ignores and findings

    async def list_ignores(self, org_id: str, project_id: str) -> list[RemoteIgnore]:
        """List legacy ignores of a project, sorted by creation time then id.

        The v1 response maps ignore ids to a list of details; only the first
        detail is meaningful.
        """
        response = await self.get(f"/v1/org/{org_id}/project/{project_id}/ignores")

        ignores = []
        for ignore_id, details in (response or {}).items():
            if not details:
                continue
            ignores.append(RemoteIgnore.model_validate({**details[0], "id": ignore_id}))

        ignores.sort(key=lambda ignore: (ignore.created, ignore.id))
        return ignores

    async def create_ignore(self, org_id: str, project_id: str, ignore: RemoteIgnore) -> None:
        """Recreate a legacy ignore from its snapshot."""
        payload: dict[str, Any] = {
            "ignorePath": "*",
            "reason": ignore.reason,
            "reasonType": ignore.reason_type,
            "disregardIfFixable": ignore.disregard_if_fixable,
        }
        if ignore.expires is not None:
            payload["expires"] = ignore.expires.isoformat()

        endpoint = f"/v1/org/{org_id}/project/{project_id}/ignore/{ignore.id}"
        await self.post(endpoint, json_data=payload)
        logger.info("ignore_created", org_id=org_id, project_id=project_id, ignore_id=ignore.id)

    async def delete_ignore(self, org_id: str, project_id: str, ignore_id: str) -> None:
        """Delete a legacy ignore. An ignore that is already gone counts as deleted."""
        try:
            await self.delete(f"/v1/org/{org_id}/project/{project_id}/ignore/{ignore_id}")
        except NotFoundError:
            logger.info(
                "ignore_already_deleted",
                org_id=org_id,
                project_id=project_id,
                ignore_id=ignore_id,
            )

    async def list_findings(
        self, org_id: str, project_id: str | None = None
    ) -> list[RemoteFinding]:
        """List Snyk Code issues for an organization, optionally one project."""
        items = await self._paginate(
            f"/rest/orgs/{org_id}/issues",
            self._rest_params(type="code", limit=self.page_limit, project_id=project_id or None),
        )

        findings = []
        for item in items:
            attributes = item.get("attributes") or {}
            scan_item = ((item.get("relationships") or {}).get("scan_item") or {}).get("data") or {}
            findings.append(
                RemoteFinding(
                    id=item["id"],
                    project_id=scan_item.get("id", ""),
                    key=attributes.get("key") or "",
                    key_asset=attributes.get("key_asset") or "",
                    title=attributes.get("title") or "",
                    type=attributes.get("type") or "",
                    status=attributes.get("status") or "",
                    effective_severity_level=attributes.get("effective_severity_level") or "",
                    ignored=bool(attributes.get("ignored", False)),
                    created_at=attributes.get("created_at"),
                    updated_at=attributes.get("updated_at"),
                )
            )

        logger.info("findings_listed", org_id=org_id, project_id=project_id, count=len(findings))
        return findings

    # Organizations

    async def list_orgs_in_group(self, group_id: str) -> list[RemoteOrganization]:
        """List all organizations of a group."""
        items = await self._paginate(
            f"/rest/groups/{group_id}/orgs", self._rest_params(limit=self.page_limit)
        )
        return [
            RemoteOrganization.model_validate(
                {"group_id": group_id, **(item.get("attributes") or {}), "id": item["id"]}
            )
            for item in items
        ]

    # Policies

    async def create_policy(
        self,
        org_id: str,
        attributes: PolicyAttributes,
        meta: dict[str, Any] | None = None,
    ) -> RemotePolicy:
        """Create an ignore policy.

        A 409 means the policy already exists and is returned as success. The
        existing policy is looked up by asset key so its id can be recorded;
        if the lookup fails the returned policy has an empty id.
        """
        body: dict[str, Any] = {"type": "policy", "attributes": attributes.to_payload()}
        if meta:
            body["meta"] = meta

        try:
            response = await self.post(
                f"/rest/orgs/{org_id}/policies",
                json_data={"data": body},
                params=self._rest_params(),
                headers={"Content-Type": JSON_API, "Accept": JSON_API},
            )
        except ConflictError:
            asset_key = next(iter(_asset_keys(attributes)), "")
            logger.info("policy_already_exists", org_id=org_id, asset_key=asset_key)
            existing = await self._find_policy_for_asset(org_id, asset_key)
            if existing is not None:
                return existing.model_copy(update={"already_existed": True})
            return RemotePolicy(
                name=attributes.name,
                action_type=attributes.action_type,
                conditions_group=attributes.conditions_group,
                already_existed=True,
            )

        policy = _parse_policy(response.get("data") or {})
        logger.info("policy_created", org_id=org_id, policy_id=policy.id, name=policy.name)
        return policy

    async def list_policies(self, org_id: str) -> list[RemotePolicy]:
        """List all policies of an organization."""
        items = await self._paginate(
            f"/rest/orgs/{org_id}/policies", self._rest_params(limit=self.page_limit)
        )
        return [_parse_policy(item) for item in items]

    async def delete_policy(self, org_id: str, policy_id: str) -> None:
        """Delete a policy. A policy that is already gone counts as deleted."""
        try:
            await self.delete(
                f"/rest/orgs/{org_id}/policies/{policy_id}",
                params=self._rest_params(),
                headers={"Accept": JSON_API},
            )
        except NotFoundError:
            logger.info("policy_already_deleted", org_id=org_id, policy_id=policy_id)
            return
        logger.info("policy_deleted", org_id=org_id, policy_id=policy_id)

    async def _find_policy_for_asset(self, org_id: str, asset_key: str) -> RemotePolicy | None:
        if not asset_key:
            return None
        try:
            policies = await self.list_policies(org_id)
        except APIError as e:
            logger.warning("policy_lookup_failed", org_id=org_id, asset_key=asset_key, error=str(e))
            return None
        for policy in policies:
            if asset_key in policy.asset_keys:
                return policy
        return None


def _asset_keys(attributes: PolicyAttributes) -> list[str]:
    return [condition.value for condition in attributes.conditions_group.conditions]


def _parse_policy(item: dict[str, Any]) -> RemotePolicy:
    attributes = item.get("attributes") or {}
    conditions_group = attributes.get("conditions_group")
    return RemotePolicy(
        id=item.get("id", ""),
        name=attributes.get("name", ""),
        action_type=attributes.get("action_type", ""),
        conditions_group=(
            PolicyConditionsGroup.model_validate(conditions_group) if conditions_group else None
        ),
    )
