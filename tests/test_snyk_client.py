"""Tests for the Snyk API client against a mocked transport."""

import json

import httpx
import pytest

from cci_migration.client.exceptions import AuthenticationError, RateLimitError
from cci_migration.client.models import PolicyAttributes, RemoteIgnore, RemoteTarget
from cci_migration.client.snyk_client import SnykClient
from cci_migration.config import PerformanceConfig, SnykConfig

BASE = "https://api.snyk.io"


def make_client(handler, **performance) -> SnykClient:
    settings = {"rate_limit": 50, "rate_limit_default_wait": 0, "retry_attempts": 1}
    settings.update(performance)
    return SnykClient(
        SnykConfig(token="secret-token"),
        PerformanceConfig(**settings),
        transport=httpx.MockTransport(handler),
    )


def ignore_detail(created: str, reason_type: str = "temporary") -> list[dict]:
    return [
        {
            "reason": "false positive",
            "reasonType": reason_type,
            "created": created,
            "ignoredBy": {"id": "u1", "name": "Dev", "email": "dev@example.com"},
            "disregardIfFixable": False,
            "ignoreScope": "project",
        }
    ]


async def test_list_ignores_sorted_with_auth_header():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "b": ignore_detail("2023-02-01T00:00:00Z"),
                "a": ignore_detail("2023-02-01T00:00:00Z", "wont-fix"),
                "c": ignore_detail("2022-05-01T00:00:00Z"),
                "empty": [],
            },
        )

    async with make_client(handler) as client:
        ignores = await client.list_ignores("org-1", "proj-1")

    assert [ignore.id for ignore in ignores] == ["c", "a", "b"]
    assert ignores[1].reason_type == "wont-fix"
    assert seen[0].url.path == "/v1/org/org-1/project/proj-1/ignores"
    assert seen[0].headers["Authorization"] == "token secret-token"


async def test_list_projects_follows_next_links():
    def handler(request: httpx.Request) -> httpx.Response:
        if "starting_after" in request.url.params:
            return httpx.Response(
                200,
                json={
                    "data": [{"id": "p2", "attributes": {"name": "cli", "origin": "cli"}}],
                    "links": {},
                },
            )
        assert request.url.params["types"] == "sast"
        assert request.url.params["version"]
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": "p1",
                        "attributes": {
                            "name": "acme/web",
                            "origin": "github",
                            "target_reference": "main",
                        },
                        "relationships": {"target": {"data": {"id": "t1"}}},
                    }
                ],
                "links": {
                    "next": f"{BASE}/rest/orgs/org-1/projects?version=x&starting_after=abc"
                },
            },
        )

    async with make_client(handler) as client:
        projects = await client.list_projects("org-1")

    assert [project.id for project in projects] == ["p1", "p2"]
    assert projects[0].target_id == "t1"
    assert projects[0].target_reference == "main"
    assert projects[1].is_cli is True


async def test_resolve_project_target_splits_display_name():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/rest/orgs/org-1/targets/t1"
        return httpx.Response(
            200,
            json={
                "data": {
                    "id": "t1",
                    "attributes": {
                        "display_name": "acme/web",
                        "url": "https://github.com/acme/web",
                    },
                    "relationships": {"integration": {"data": {"id": "int-9"}}},
                }
            },
        )

    async with make_client(handler) as client:
        target = await client.resolve_project_target("org-1", "t1")

    assert (target.owner, target.repo) == ("acme", "web")
    assert target.integration_id == "int-9"
    assert target.branch == ""


async def test_trigger_rescan_posts_import():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.url.path, json.loads(request.content)))
        return httpx.Response(201, json={})

    target = RemoteTarget(id="t1", owner="acme", repo="web", branch="main", integration_id="int-9")
    async with make_client(handler) as client:
        await client.trigger_rescan("org-1", target)

    assert bodies == [
        (
            "/v1/org/org-1/integrations/int-9/import",
            {"target": {"owner": "acme", "name": "web", "branch": "main"}},
        )
    ]


async def test_create_policy_sends_attributes_and_meta():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"data": {"id": "pol-1", "attributes": {"name": "n"}}})

    attributes = PolicyAttributes.for_asset("asset-A", "wont-fix", "accepted")
    async with make_client(handler) as client:
        policy = await client.create_policy("org-1", attributes, meta={"internal_id": "policy-x"})

    assert policy.id == "pol-1"
    assert policy.already_existed is False
    data = bodies[0]["data"]
    assert data["meta"] == {"internal_id": "policy-x"}
    assert data["attributes"]["action"]["data"]["ignore_type"] == "wont-fix"
    assert data["attributes"]["conditions_group"]["conditions"][0]["value"] == "asset-A"


async def test_create_policy_conflict_returns_existing():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(409, json={"errors": [{"detail": "exists"}]})
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": "pol-other",
                        "attributes": {
                            "conditions_group": {
                                "conditions": [
                                    {"field": "snyk/asset/finding/v1", "value": "asset-Z"}
                                ]
                            }
                        },
                    },
                    {
                        "id": "pol-existing",
                        "attributes": {
                            "conditions_group": {
                                "conditions": [
                                    {"field": "snyk/asset/finding/v1", "value": "asset-A"}
                                ]
                            }
                        },
                    },
                ],
                "links": {},
            },
        )

    attributes = PolicyAttributes.for_asset("asset-A", "temporary", "r")
    async with make_client(handler) as client:
        policy = await client.create_policy("org-1", attributes)

    assert policy.id == "pol-existing"
    assert policy.already_existed is True


async def test_create_policy_conflict_without_lookup_has_empty_id():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(409, json={"errors": [{"detail": "exists"}]})
        return httpx.Response(403, json={"errors": [{"detail": "no list permission"}]})

    attributes = PolicyAttributes.for_asset("asset-A", "temporary", "r")
    async with make_client(handler) as client:
        policy = await client.create_policy("org-1", attributes)

    assert policy.id == ""
    assert policy.already_existed is True


async def test_deleting_missing_records_succeeds():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "gone"})

    async with make_client(handler) as client:
        await client.delete_policy("org-1", "pol-1")
        await client.delete_ignore("org-1", "proj-1", "ignore-1")


async def test_create_ignore_replays_snapshot():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={})

    snapshot = RemoteIgnore.model_validate(
        {
            "id": "i1",
            "reason": "r",
            "reasonType": "not-vulnerable",
            "created": "2023-01-01T00:00:00Z",
        }
    )
    async with make_client(handler) as client:
        await client.create_ignore("org-1", "proj-1", snapshot)

    path, body = bodies[0]
    assert path == "/v1/org/org-1/project/proj-1/ignore/i1"
    assert body["reasonType"] == "not-vulnerable"
    assert "expires" not in body


async def test_rate_limit_is_retried():
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(200, json={}),
        ]
    )
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return next(responses)

    async with make_client(handler) as client:
        assert await client.list_ignores("org-1", "proj-1") == []

    assert len(calls) == 2


async def test_rate_limit_gives_up_after_max_retries():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429)

    async with make_client(handler, rate_limit_max_retries=1) as client:
        with pytest.raises(RateLimitError):
            await client.list_ignores("org-1", "proj-1")


async def test_unauthorized_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"errors": [{"detail": "bad token"}]})

    async with make_client(handler, retry_attempts=3) as client:
        with pytest.raises(AuthenticationError):
            await client.list_orgs_in_group("group-1")

    assert len(calls) == 1
