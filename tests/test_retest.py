"""Tests for the retest phase."""

import json

import pytest
from conftest import ORG_ID, add_ignore, add_project, get_project

from cci_migration.client.exceptions import ServerError
from cci_migration.client.models import RemoteTarget
from cci_migration.migration.executor import ExecutePhase
from cci_migration.migration.planner import PlanPhase
from cci_migration.migration.retest import RetestPhase

STORED_TARGET = RemoteTarget(id="target-1", owner="acme", repo="web", branch="main")


async def migrate(ledger, gateway) -> None:
    PlanPhase(ledger).run(ORG_ID)
    await ExecutePhase(gateway, ledger).run(ORG_ID)


@pytest.fixture
async def migrated(ledger, populated_gateway):
    add_project(ledger, "proj-1", target_information=STORED_TARGET.model_dump_json())
    add_project(ledger, "proj-cli", is_cli=True)
    add_project(ledger, "proj-idle", target_information=STORED_TARGET.model_dump_json())
    add_ignore(ledger, "i1", asset_key="A", project_id="proj-1")
    add_ignore(ledger, "i3", asset_key="B", project_id="proj-cli")
    add_ignore(ledger, "i9", asset_key="", project_id="proj-idle")
    await migrate(ledger, populated_gateway)
    return ledger


async def test_rescans_migrated_scannable_projects(migrated, populated_gateway):
    result = await RetestPhase(populated_gateway, migrated).run(ORG_ID)

    assert result.succeeded == 1
    assert result.skipped == 1
    assert [(org, target.id) for org, target in populated_gateway.rescans] == [(ORG_ID, "target-1")]
    assert get_project(migrated, "proj-1").retested_at is not None
    assert get_project(migrated, "proj-cli").retested_at is None
    assert get_project(migrated, "proj-idle").retested_at is None


async def test_retested_projects_are_not_rescanned_again(migrated, populated_gateway):
    phase = RetestPhase(populated_gateway, migrated)
    await phase.run(ORG_ID)

    result = await phase.run(ORG_ID)

    assert result.attempted == 0
    assert len(populated_gateway.rescans) == 1


async def test_missing_descriptor_is_fetched_and_stored(ledger, populated_gateway):
    add_project(ledger, "proj-1", target_information="")
    add_ignore(ledger, "i1", project_id="proj-1")
    await migrate(ledger, populated_gateway)

    result = await RetestPhase(populated_gateway, ledger).run(ORG_ID)

    assert result.succeeded == 1
    [(_, target)] = populated_gateway.rescans
    assert target.integration_id == "integration-1"
    assert target.branch == "main"
    stored = json.loads(get_project(ledger, "proj-1").target_information)
    assert stored["id"] == "target-1"
    assert stored["branch"] == "main"


async def test_project_without_remote_target_fails_alone(ledger, populated_gateway):
    add_project(ledger, "proj-gone", target_information="")
    add_project(ledger, "proj-1", target_information=STORED_TARGET.model_dump_json())
    add_ignore(ledger, "g1", asset_key="G", project_id="proj-gone")
    add_ignore(ledger, "i1", asset_key="A", project_id="proj-1")
    await migrate(ledger, populated_gateway)

    result = await RetestPhase(populated_gateway, ledger).run(ORG_ID)

    assert result.failed == 1
    assert result.succeeded == 1
    assert result.errors[0]["item"] == "proj-gone"
    assert get_project(ledger, "proj-gone").retested_at is None


async def test_rescan_failure_is_counted(migrated, populated_gateway):
    populated_gateway.errors[("trigger_rescan", "target-1")] = ServerError("down", status_code=503)

    result = await RetestPhase(populated_gateway, migrated).run(ORG_ID)

    assert result.failed == 1
    assert get_project(migrated, "proj-1").retested_at is None
