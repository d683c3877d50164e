"""Tests for the cleanup phase."""

from conftest import ORG_ID, add_ignore, get_ignore

from cci_migration.client.exceptions import AuthorizationError
from cci_migration.migration.cleanup import CleanupPhase
from cci_migration.migration.executor import ExecutePhase
from cci_migration.migration.planner import PlanPhase


async def prepare(ledger, gateway) -> None:
    add_ignore(ledger, "i1", asset_key="A", created="2023-01-01")
    add_ignore(ledger, "i2", asset_key="A", ignore_type="wont-fix", created="2023-02-01")
    add_ignore(ledger, "i3", asset_key="B", created="2023-03-01")
    add_ignore(ledger, "loose", asset_key="", created="2023-04-01")
    PlanPhase(ledger).run(ORG_ID)
    gateway.errors[("create_policy", "B")] = AuthorizationError("denied", status_code=403)
    await ExecutePhase(gateway, ledger).run(ORG_ID)
    del gateway.errors[("create_policy", "B")]


async def test_only_migrated_ignores_are_deleted(ledger, gateway):
    await prepare(ledger, gateway)

    result = await CleanupPhase(gateway, ledger).run(ORG_ID)

    assert result.succeeded == 2
    assert [ignore_id for _, _, ignore_id in gateway.deleted_ignores] == ["i1", "i2"]
    assert get_ignore(ledger, "i1").deleted_at is not None
    assert get_ignore(ledger, "i3").deleted_at is None
    assert get_ignore(ledger, "loose").deleted_at is None


async def test_deleted_ignores_keep_their_rows(ledger, gateway):
    await prepare(ledger, gateway)

    await CleanupPhase(gateway, ledger).run(ORG_ID)

    i1 = get_ignore(ledger, "i1")
    assert i1.original_state
    assert i1.migrated_at is not None
    assert i1.deleted_at >= i1.migrated_at


async def test_delete_failure_is_skipped(ledger, gateway):
    await prepare(ledger, gateway)
    gateway.errors[("delete_ignore", "i1")] = AuthorizationError("denied", status_code=403)

    result = await CleanupPhase(gateway, ledger).run(ORG_ID)

    assert result.failed == 1
    assert result.succeeded == 1
    assert get_ignore(ledger, "i1").deleted_at is None
    assert get_ignore(ledger, "i2").deleted_at is not None

    del gateway.errors[("delete_ignore", "i1")]
    retry = await CleanupPhase(gateway, ledger).run(ORG_ID)
    assert retry.attempted == 1
    assert get_ignore(ledger, "i1").deleted_at is not None
