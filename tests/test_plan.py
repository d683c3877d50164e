"""Tests for the plan phase."""

import re

import pytest
from conftest import ORG_ID, OTHER_ORG_ID, add_ignore, get_ignore, policies_of, ts
from sqlalchemy import update

from cci_migration.client.exceptions import LedgerLockedError, MigrationError
from cci_migration.config import PlanConfig
from cci_migration.migration.models import Ignore
from cci_migration.migration.planner import (
    PlanPhase,
    build_policy_reason,
    new_internal_policy_id,
    preview_plan,
)


def test_internal_id_format():
    assert re.fullmatch(r"policy-[0-9a-f]{32}", new_internal_policy_id())
    assert new_internal_policy_id() != new_internal_policy_id()


def test_wont_fix_selected_over_earlier_temporary(ledger):
    add_ignore(ledger, "i1", asset_key="A", ignore_type="temporary", created="2023-01-01")
    add_ignore(ledger, "i2", asset_key="A", ignore_type="wont-fix", created="2023-06-01")

    result = PlanPhase(ledger).run(ORG_ID)

    [policy] = policies_of(ledger)
    assert result.succeeded == 1
    assert policy.asset_key == "A"
    assert policy.policy_type == "wont-fix"
    assert set(policy.source_ignore_ids) == {"i1", "i2"}
    assert policy.external_id is None

    i1, i2 = get_ignore(ledger, "i1"), get_ignore(ledger, "i2")
    assert i2.selected_for_migration is True
    assert i1.selected_for_migration is False
    assert i1.internal_policy_id == i2.internal_policy_id == policy.internal_id


def test_policy_reason_lists_every_source(ledger):
    add_ignore(ledger, "i1", ignore_type="temporary", created="2023-01-01", reason="later")
    add_ignore(ledger, "i2", ignore_type="wont-fix", created="2023-06-01", reason="accepted risk")

    PlanPhase(ledger).run(ORG_ID)

    [policy] = policies_of(ledger)
    lines = policy.reason.split("\n")
    assert lines[0] == "accepted risk"
    assert "Migrated from the following ignores:" in lines
    assert "Ignore i1: type=temporary, created=2023-01-01, reason=later" in lines
    assert "Ignore i2: type=wont-fix, created=2023-06-01 (SELECTED), reason=accepted risk" in lines


def test_default_reason_used_when_selected_has_none(ledger):
    add_ignore(ledger, "i1", reason="")

    PlanPhase(ledger, PlanConfig(default_reason="Moved")).run(ORG_ID)

    assert policies_of(ledger)[0].reason.startswith("Moved\n\n")


def test_build_policy_reason_marks_selected_only():
    selected = Ignore(id="x", ignore_type="temporary", reason="", created_at=ts("2022-02-02"))
    other = Ignore(id="y", ignore_type="temporary", reason="old", created_at=ts("2023-03-03"))

    reason = build_policy_reason(selected, [selected, other], "Default")

    assert reason == (
        "Default\n\nMigrated from the following ignores:\n"
        "Ignore x: type=temporary, created=2022-02-02 (SELECTED), reason=\n"
        "Ignore y: type=temporary, created=2023-03-03, reason=old"
    )


def test_one_policy_per_asset_key(ledger):
    add_ignore(ledger, "a1", asset_key="A")
    add_ignore(ledger, "b1", asset_key="B")
    add_ignore(ledger, "b2", asset_key="B", ignore_type="not-vulnerable", created="2024-01-01")
    add_ignore(ledger, "none", asset_key="")

    result = PlanPhase(ledger).run(ORG_ID)

    policies = policies_of(ledger)
    assert [policy.asset_key for policy in policies] == ["A", "B"]
    assert result.details["ignores_without_asset_key"] == 1
    assert result.details["conflicting_groups"] == 1
    assert get_ignore(ledger, "none").internal_policy_id is None
    assert get_ignore(ledger, "b2").selected_for_migration is True


def test_replan_replaces_previous_plan(ledger):
    add_ignore(ledger, "i1", asset_key="A")
    phase = PlanPhase(ledger)
    phase.run(ORG_ID)
    [first] = policies_of(ledger)

    add_ignore(ledger, "i2", asset_key="A", ignore_type="wont-fix", created="2024-01-01")
    result = phase.run(ORG_ID)

    [second] = policies_of(ledger)
    assert result.details["policies_removed"] == 1
    assert second.internal_id != first.internal_id
    assert get_ignore(ledger, "i1").selected_for_migration is False
    assert get_ignore(ledger, "i1").internal_policy_id == second.internal_id
    assert get_ignore(ledger, "i2").selected_for_migration is True


def test_replan_leaves_other_orgs_untouched(ledger):
    add_ignore(ledger, "a1", asset_key="A", org_id=ORG_ID)
    add_ignore(ledger, "b1", asset_key="A", org_id=OTHER_ORG_ID, project_id="proj-b")
    phase = PlanPhase(ledger)
    phase.run(OTHER_ORG_ID)
    [other_policy] = policies_of(ledger, OTHER_ORG_ID)
    other_ignore = get_ignore(ledger, "b1")

    phase.run(ORG_ID)
    phase.run(ORG_ID)

    [still_there] = policies_of(ledger, OTHER_ORG_ID)
    assert still_there.internal_id == other_policy.internal_id
    assert get_ignore(ledger, "b1").internal_policy_id == other_ignore.internal_policy_id
    assert get_ignore(ledger, "b1").selected_for_migration is True
    assert len(policies_of(ledger, ORG_ID)) == 1


def test_group_failure_is_skipped(ledger, monkeypatch):
    add_ignore(ledger, "a1", asset_key="A")
    add_ignore(ledger, "b1", asset_key="B")
    phase = PlanPhase(ledger)
    original = phase._plan_group

    def flaky(org_id, asset_key, group):
        if asset_key == "A":
            raise LedgerLockedError("database is locked")
        return original(org_id, asset_key, group)

    monkeypatch.setattr(phase, "_plan_group", flaky)

    result = phase.run(ORG_ID)

    assert result.failed == 1
    assert result.succeeded == 1
    assert [policy.asset_key for policy in policies_of(ledger)] == ["B"]


def test_cleanup_failure_aborts_phase(ledger, monkeypatch):
    add_ignore(ledger, "a1", asset_key="A")

    def broken(work, description=""):
        raise LedgerLockedError("database is locked")

    monkeypatch.setattr(ledger, "run_in_transaction", broken)

    with pytest.raises(MigrationError, match="failed to commit cleanup transaction"):
        PlanPhase(ledger).run(ORG_ID)


def test_plan_resets_selection_flags(ledger):
    add_ignore(ledger, "i1", asset_key="A")
    ledger.run_in_transaction(
        lambda session: session.execute(
            update(Ignore)
            .where(Ignore.id == "i1")
            .values(selected_for_migration=True, internal_policy_id="policy-stale")
        )
    )
    add_ignore(ledger, "i2", asset_key="")
    ledger.run_in_transaction(
        lambda session: session.execute(
            update(Ignore)
            .where(Ignore.id == "i2")
            .values(selected_for_migration=True, internal_policy_id="policy-stale")
        )
    )

    PlanPhase(ledger).run(ORG_ID)

    i2 = get_ignore(ledger, "i2")
    assert i2.selected_for_migration is False
    assert i2.internal_policy_id is None
    assert get_ignore(ledger, "i1").internal_policy_id != "policy-stale"


def test_preview_plan_counts_selected(ledger):
    add_ignore(ledger, "i1", asset_key="A")
    add_ignore(ledger, "i2", asset_key="A", created="2024-01-01")
    add_ignore(ledger, "i3", asset_key="B")
    PlanPhase(ledger).run(ORG_ID)

    preview = preview_plan(ledger, ORG_ID)

    assert len(preview.policies) == 2
    assert preview.selected_ignores == 2
