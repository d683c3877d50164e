"""Tests for conflict resolution between ignores sharing an asset key."""

import itertools

import pytest
from conftest import ts

from cci_migration.migration.models import Ignore
from cci_migration.migration.resolver import priority_bucket, resolve_conflict


def make_ignore(ignore_id: str, ignore_type: str, created: str) -> Ignore:
    return Ignore(
        id=ignore_id,
        issue_id=ignore_id,
        org_id="org",
        project_id="proj",
        reason="",
        ignore_type=ignore_type,
        created_at=ts(created),
        asset_key="A",
        original_state="",
    )


def test_single_ignore_is_selected():
    only = make_ignore("i1", "something-odd", "2024-01-01")
    assert resolve_conflict([only]) is only


def test_empty_group_rejected():
    with pytest.raises(ValueError):
        resolve_conflict([])


def test_wont_fix_beats_earlier_temporary():
    temporary = make_ignore("i1", "temporary", "2023-01-01")
    wont_fix = make_ignore("i2", "wont-fix", "2023-06-01")

    assert resolve_conflict([temporary, wont_fix]).id == "i2"


def test_not_vulnerable_beats_temporary_but_not_wont_fix():
    temporary = make_ignore("t", "temporary", "2020-01-01")
    not_vulnerable = make_ignore("nv", "not-vulnerable", "2022-01-01")
    wont_fix = make_ignore("wf", "wont-fix", "2024-01-01")

    assert resolve_conflict([temporary, not_vulnerable]).id == "nv"
    assert resolve_conflict([temporary, not_vulnerable, wont_fix]).id == "wf"


def test_earliest_within_bucket_wins():
    late = make_ignore("late", "wont-fix", "2023-09-01")
    early = make_ignore("early", "wont-fix", "2023-02-01")
    temporary = make_ignore("tmp", "temporary", "2021-01-01")

    assert resolve_conflict([late, temporary, early]).id == "early"


def test_unknown_type_counts_as_temporary():
    unknown = make_ignore("unknown", "mystery", "2022-01-01")
    temporary = make_ignore("tmp", "temporary", "2023-01-01")
    not_vulnerable = make_ignore("nv", "not-vulnerable", "2024-01-01")

    assert priority_bucket("mystery") == "temporary"
    assert resolve_conflict([temporary, unknown]).id == "unknown"
    assert resolve_conflict([unknown, not_vulnerable]).id == "nv"


def test_result_independent_of_input_order():
    group = [
        make_ignore("a", "temporary", "2023-01-01"),
        make_ignore("b", "not-vulnerable", "2023-05-01"),
        make_ignore("c", "not-vulnerable", "2023-03-01"),
        make_ignore("d", "other", "2022-01-01"),
    ]
    selections = {resolve_conflict(list(order)).id for order in itertools.permutations(group)}

    assert selections == {"c"}


def test_ties_keep_input_order():
    first = make_ignore("first", "wont-fix", "2023-01-01")
    second = make_ignore("second", "wont-fix", "2023-01-01")

    assert resolve_conflict([first, second]).id == "first"
    assert resolve_conflict([second, first]).id == "second"
