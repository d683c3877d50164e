"""Tests for ledger backup/restore helpers and the phase deadline."""

import os
from datetime import datetime

import pytest
from conftest import ORG_ID, add_ignore

from cci_migration.client.exceptions import ConfigurationError, PhaseTimeoutError
from cci_migration.migration.database import (
    create_database_backup,
    find_latest_backup,
    restore_database_backup,
    sqlite_path_from_url,
    to_ledger_datetime,
)
from cci_migration.migration.ledger import Ledger
from cci_migration.utils.deadline import Deadline


def test_backup_and_restore_round_trip(tmp_path, state_config):
    backup_dir = tmp_path / "backups"
    with Ledger(state_config) as ledger:
        add_ignore(ledger, "i1")
    backup = create_database_backup(state_config.database_url, backup_dir)

    with Ledger(state_config) as ledger:
        add_ignore(ledger, "i2")

    source, previous = restore_database_backup(state_config.database_url, backup_dir)

    assert source == backup
    assert previous is not None and previous.exists()
    with Ledger(state_config) as ledger:
        assert [ignore.id for ignore in ledger.get_ignores_by_org(ORG_ID)] == ["i1"]


def test_backup_requires_existing_ledger(tmp_path):
    with pytest.raises(ConfigurationError):
        create_database_backup(f"sqlite:///{tmp_path / 'absent.db'}", tmp_path / "backups")


def test_latest_backup_by_mtime(tmp_path):
    older = tmp_path / "cci-migration-20240101-000000.db"
    newer = tmp_path / "cci-migration-20230101-000000.db"
    older.write_bytes(b"a")
    newer.write_bytes(b"b")
    os.utime(older, (1_000, 1_000))
    os.utime(newer, (2_000, 2_000))

    assert find_latest_backup(tmp_path) == newer


def test_restore_without_backups(tmp_path):
    with pytest.raises(ConfigurationError):
        restore_database_backup(f"sqlite:///{tmp_path / 'ledger.db'}", tmp_path / "none")


def test_backup_needs_sqlite_file():
    with pytest.raises(ValueError):
        sqlite_path_from_url("postgresql://localhost/ledger")
    with pytest.raises(ValueError):
        sqlite_path_from_url("sqlite:///:memory:")


def test_naive_datetimes_stored_as_is():
    value = datetime(2024, 5, 1, 8, 30)
    assert to_ledger_datetime(value) is value
    assert to_ledger_datetime(None) is None


def test_deadline_expiry():
    now = [0.0]
    deadline = Deadline(10, phase="execute", clock=lambda: now[0])

    deadline.check()
    now[0] = 10.5

    assert deadline.remaining == 0.0
    with pytest.raises(PhaseTimeoutError) as exc_info:
        deadline.check(completed=4)
    assert exc_info.value.completed == 4
    assert "execute" in str(exc_info.value)


def test_deadline_without_timeout_never_expires():
    deadline = Deadline(None, clock=lambda: 1e9)

    assert deadline.remaining is None
    assert deadline.expired is False
