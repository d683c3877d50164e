"""
Database initialization, session management and file backups for the ledger.

This module provides functions for creating the ledger engine, opening
transactional sessions that translate driver errors into ledger errors,
and copying the SQLite ledger file to and from a backup directory.
"""

import shutil
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import Engine, create_engine, event, pool
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from cci_migration.client.exceptions import (
    CCIMigrationError,
    ConfigurationError,
    LedgerLockedError,
    StateError,
)
from cci_migration.migration.models import Base
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)

BACKUP_PREFIX = "cci-migration-"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the ledger."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_ledger_datetime(value: datetime | None) -> datetime | None:
    """Normalize a datetime to naive UTC for storage."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(
    database_url: str,
    echo: bool = False,
    busy_timeout: float = 5.0,
) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or postgresql://)
        echo: Whether to log SQL statements
        busy_timeout: Seconds SQLite waits for a lock before failing

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        is_sqlite = database_url.startswith("sqlite")

        if is_sqlite:
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

        logger.debug(
            "Database engine created",
            database_type="sqlite" if is_sqlite else engine.dialect.name,
        )
        return engine

    except Exception as e:
        logger.error("Failed to create database engine", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to create database engine: {e}") from e


def init_database(database_url: str, echo: bool = False, busy_timeout: float = 5.0) -> Engine:
    """
    Create the engine and all ledger tables.

    Idempotent: existing tables are left untouched.

    Raises:
        ConfigurationError: If database initialization fails
    """
    if database_url.startswith("sqlite:///"):
        db_file = database_url[len("sqlite:///") :]
        if db_file and db_file != ":memory:":
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)

    engine = create_database_engine(database_url, echo=echo, busy_timeout=busy_timeout)

    try:
        Base.metadata.create_all(engine)
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to initialize database: {e}") from e

    logger.debug(
        "Database initialized successfully",
        database_url=database_url,
        tables=len(Base.metadata.tables),
    )
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def is_lock_error(error: BaseException) -> bool:
    """Check whether a driver error means the database is locked or busy."""
    if not isinstance(error, OperationalError):
        return False
    message = str(error).lower()
    return "locked" in message or "busy" in message


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for one ledger transaction.

    Commits on success and rolls back on exception. Lock errors surface as
    LedgerLockedError so callers can retry them; other failures become
    StateError. Errors that are already CCIMigrationError pass through.

    Usage:
        with session_scope(factory) as session:
            session.add(obj)

    Raises:
        LedgerLockedError: If the database is locked or busy
        StateError: If any other database operation fails
    """
    session = session_factory()

    try:
        yield session
        session.commit()

    except CCIMigrationError:
        session.rollback()
        raise

    except Exception as e:
        session.rollback()
        if is_lock_error(e):
            logger.warning("Database locked, transaction rolled back", error=str(e))
            raise LedgerLockedError(f"Database is locked: {e}") from e
        logger.error("Database session rolled back due to error", error=str(e))
        if isinstance(e, SQLAlchemyError):
            raise StateError(f"Database operation failed: {e}") from e
        raise StateError(f"Ledger operation failed: {e}") from e

    finally:
        session.close()


def sqlite_path_from_url(database_url: str) -> Path:
    """
    Extract the file path from a SQLite URL.

    Raises:
        ValueError: If not a file-backed SQLite database
    """
    if not database_url.startswith("sqlite:///"):
        raise ValueError("Database backup only supported for SQLite databases")
    db_path = database_url[len("sqlite:///") :]
    if not db_path or db_path == ":memory:":
        raise ValueError("Database backup requires a file-backed SQLite database")
    return Path(db_path)


def create_database_backup(database_url: str, backup_dir: str | Path) -> Path:
    """
    Copy the SQLite ledger to a timestamped file in the backup directory.

    Args:
        database_url: Database connection URL (sqlite only)
        backup_dir: Directory receiving ``cci-migration-YYYYMMDD-HHMMSS.db``

    Returns:
        Path of the created backup

    Raises:
        ConfigurationError: If the ledger file is missing or the copy fails
    """
    db_path = sqlite_path_from_url(database_url)
    if not db_path.exists():
        raise ConfigurationError(f"Database file not found: {db_path}")

    backup_dir = Path(backup_dir)
    timestamp = datetime.now().strftime(BACKUP_TIMESTAMP_FORMAT)
    backup_path = backup_dir / f"{BACKUP_PREFIX}{timestamp}.db"

    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        # copyfile gives the backup a fresh mtime, which find_latest_backup relies on
        shutil.copyfile(db_path, backup_path)
    except OSError as e:
        logger.error("Failed to create database backup", error=str(e))
        raise ConfigurationError(f"Failed to create database backup: {e}") from e

    logger.info("Database backup created", source=str(db_path), backup=str(backup_path))
    return backup_path


def find_latest_backup(backup_dir: str | Path) -> Path:
    """
    Return the most recently written ``*.db`` file in the backup directory.

    Raises:
        ConfigurationError: If the directory is missing or holds no backups
    """
    backup_dir = Path(backup_dir)
    if not backup_dir.is_dir():
        raise ConfigurationError(f"Backup directory not found: {backup_dir}")

    candidates = [path for path in backup_dir.iterdir() if path.is_file() and path.suffix == ".db"]
    if not candidates:
        raise ConfigurationError(f"No backup files found in {backup_dir}")

    return max(candidates, key=lambda path: (path.stat().st_mtime, path.name))


def restore_database_backup(
    database_url: str,
    backup_dir: str | Path,
    backup_file: str | Path | None = None,
) -> tuple[Path, Path | None]:
    """
    Replace the SQLite ledger with a backup.

    The current ledger, if present, is first copied to
    ``<db>.before-restore.YYYYMMDD-HHMMSS``.

    Args:
        database_url: Database connection URL (sqlite only)
        backup_dir: Directory holding backups
        backup_file: Explicit backup; relative names resolve inside backup_dir.
            Defaults to the latest backup.

    Returns:
        Tuple of (restored backup path, safety copy path or None)

    Raises:
        ConfigurationError: If the backup is missing or a copy fails
    """
    db_path = sqlite_path_from_url(database_url)

    if backup_file is None:
        source = find_latest_backup(backup_dir)
    else:
        source = Path(backup_file)
        if not source.is_absolute():
            source = Path(backup_dir) / source

    if not source.exists():
        raise ConfigurationError(f"Backup file not found: {source}")

    safety_copy: Path | None = None
    try:
        if db_path.exists():
            timestamp = datetime.now().strftime(BACKUP_TIMESTAMP_FORMAT)
            safety_copy = db_path.with_name(f"{db_path.name}.before-restore.{timestamp}")
            shutil.copy2(db_path, safety_copy)
        else:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, db_path)
    except OSError as e:
        logger.error("Failed to restore database backup", error=str(e), backup=str(source))
        raise ConfigurationError(f"Failed to restore database: {e}") from e

    logger.info(
        "Database restored",
        backup=str(source),
        database=str(db_path),
        previous=str(safety_copy) if safety_copy else None,
    )
    return source, safety_copy
