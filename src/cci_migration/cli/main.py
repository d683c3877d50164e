"""
Main CLI entry point for CCI Bridge.

This module provides the command-line interface for migrating Snyk Code
legacy ignores to consistent-ignore policies.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from cci_migration import __version__
from cci_migration.cli.commands import backup as backup_commands
from cci_migration.cli.commands import cleanup as cleanup_commands
from cci_migration.cli.commands import execute as execute_commands
from cci_migration.cli.commands import gather as gather_commands
from cci_migration.cli.commands import plan as plan_commands
from cci_migration.cli.commands import retest as retest_commands
from cci_migration.cli.commands import rollback as rollback_commands
from cci_migration.cli.commands import status as status_commands
from cci_migration.cli.context import MigrationContext
from cci_migration.client.exceptions import ConfigurationError
from cci_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)

DEFAULT_LOG_FILE = "logs/cci-migration.log"


@click.group()
@click.version_option(version=__version__, prog_name="cci-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="CCI_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="CCI_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    envvar="CCI_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """CCI Bridge - Migrate Snyk Code ignores to consistent-ignore policies.

    The migration runs as resumable phases over a local ledger:

    gather → plan → execute → retest → cleanup

    Examples:

        # Collect an organization
        cci-bridge gather --org-id <org> --api-token <token>

        # Plan and create policies
        cci-bridge plan --org-id <org>
        cci-bridge execute --org-id <org>

        # Check progress
        cci-bridge status --org-id <org>
    """
    if ctx.obj is None:
        ctx.obj = MigrationContext(config_path=config, log_level=log_level, log_file=log_file)
    else:
        ctx.obj.config_path = config or ctx.obj.config_path
        ctx.obj.log_level = log_level
        ctx.obj.log_file = log_file

    migration_ctx: MigrationContext = ctx.obj
    try:
        logging_config = migration_ctx.config.logging
    except ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint="--config") from e

    effective_log_file = str(log_file) if log_file else (logging_config.file or DEFAULT_LOG_FILE)
    configure_logging(
        level=log_level,
        log_format=logging_config.format,
        log_file=effective_log_file,
        file_level=logging_config.file_level,
    )
    ctx.call_on_close(migration_ctx.cleanup)

    logger.debug(
        "CLI initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


# Collection
cli.add_command(gather_commands.gather)
cli.add_command(gather_commands.verify)
cli.add_command(gather_commands.print_collection)
cli.add_command(backup_commands.backup)
cli.add_command(backup_commands.restore)

# Migration phases
cli.add_command(plan_commands.plan)
cli.add_command(plan_commands.print_plan)
cli.add_command(execute_commands.execute)
cli.add_command(retest_commands.retest)
cli.add_command(cleanup_commands.cleanup)

# Inspection and recovery
cli.add_command(status_commands.status)
cli.add_command(rollback_commands.rollback)


def main() -> int:
    """Main entry point for CLI."""
    try:
        exit_code = cli(standalone_mode=False)
        return exit_code if isinstance(exit_code, int) else 0
    except click.exceptions.Exit as e:
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:
        logger.error("Unexpected error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
