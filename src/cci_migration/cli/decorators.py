"""
Decorators for CLI commands.

This module provides decorators for error handling, context passing,
the shared organization/credential options and confirmation prompts.
"""

import functools
from collections.abc import Callable

import click

from cci_migration.cli.context import MigrationContext
from cci_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    MigrationError,
    StateError,
)
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass MigrationContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: MigrationContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        migration_ctx: MigrationContext = click_ctx.obj
        return f(migration_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to handle common errors in CLI commands.

    Per-item failures never reach here; only phase-level failures do.

    Exit codes:
        0: Success
        1: General error
        2: Configuration error
        3: Authentication error
        4: API error
        5: State error
        6: Migration phase error
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except click.exceptions.Exit:
            raise

        except click.ClickException:
            raise

        except ConfigurationError as e:
            logger.error("Configuration error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        except AuthenticationError as e:
            logger.error("Authentication error", error=str(e))
            click.echo(f"Authentication Error: {e}", err=True)
            click.echo("\nPlease verify the API token (--api-token or SNYK_TOKEN).", err=True)
            raise click.exceptions.Exit(3) from e

        except APIError as e:
            logger.error("API error", error=str(e), status_code=e.status_code)
            click.echo(f"API Error: {e}", err=True)
            if e.status_code:
                click.echo(f"\nResponse status: {e.status_code}", err=True)
            raise click.exceptions.Exit(4) from e

        except StateError as e:
            logger.error("State error", error=str(e))
            click.echo(f"State Error: {e}", err=True)
            click.echo(
                "\nThere was an error accessing the migration ledger. "
                "Restore a backup with 'cci-bridge restore' if it is corrupted.",
                err=True,
            )
            raise click.exceptions.Exit(5) from e

        except MigrationError as e:
            logger.error("Migration error", error=str(e))
            click.echo(f"Migration Error: {e}", err=True)
            raise click.exceptions.Exit(6) from e

        except Exception as e:
            logger.error("Unexpected error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(1) from e

    return wrapper


def org_options(f: Callable) -> Callable:
    """
    Add the options shared by every phase command.

    Adds --org-id/--group-id (exactly one required), --api-token,
    --db-path and --backup-dir.
    """
    options = [
        click.option("--org-id", help="Snyk organization ID"),
        click.option("--group-id", help="Snyk group ID (runs every organization of the group)"),
        click.option(
            "--api-token",
            envvar="SNYK_TOKEN",
            help="Snyk API token (or set SNYK_TOKEN)",
        ),
        click.option(
            "--db-path",
            envvar="CCI_BRIDGE_DB_PATH",
            help="Path to the migration ledger database",
        ),
        click.option(
            "--backup-dir",
            envvar="CCI_BRIDGE_BACKUP_DIR",
            help="Directory for ledger backups",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def confirm_action(
    message: str = "Do you want to continue?",
    abort_message: str = "Operation cancelled.",
) -> Callable:
    """
    Decorator to prompt for confirmation before executing a command.

    Skipped when the command was given --yes.
    """

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            ctx = click.get_current_context()
            if ctx.params.get("yes", False):
                return f(*args, **kwargs)

            if not click.confirm(message):
                click.echo(abort_message)
                raise click.exceptions.Exit(0)

            return f(*args, **kwargs)

        return wrapper

    return decorator
