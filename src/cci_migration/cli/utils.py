"""
Utility functions for CLI commands.

This module provides helpers for console output, resolving which
organizations a command runs against and driving async phases.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from rich.console import Console

from cci_migration.cli.context import MigrationContext
from cci_migration.client.exceptions import ConfigurationError
from cci_migration.client.gateway import RemoteGateway
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)

console = Console()

T = TypeVar("T")


def echo_success(message: str) -> None:
    """Print success message in green."""
    click.secho(f"✓ {message}", fg="green")


def echo_warning(message: str) -> None:
    """Print warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    """Print info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def prepare_context(
    ctx: MigrationContext,
    org_id: str | None,
    group_id: str | None,
    api_token: str | None,
    db_path: str | None = None,
    backup_dir: str | None = None,
) -> None:
    """
    Validate the organization selection and apply command-line overrides.

    Raises:
        click.UsageError: If not exactly one of --org-id/--group-id is given
        ConfigurationError: If no API token is available
    """
    if bool(org_id) == bool(group_id):
        raise click.UsageError("Exactly one of --org-id or --group-id is required")

    ctx.apply_overrides(api_token=api_token, db_path=db_path, backup_dir=backup_dir)
    ctx.require_token()


def resolve_org_ids(ctx: MigrationContext, org_id: str | None, group_id: str | None) -> list[str]:
    """
    Organizations a non-gather command runs against.

    A group expands to the organizations recorded by a previous gather.

    Raises:
        ConfigurationError: If the group has no recorded organizations
    """
    if org_id:
        return [org_id]

    organizations = ctx.ledger.get_organizations_by_group(group_id)
    if not organizations:
        raise ConfigurationError(
            f"No organizations recorded for group {group_id}. Run 'cci-bridge gather' first."
        )
    logger.debug("group_expanded", group_id=group_id, organizations=len(organizations))
    return [organization.id for organization in organizations]


def run_async(factory: Callable[[], Awaitable[T]]) -> T:
    """Run an async command body to completion."""
    return asyncio.run(factory())


async def with_gateway(
    ctx: MigrationContext, work: Callable[[RemoteGateway], Awaitable[T]]
) -> T:
    """Create the remote gateway, run work with it and close it afterwards."""
    gateway = ctx.create_gateway()
    if hasattr(gateway, "__aenter__"):
        async with gateway:  # type: ignore[attr-defined]
            return await work(gateway)
    return await work(gateway)
