"""
Migration engine for cci-bridge.

This module provides the ledger and the phases that move legacy ignores
to consistent-ignore policies: gather, plan, execute, retest, cleanup,
rollback and status.
"""

from cci_migration.migration.cleanup import CleanupPhase
from cci_migration.migration.executor import ExecutePhase
from cci_migration.migration.gather import GatherPhase, preview_collection, verify_collection
from cci_migration.migration.ledger import Ledger
from cci_migration.migration.models import (
    Base,
    CollectionMetadata,
    Ignore,
    Issue,
    Organization,
    Policy,
    Project,
)
from cci_migration.migration.planner import PlanPhase, preview_plan
from cci_migration.migration.resolver import resolve_conflict
from cci_migration.migration.results import PhaseResult
from cci_migration.migration.retest import RetestPhase
from cci_migration.migration.rollback import RollbackPhase, reset_org
from cci_migration.migration.status import StatusReport, collect_status, percentage

__all__ = [
    # Models
    "Base",
    "Ignore",
    "Issue",
    "Project",
    "Policy",
    "Organization",
    "CollectionMetadata",
    # Ledger
    "Ledger",
    "PhaseResult",
    "resolve_conflict",
    # Phases
    "GatherPhase",
    "verify_collection",
    "preview_collection",
    "PlanPhase",
    "preview_plan",
    "ExecutePhase",
    "RetestPhase",
    "CleanupPhase",
    "RollbackPhase",
    "reset_org",
    # Status
    "StatusReport",
    "collect_status",
    "percentage",
]
