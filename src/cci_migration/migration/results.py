"""Per-phase outcome summaries."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PhaseResult:
    """Counts of what a phase attempted for one organization.

    Per-item failures land in ``errors`` and never abort the phase; a
    phase-level failure is raised instead.
    """

    phase: str
    org_id: str
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def record_success(self) -> None:
        self.attempted += 1
        self.succeeded += 1

    def record_failure(self, item_id: str, error: Exception | str) -> None:
        self.attempted += 1
        self.failed += 1
        self.errors.append({"item": item_id, "error": str(error)})

    def record_skip(self) -> None:
        self.skipped += 1

    @property
    def success_rate(self) -> float:
        if self.attempted == 0:
            return 0.0
        return self.succeeded / self.attempted * 100

    def merge(self, other: "PhaseResult") -> None:
        """Fold another result's counts into this one."""
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.errors.extend(other.errors)
