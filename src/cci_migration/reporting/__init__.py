"""Terminal reporting for cci-bridge."""

from cci_migration.reporting.report import (
    render_collection_preview,
    render_metadata,
    render_phase_summary,
    render_plan,
    render_status,
    render_verify,
)

__all__ = [
    "render_collection_preview",
    "render_metadata",
    "render_phase_summary",
    "render_plan",
    "render_status",
    "render_verify",
]
