"""Rich color names for cci-bridge console output."""

from cci_migration.migration.status import (
    CLEANUP_IN_PROGRESS,
    COLLECTION_COMPLETE,
    EXECUTION_IN_PROGRESS,
    MIGRATION_COMPLETE,
    NOT_STARTED,
    PLANNING_COMPLETE,
    RETEST_IN_PROGRESS,
)


class MigrationColors:
    """Palette shared by phase summaries, ledger previews and status views.

    Reference: https://rich.readthedocs.io/en/stable/appendix/colors.html
    """

    # Messages
    INFO = "cyan"
    SUCCESS = "green"
    WARNING = "yellow"
    ERROR = "red"
    DEBUG = "dim"

    # Tables
    BORDER = "blue"
    LABEL = "bold"
    PHASE = "magenta"
    METRIC = "light_steel_blue"
    RESOURCE_COUNT = "bright_cyan"
    SKIPPED = "dark_orange"
    TIME = "bright_magenta"

    # Overall status, by label
    STATUS = {
        NOT_STARTED: "dim",
        COLLECTION_COMPLETE: "cyan",
        PLANNING_COMPLETE: "cyan",
        EXECUTION_IN_PROGRESS: "yellow",
        RETEST_IN_PROGRESS: "yellow",
        CLEANUP_IN_PROGRESS: "yellow",
        MIGRATION_COMPLETE: "bold green",
    }

    @classmethod
    def for_status(cls, label: str) -> str:
        return cls.STATUS.get(label, cls.WARNING)
