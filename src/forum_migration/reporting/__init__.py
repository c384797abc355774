"""Event bus, progress display and reports for forum migrations."""

from forum_migration.reporting.events import (
    EventBus,
    EventLevel,
    LoggingObserver,
    MigrationObserver,
    PhaseStats,
    RunSummary,
    SkippedItem,
)
from forum_migration.reporting.progress import RichProgressObserver
from forum_migration.reporting.report import MigrationReport, generate_migration_report

__all__ = [
    "EventBus",
    "EventLevel",
    "MigrationObserver",
    "LoggingObserver",
    "RichProgressObserver",
    "PhaseStats",
    "RunSummary",
    "SkippedItem",
    "MigrationReport",
    "generate_migration_report",
]
