"""Per-run context.

Everything a phase needs (configuration, collaborators, ledgers, the
checkpoint store, the event bus and the run summary) is reached through
one ``RunContext`` built at the start of a run and passed explicitly to
every importer and sweep. Nothing is stored at module level, so several
isolated runs can share one process.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from forum_migration.client.blob_store import BlobStore
from forum_migration.client.source_provider import SourceProvider
from forum_migration.client.target_store import TargetStore
from forum_migration.config import MigrationConfig, PerformanceConfig, RunConfig
from forum_migration.migration.checkpoint import CheckpointStore
from forum_migration.migration.database import StateDatabase
from forum_migration.migration.entities import EntityType, normalize_id
from forum_migration.migration.ledger import ImportLedger
from forum_migration.reporting.events import EventBus, PhaseStats, RunSummary, SkippedItem
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RunContext:
    """State and collaborators of one migration run."""

    config: MigrationConfig
    target: TargetStore
    source: SourceProvider
    blobs: BlobStore
    database: StateDatabase
    events: EventBus
    summary: RunSummary = field(default_factory=RunSummary)
    start_time: int = field(default_factory=now_ms)
    # Source id of the account mapped onto the administrator, once seen
    owner_source_id: str | None = None
    checkpoints: CheckpointStore = field(init=False)
    ledgers: dict[EntityType, ImportLedger] = field(init=False)

    def __post_init__(self) -> None:
        self.checkpoints = CheckpointStore(self.database)
        self.ledgers = {
            entity_type: ImportLedger(self.database, entity_type) for entity_type in EntityType
        }
        takeover = self.config.run.owner_takeover
        if takeover.enabled and takeover.source_id is not None:
            self.owner_source_id = normalize_id(takeover.source_id)

    @classmethod
    def from_config(
        cls,
        config: MigrationConfig,
        target: TargetStore,
        source: SourceProvider,
        blobs: BlobStore,
        events: EventBus | None = None,
        database: StateDatabase | None = None,
    ) -> "RunContext":
        """Build a context, creating the event bus and state database from config."""
        if events is None:
            events = EventBus(
                progress_interval=config.performance.progress_interval,
                console_levels=config.logging.console_events,
                subscriber_levels=config.logging.subscriber_events,
            )
        if database is None:
            database = StateDatabase(config.state.url)
        return cls(
            config=config,
            target=target,
            source=source,
            blobs=blobs,
            database=database,
            events=events,
        )

    @property
    def run(self) -> RunConfig:
        return self.config.run

    @property
    def performance(self) -> PerformanceConfig:
        return self.config.performance

    @property
    def tmp_dir(self) -> Path:
        return Path(self.config.paths.base_dir) / self.config.paths.tmp_dir

    @property
    def environment_backup_path(self) -> Path:
        return Path(self.config.paths.base_dir) / self.config.paths.environment_backup_file

    def ledger(self, entity_type: EntityType | str) -> ImportLedger:
        return self.ledgers[EntityType(entity_type)]

    def stats(self, phase: str) -> PhaseStats:
        return self.summary.phase(phase)

    def begin(self, flush: bool = False, resumed: bool = False) -> RunSummary:
        """Start a fresh summary for a new run."""
        self.summary = RunSummary(flushed=flush, resumed=resumed)
        self.start_time = now_ms()
        return self.summary

    def is_owner(self, source_id: Any, username: str | None = None) -> bool:
        """Whether a source account is the one mapped onto the administrator."""
        takeover = self.run.owner_takeover
        if not takeover.enabled:
            return False
        if self.owner_source_id is not None:
            return self.owner_source_id == normalize_id(source_id)
        return takeover.matches(source_id, username)

    def skip(
        self,
        phase: str,
        entity_type: EntityType | str,
        source_id: Any,
        reason: str,
    ) -> None:
        """Record a skipped item and warn about it."""
        entity_type = EntityType(entity_type).value
        key = normalize_id(source_id)
        self.stats(phase).skipped += 1
        self.summary.skipped_items.append(
            SkippedItem(phase=phase, entity_type=entity_type, source_id=key, reason=reason)
        )
        self.events.warn(
            "item_skipped",
            entity_type=entity_type,
            source_id=key,
            reason=reason,
        )
