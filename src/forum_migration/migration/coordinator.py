"""Migration coordinator for orchestrating the full import pipeline.

This module provides the coordinator that runs every phase of a migration
in a fixed order: environment snapshot and override, bulk imports in
dependency order, the deferred relationship sweeps, environment restore,
access rules, post-process hooks and teardown.

Bulk import phases are checkpointed: the mark is written before the first
side effect and removed after success. A run that stops half way leaves the
mark behind, and ``resume()`` reruns that phase and everything after it.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from forum_migration.client.exceptions import PhaseFailedError
from forum_migration.migration.context import RunContext
from forum_migration.migration.entities import IMPORT_ORDER, EntityType, get_info
from forum_migration.migration.environment import EnvironmentManager
from forum_migration.migration.flush import TargetFlusher
from forum_migration.migration.hooks import run_post_process_hooks
from forum_migration.migration.importer import create_importer
from forum_migration.migration.resolver import DeferredRelationshipResolver
from forum_migration.reporting.events import MigrationObserver, RunSummary
from forum_migration.reporting.report import generate_migration_report
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Phase:
    """One named step of a run.

    ``entity_type`` is set for bulk import phases, which are the only
    checkpointed ones. ``follows`` names a checkpointed phase whose skip
    also skips this one.
    """

    name: str
    description: str
    entity_type: EntityType | None = None
    follows: str | None = None

    @property
    def checkpointed(self) -> bool:
        return self.entity_type is not None


def _import_phase(entity_type: EntityType) -> Phase:
    info = get_info(entity_type)
    return Phase(info.checkpoint_name, f"Import {info.description.lower()}", entity_type)


PHASES: tuple[Phase, ...] = (
    Phase("backup_environment", "Snapshot target settings"),
    Phase("override_environment", "Apply temporary target settings"),
    _import_phase(EntityType.GROUP),
    Phase("cooldown", "Let the target settle after group creation"),
    _import_phase(EntityType.CONTAINER),
    Phase(
        "allow_guests_write",
        "Open containers to guest writes",
        follows=get_info(EntityType.CONTAINER).checkpoint_name,
    ),
    *(_import_phase(entity_type) for entity_type in IMPORT_ORDER[2:]),
    Phase("fix_container_hierarchy", "Link containers to parents, disable flagged ones"),
    Phase("fix_thread_teasers", "Recompute thread teasers"),
    Phase("replay_accounts", "Replay bans, read state, follows and friendships"),
    Phase("fix_thread_timestamps_and_relock", "Relock threads and sort by latest post"),
    Phase("restore_environment", "Restore target settings"),
    Phase("disallow_guests_write", "Close containers to guest writes"),
    Phase("allow_guests_read", "Let guests read every container"),
    Phase(
        "fix_group_ownership_and_restrict_containers",
        "Grant group owners and restrict group containers",
    ),
    Phase("post_process_hooks", "Source post-process hooks"),
    Phase("teardown", "Finish the run"),
)

PHASE_NAMES: tuple[str, ...] = tuple(phase.name for phase in PHASES)


def get_phase(name: str) -> Phase:
    """Look up a phase by name.

    Raises:
        ValueError: If no phase has that name
    """
    for phase in PHASES:
        if phase.name == name:
            return phase
    raise ValueError(f"Unknown phase: {name}")


class MigrationCoordinator:
    """Coordinates the full migration pipeline.

    Usage:
        ctx = RunContext.from_config(config, target, source, blobs)
        coordinator = MigrationCoordinator(ctx, observers=[RichProgressObserver()])
        summary = await coordinator.run(flush=False)
        # after a crash
        summary = await coordinator.resume()
    """

    def __init__(
        self,
        ctx: RunContext,
        observers: list[MigrationObserver] | None = None,
        generate_report: bool = False,
    ):
        """Initialize migration coordinator.

        Args:
            ctx: Run context holding configuration and collaborators
            observers: Observers subscribed to the event bus
            generate_report: Whether to write JSON and Markdown reports
        """
        self.ctx = ctx
        self.events = ctx.events
        for observer in observers or []:
            self.events.subscribe(observer)
        self.generate_report = generate_report
        self.environment = EnvironmentManager(ctx)
        self.resolver = DeferredRelationshipResolver(ctx)
        self.flusher = TargetFlusher(ctx)
        self.report_files: dict[str, str] = {}

        self._actions: dict[str, Callable[[], Awaitable[object]]] = {
            "backup_environment": self.environment.backup,
            "override_environment": self.environment.override,
            "cooldown": self._cooldown,
            "allow_guests_write": self.environment.allow_guests_write,
            "fix_container_hierarchy": self.resolver.fix_container_hierarchy,
            "fix_thread_teasers": self.resolver.fix_thread_teasers,
            "replay_accounts": self.resolver.replay_accounts,
            "fix_thread_timestamps_and_relock": self.resolver.fix_thread_timestamps_and_relock,
            "restore_environment": self.environment.restore,
            "disallow_guests_write": self.environment.disallow_guests_write,
            "allow_guests_read": self.environment.allow_guests_read,
            "fix_group_ownership_and_restrict_containers": (
                self.resolver.fix_group_ownership_and_restrict_containers
            ),
            "post_process_hooks": lambda: run_post_process_hooks(self.ctx),
            "teardown": self._teardown,
        }

    async def run(self, flush: bool = False) -> RunSummary:
        """Execute the full pipeline.

        Args:
            flush: Empty the target and forget every checkpoint first

        Returns:
            Run summary

        Raises:
            EnvironmentBackupError: If the settings snapshot is unusable
            PhaseFailedError: If a phase aborts the run
        """
        return await self._run(flush=flush, resumed=False)

    async def resume(self) -> RunSummary:
        """Execute the pipeline again, skipping phases finished before the interruption."""
        return await self._run(flush=False, resumed=True)

    def phases_to_skip(self) -> list[str]:
        """Checkpointed phases that finished before the first unfinished one.

        Nothing is skipped when no phase is dirty: the previous run either
        completed or never started, and rerunning is safe.
        """
        dirty = set(self.ctx.checkpoints.dirty_phases())
        if not dirty:
            return []

        first_dirty = next(
            (index for index, phase in enumerate(PHASES) if phase.name in dirty), None
        )
        if first_dirty is None:
            return []

        skipped = [
            phase.name
            for phase in PHASES[:first_dirty]
            if phase.checkpointed and phase.name not in dirty
        ]
        skipped.extend(
            phase.name for phase in PHASES if phase.follows and phase.follows in skipped
        )
        return skipped

    async def _run(self, flush: bool, resumed: bool) -> RunSummary:
        summary = self.ctx.begin(flush=flush, resumed=resumed)
        self.events.log("importer.start")
        if resumed:
            self.events.log("importer.resume")

        logger.info("migration_started", flush=flush, resumed=resumed, total_phases=len(PHASES))

        try:
            try:
                self.environment.preflight()
            except Exception as e:
                self._record_failure("backup_environment", e)
                raise

            if flush:
                await self._flush()
            else:
                self.events.log("Skipping data flush")

            skipped = set(self.phases_to_skip())
            for phase in PHASES:
                if phase.name in skipped:
                    self._skip_phase(phase)
                    continue
                await self._execute_phase(phase)

            summary.success = True
        finally:
            summary.finished_at = datetime.now(UTC)
            logger.info(
                "migration_completed",
                success=summary.success,
                imported=summary.total_imported,
                skipped=summary.total_skipped,
                errors=len(summary.errors),
            )
            if self.generate_report:
                self._write_report(summary)

        self.events.run_complete(summary)
        return summary

    async def _flush(self) -> None:
        try:
            await self.flusher.flush()
            self.ctx.checkpoints.clear_all()
        except Exception as e:
            self._record_failure("flush", e)
            raise PhaseFailedError("flush", e) from e

    def _skip_phase(self, phase: Phase) -> None:
        self.ctx.summary.skipped_phases.append(phase.name)
        self.ctx.stats(phase.name).status = "skipped"
        self.events.warn(f"Skipping {phase.name} phase", skipped_phase=phase.name)

    async def _execute_phase(self, phase: Phase) -> None:
        """Run one phase, keeping its checkpoint dirty if it fails.

        Raises:
            PhaseFailedError: Wrapping whatever aborted the phase
        """
        stats = self.ctx.stats(phase.name)
        stats.status = "running"
        stats.started_at = datetime.now(UTC)

        logger.info("phase_starting", phase_name=phase.name, description=phase.description)
        self.events.phase_changed(phase.name)

        try:
            if phase.checkpointed:
                self.ctx.checkpoints.mark_dirty(phase.name)
                await self._import(phase.entity_type)
                self.ctx.checkpoints.clear(phase.name)
            else:
                await self._actions[phase.name]()
        except Exception as e:
            stats.finished_at = datetime.now(UTC)
            stats.status = "failed"
            self._record_failure(phase.name, e)
            raise PhaseFailedError(phase.name, e) from e

        stats.finished_at = datetime.now(UTC)
        stats.status = "completed"
        logger.info(
            "phase_completed",
            phase_name=phase.name,
            duration_seconds=round(stats.duration_seconds, 3),
        )

    async def _import(self, entity_type: EntityType) -> None:
        importer = create_importer(entity_type, self.ctx)
        await importer.run()

    def _record_failure(self, phase_name: str, error: BaseException) -> None:
        logger.error("phase_failed", phase_name=phase_name, error=str(error), exc_info=True)
        self.ctx.summary.errors.append(
            {
                "phase": phase_name,
                "error": f"{type(error).__name__}: {error}",
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        self.events.error(error, phase_name)

    async def _cooldown(self) -> None:
        seconds = self.ctx.performance.cooldown_seconds
        self.events.log(f"cooling down for {seconds} seconds", seconds=seconds)
        await asyncio.sleep(seconds)

    async def _teardown(self) -> None:
        self.events.progress(1, 1)
        self.events.log("importer.complete")

    def _write_report(self, summary: RunSummary) -> None:
        paths = self.ctx.config.paths
        run_id = summary.started_at.strftime("%Y%m%d_%H%M%S")
        try:
            self.report_files = generate_migration_report(
                run_id=run_id,
                summary=summary,
                output_dir=Path(paths.base_dir) / paths.report_dir,
            )
        except OSError as e:
            logger.error("report_generation_failed", error=str(e))
