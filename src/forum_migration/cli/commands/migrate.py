"""
Migration execution commands.

This module provides the commands that run, resume and inspect a forum
migration.
"""

import asyncio

import click

from forum_migration.cli.context import MigrationContext
from forum_migration.cli.decorators import (
    confirm_action,
    handle_errors,
    pass_context,
    requires_config,
)
from forum_migration.cli.utils import (
    echo_info,
    echo_success,
    echo_warning,
    format_count,
    format_duration,
    print_table,
)
from forum_migration.migration.checkpoint import CheckpointStore
from forum_migration.migration.context import RunContext
from forum_migration.migration.coordinator import PHASES, MigrationCoordinator
from forum_migration.migration.entities import IMPORT_ORDER, get_info
from forum_migration.migration.ledger import ImportLedger
from forum_migration.reporting.colors import MigrationColors
from forum_migration.reporting.events import RunSummary
from forum_migration.reporting.progress import RichProgressObserver
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _execute(
    ctx: MigrationContext,
    flush: bool,
    resumed: bool,
    disable_progress: bool,
    report: bool,
) -> tuple[RunSummary, dict[str, str]]:
    """Build the run context and drive the coordinator to completion."""
    config = ctx.config
    run_ctx = RunContext.from_config(
        config,
        target=ctx.target,
        source=ctx.source,
        blobs=ctx.blobs,
        database=ctx.database,
    )
    progress = RichProgressObserver(
        enabled=not (disable_progress or config.logging.disable_progress)
    )
    coordinator = MigrationCoordinator(run_ctx, observers=[progress], generate_report=report)

    with progress:
        if resumed:
            summary = asyncio.run(coordinator.resume())
        else:
            summary = asyncio.run(coordinator.run(flush=flush))

    return summary, coordinator.report_files


def _status(status: str) -> str:
    color = MigrationColors.STATUS.get(status)
    return f"[{color}]{status}[/]" if color else status


def _print_summary(summary: RunSummary, report_files: dict[str, str]) -> None:
    rows = []
    for stats in summary.phases.values():
        if stats.status == "skipped":
            rows.append([stats.phase, _status(stats.status), "-", "-", "-", "-"])
            continue
        rows.append(
            [
                stats.phase,
                _status(stats.status),
                f"{format_count(stats.imported)}/{format_count(stats.total)}",
                format_count(stats.already_imported),
                format_count(stats.skipped),
                format_duration(stats.duration_seconds),
            ]
        )
    print_table(
        "Migration Summary",
        ["Phase", "Status", "Imported", "Already imported", "Skipped", "Duration"],
        rows,
    )

    click.echo()
    if summary.skipped_items:
        echo_warning(
            f"{len(summary.skipped_items)} items were skipped; see the report for details"
        )
    for fmt, path in report_files.items():
        echo_info(f"{fmt} report: {path}")
    echo_success(
        f"Migration complete: {format_count(summary.total_imported)} imported, "
        f"{format_count(summary.total_skipped)} skipped"
    )


@click.command(name="run")
@click.option(
    "--flush",
    is_flag=True,
    help="Delete imported content from the target and forget all progress first",
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompts",
)
@click.option(
    "--disable-progress",
    is_flag=True,
    help="Disable live progress display",
)
@click.option(
    "--no-report",
    is_flag=True,
    help="Do not write JSON and Markdown reports",
)
@pass_context
@requires_config
@handle_errors
@confirm_action(
    message="--flush deletes containers, threads, posts, accounts and groups on the target. Continue?",
    abort_message="Migration cancelled.",
    when="flush",
)
def run(
    ctx: MigrationContext,
    flush: bool,
    yes: bool,
    disable_progress: bool,
    no_report: bool,
) -> None:
    """Run the full migration.

    Phases that finished before an interrupted run are skipped; everything
    else runs again and leaves already imported items untouched.

    Examples:

        # Import everything
        forum-bridge run --config config.yaml

        # Start from an empty target
        forum-bridge run --flush --yes --config config.yaml
    """
    echo_info("Starting migration" + (" with flush" if flush else ""))
    summary, report_files = _execute(
        ctx, flush=flush, resumed=False, disable_progress=disable_progress, report=not no_report
    )
    click.echo()
    _print_summary(summary, report_files)


@click.command(name="resume")
@click.option(
    "--disable-progress",
    is_flag=True,
    help="Disable live progress display",
)
@click.option(
    "--no-report",
    is_flag=True,
    help="Do not write JSON and Markdown reports",
)
@pass_context
@requires_config
@handle_errors
def resume(ctx: MigrationContext, disable_progress: bool, no_report: bool) -> None:
    """Resume an interrupted migration.

    Import phases that completed before the first unfinished one are
    skipped.

    Examples:

        forum-bridge resume --config config.yaml
    """
    dirty = CheckpointStore(ctx.database).dirty_phases()
    if dirty:
        echo_info(f"Unfinished phases: {', '.join(dirty)}")
    else:
        echo_warning("No unfinished phase found; every phase will run again")

    summary, report_files = _execute(
        ctx, flush=False, resumed=True, disable_progress=disable_progress, report=not no_report
    )
    click.echo()
    _print_summary(summary, report_files)


@click.command(name="status")
@pass_context
@requires_config
@handle_errors
def status(ctx: MigrationContext) -> None:
    """Show checkpoint state and ledger counts.

    Examples:

        forum-bridge status --config config.yaml
    """
    checkpoints = CheckpointStore(ctx.database)
    dirty = set(checkpoints.dirty_phases())

    rows = []
    for phase in PHASES:
        if not phase.checkpointed:
            continue
        ledger = ImportLedger(ctx.database, phase.entity_type)
        rows.append(
            [
                phase.name,
                "unfinished" if phase.name in dirty else "clean",
                format_count(ledger.count()),
            ]
        )
    print_table("Import Phases", ["Phase", "Checkpoint", "Imported"], rows)

    click.echo()
    total = sum(ImportLedger(ctx.database, t).count() for t in IMPORT_ORDER)
    echo_info(f"{format_count(total)} records in the ledger")
    if dirty:
        names = ", ".join(sorted(dirty))
        echo_warning(f"Interrupted run detected ({names}); run 'forum-bridge resume'")
    else:
        echo_success("No unfinished phase")
    logger.debug(
        "status_shown",
        dirty=sorted(dirty),
        types=[get_info(t).name for t in IMPORT_ORDER],
    )
