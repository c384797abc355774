"""
Checkpoint management commands.

This module provides commands for viewing and clearing the per-phase
"in progress" marks a run leaves behind when it stops half way.
"""

import click

from forum_migration.cli.context import MigrationContext
from forum_migration.cli.decorators import (
    confirm_action,
    handle_errors,
    pass_context,
    requires_config,
)
from forum_migration.cli.utils import echo_error, echo_success, echo_warning, print_table
from forum_migration.migration.checkpoint import CheckpointStore
from forum_migration.migration.coordinator import PHASE_NAMES
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="checkpoint")
def checkpoint() -> None:
    """Checkpoint management commands.

    A checkpoint marks an import phase that started but never finished.
    """
    pass


@checkpoint.command(name="list")
@pass_context
@requires_config
@handle_errors
def list_checkpoints(ctx: MigrationContext) -> None:
    """List unfinished phases, oldest first.

    Examples:

        forum-bridge checkpoint list --config config.yaml
    """
    dirty = CheckpointStore(ctx.database).dirty_phases()
    if not dirty:
        echo_success("No unfinished phase")
        return

    print_table(
        f"Unfinished Phases ({len(dirty)})",
        ["#", "Phase"],
        [[index, name] for index, name in enumerate(dirty, start=1)],
    )


@checkpoint.command(name="clear")
@click.option(
    "--phase",
    "phase_name",
    type=click.Choice(PHASE_NAMES, case_sensitive=False),
    help="Clear only this phase (default: all)",
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt",
)
@pass_context
@requires_config
@handle_errors
@confirm_action(
    message="Cleared phases will be skipped by the next resume. Continue?",
    abort_message="Nothing cleared.",
)
def clear_checkpoints(ctx: MigrationContext, phase_name: str | None, yes: bool) -> None:
    """Forget unfinished-phase marks.

    Examples:

        # Forget everything
        forum-bridge checkpoint clear --yes --config config.yaml

        # Forget one phase
        forum-bridge checkpoint clear --phase import_posts --config config.yaml
    """
    store = CheckpointStore(ctx.database)

    if phase_name is None:
        removed = store.clear_all()
        echo_success(f"Cleared {removed} checkpoint(s)")
        return

    if not store.is_dirty(phase_name):
        echo_warning(f"Phase {phase_name} has no checkpoint")
        return

    store.clear(phase_name)
    if store.is_dirty(phase_name):
        echo_error(f"Failed to clear {phase_name}")
        raise click.exceptions.Exit(5)
    echo_success(f"Cleared checkpoint of {phase_name}")
    logger.info("checkpoint_cleared_by_operator", phase=phase_name)
