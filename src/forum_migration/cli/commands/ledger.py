"""
Import ledger commands.

This module provides commands for inspecting and purging the source id to
target id mapping of imported entities.
"""

import click

from forum_migration.cli.context import MigrationContext
from forum_migration.cli.decorators import (
    confirm_action,
    handle_errors,
    pass_context,
    requires_config,
)
from forum_migration.cli.utils import echo_info, echo_success, format_count, print_table
from forum_migration.migration.entities import IMPORT_ORDER, EntityType, get_info
from forum_migration.migration.ledger import ImportLedger
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)

ENTITY_CHOICES = [entity_type.value for entity_type in IMPORT_ORDER]


@click.group(name="ledger")
def ledger() -> None:
    """Import ledger commands.

    The ledger remembers which source entities were already imported, and
    as what.
    """
    pass


@ledger.command(name="counts")
@pass_context
@requires_config
@handle_errors
def counts(ctx: MigrationContext) -> None:
    """Show the number of imported entities per type.

    Examples:

        forum-bridge ledger counts --config config.yaml
    """
    rows = []
    for entity_type in IMPORT_ORDER:
        info = get_info(entity_type)
        records = ImportLedger(ctx.database, entity_type).count()
        rows.append([info.name, info.description, format_count(records)])
    print_table("Import Ledger", ["Type", "Description", "Records"], rows)


@ledger.command(name="purge")
@click.option(
    "--type",
    "-t",
    "entity_types",
    multiple=True,
    type=click.Choice(ENTITY_CHOICES, case_sensitive=False),
    help="Entity type to purge (repeatable, default: all)",
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
    message="Purged entities will be imported again as new ones by the next run. Continue?",
    abort_message="Nothing purged.",
)
def purge(ctx: MigrationContext, entity_types: tuple[str, ...], yes: bool) -> None:
    """Forget imported entities without touching the target.

    Examples:

        forum-bridge ledger purge --yes --config config.yaml
        forum-bridge ledger purge -t vote -t bookmark --config config.yaml
    """
    selected = [EntityType(value) for value in entity_types] or list(IMPORT_ORDER)

    total = 0
    for entity_type in selected:
        removed = ImportLedger(ctx.database, entity_type).delete_each_imported()
        echo_info(f"{entity_type.value}: {format_count(removed)} record(s) removed")
        total += removed

    echo_success(f"Purged {format_count(total)} ledger record(s)")
    logger.info("ledger_purged_by_operator", types=[t.value for t in selected], removed=total)
