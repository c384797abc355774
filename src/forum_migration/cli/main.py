"""
Main CLI entry point for Forum Bridge.

This module provides the command-line interface for migrating an exported
forum into a live target store.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from forum_migration import __version__
from forum_migration.cli.commands import checkpoint as checkpoint_commands
from forum_migration.cli.commands import config as config_commands
from forum_migration.cli.commands import ledger as ledger_commands
from forum_migration.cli.commands import migrate as migrate_commands
from forum_migration.cli.context import MigrationContext
from forum_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="forum-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="FORUM_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="FORUM_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Write JSON logs to this file",
    envvar="FORUM_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """Forum Bridge - Migrate an exported forum into a target store.

    Groups, containers, accounts, messages, threads, posts, votes and
    bookmarks are imported in dependency order. An interrupted run can be
    resumed; items imported before the interruption are never duplicated.

    Examples:

        # Validate configuration
        forum-bridge config validate --config config.yaml

        # Run full migration
        forum-bridge run --config config.yaml

        # Continue after a crash
        forum-bridge resume --config config.yaml

        # Show checkpoint state
        forum-bridge status --config config.yaml
    """
    effective_log_file = str(log_file) if log_file else "logs/migration.log"
    configure_logging(level=log_level, log_file=effective_log_file)

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )
    ctx.call_on_close(ctx.obj.cleanup)

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


# Register command groups
cli.add_command(checkpoint_commands.checkpoint)
cli.add_command(config_commands.config)
cli.add_command(ledger_commands.ledger)

# Register standalone commands
cli.add_command(migrate_commands.run)
cli.add_command(migrate_commands.resume)
cli.add_command(migrate_commands.status)


def main() -> int:
    """Main entry point for CLI."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except click.exceptions.Exit as e:
        return e.exit_code
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
