"""
Configuration management commands.

This module provides commands for validating and displaying migration
configuration.
"""

from pathlib import Path

import click

from forum_migration.cli.context import MigrationContext, load_adapter
from forum_migration.cli.decorators import handle_errors, pass_context, requires_config
from forum_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from forum_migration.config import MigrationConfig
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands.

    Validate and display migration configuration files.
    """
    pass


@config.command(name="validate")
@click.option(
    "--check-adapters",
    is_flag=True,
    help="Import the source and target adapters named in the configuration",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext, check_adapters: bool) -> None:
    """Validate migration configuration.

    This command validates the migration configuration file, checking:
    - Required fields are present
    - Paths exist or can be created
    - An environment snapshot left by an earlier run is readable

    Examples:

        forum-bridge config validate --config config.yaml
        forum-bridge config validate --config config.yaml --check-adapters
    """
    echo_info(f"Validating configuration: {ctx.config_path}")

    # Configuration is already loaded and validated by @requires_config
    config = ctx.config

    click.echo()
    _display_config_summary(config)

    click.echo()
    echo_info("Validating paths...")
    _validate_paths(config)

    backup = Path(config.paths.base_dir) / config.paths.environment_backup_file
    if backup.exists():
        echo_warning(
            f"Environment snapshot {backup} exists: the previous run did not restore "
            "the target settings. It will be reused."
        )

    if check_adapters:
        click.echo()
        echo_info("Loading adapters...")
        for label, path in (("Source", config.source.adapter), ("Target", config.target.adapter)):
            load_adapter(path)
            echo_success(f"{label} adapter importable: {path}")

    click.echo()
    echo_success("Configuration is valid!")


def _display_config_summary(config: MigrationConfig) -> None:
    """Display configuration summary."""
    rows = [
        ["Source Adapter", config.source.adapter],
        ["Export Directory", config.source.export_dir],
        ["Target Adapter", config.target.adapter],
        ["State Database", config.state.url],
        ["Duplicate Email Policy", config.run.duplicate_key_policy.value],
        ["Auto-confirm Emails", config.run.auto_confirm_emails],
        ["Batch Size", config.performance.batch_size],
        ["Concurrency Limit", config.performance.each_limit],
    ]

    print_table(
        "Configuration Summary",
        ["Setting", "Value"],
        rows,
    )


def _validate_paths(config: MigrationConfig) -> None:
    """Validate file paths in configuration."""
    base = Path(config.paths.base_dir)
    export_dir = base / config.source.export_dir
    if not export_dir.is_dir():
        echo_warning(f"Export directory does not exist: {export_dir}")
    else:
        echo_success(f"Export directory exists: {export_dir}")

    for label, relative in (
        ("Scratch", config.paths.tmp_dir),
        ("Upload", config.paths.upload_dir),
        ("Report", config.paths.report_dir),
    ):
        directory = base / relative
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            echo_error(f"Cannot create {label.lower()} directory: {directory}")
            raise click.ClickException(f"Failed to create {directory}: {e}") from e

    echo_success("All paths are valid")


@config.command(name="show")
@pass_context
@requires_config
@handle_errors
def show(ctx: MigrationContext) -> None:
    """Display current configuration.

    Examples:

        forum-bridge config show --config config.yaml
    """
    config = ctx.config

    _display_config_summary(config)

    click.echo("\nRun Policy:")
    click.echo(f"  Owner takeover: {config.run.owner_takeover.enabled}")
    click.echo(f"  Generated passwords: {config.run.password_generation.enabled}")
    click.echo(f"  Reputation multiplier: {config.run.reputation_multiplier}")

    click.echo("\nEnvironment Overrides:")
    for key, value in sorted(config.run.environment_overrides.items()):
        click.echo(f"  {key}: {value}")

    click.echo("\nPaths:")
    click.echo(f"  Base directory: {config.paths.base_dir}")
    click.echo(f"  Environment snapshot: {config.paths.environment_backup_file}")
    click.echo(f"  Reports: {config.paths.report_dir}")
    logger.debug("config_shown", config_path=str(ctx.config_path))
