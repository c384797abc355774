"""
CLI context manager for Forum Bridge.

This module provides the context object that is passed to all CLI commands,
containing configuration, adapters, and the state database.
"""

import importlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from forum_migration.client.blob_store import BlobStore, LocalBlobStore
from forum_migration.client.exceptions import ConfigurationError
from forum_migration.client.source_provider import SourceProvider
from forum_migration.client.target_store import TargetStore
from forum_migration.config import MigrationConfig, load_config_from_yaml
from forum_migration.migration.database import StateDatabase
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


def load_adapter(import_path: str) -> Any:
    """Resolve a ``module:callable`` import path.

    Raises:
        ConfigurationError: If the module or attribute cannot be found
    """
    module_name, _, attribute = import_path.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import adapter module '{module_name}': {e}") from e

    factory = getattr(module, attribute, None)
    if factory is None or not callable(factory):
        raise ConfigurationError(f"'{import_path}' is not a callable")
    return factory


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    This object holds configuration, adapters, and state that is shared
    across CLI commands. It is passed via Click's context mechanism.

    Attributes:
        config_path: Path to configuration file
        log_level: Logging level
        log_file: Optional log file path
        config: Loaded migration configuration
        target: Target store built from ``target.adapter``
        source: Source provider built from ``source.adapter``
        blobs: Blob store (the target's own when it exposes one)
        database: State database holding the ledger and checkpoints
    """

    config_path: Path | None = None
    log_level: str = "INFO"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _target: TargetStore | None = field(default=None, init=False, repr=False)
    _source: SourceProvider | None = field(default=None, init=False, repr=False)
    _blobs: BlobStore | None = field(default=None, init=False, repr=False)
    _database: StateDatabase | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration."""
        if self._config is None:
            if self.config_path is None:
                raise ConfigurationError(
                    "Configuration file path not provided. "
                    "Use --config option or set FORUM_BRIDGE_CONFIG environment variable."
                )

            logger.debug("loading_configuration", config_path=str(self.config_path))
            self._config = load_config_from_yaml(self.config_path)
            logger.debug("configuration_loaded")

        return self._config

    @property
    def base_dir(self) -> Path:
        return Path(self.config.paths.base_dir)

    @property
    def target(self) -> TargetStore:
        """Get or create the target store."""
        if self._target is None:
            factory = load_adapter(self.config.target.adapter)
            logger.debug("creating_target_store", adapter=self.config.target.adapter)
            self._target = factory(**self.config.target.options)
        return self._target

    @property
    def source(self) -> SourceProvider:
        """Get or create the source provider."""
        if self._source is None:
            factory = load_adapter(self.config.source.adapter)
            export_dir = self.base_dir / self.config.source.export_dir
            logger.debug(
                "creating_source_provider",
                adapter=self.config.source.adapter,
                export_dir=str(export_dir),
            )
            self._source = factory(export_dir=export_dir)
        return self._source

    @property
    def blobs(self) -> BlobStore:
        """Get or create the blob store."""
        if self._blobs is None:
            own = getattr(self.target, "blob_store", None)
            self._blobs = own or LocalBlobStore(self.base_dir / self.config.paths.upload_dir)
        return self._blobs

    @property
    def database(self) -> StateDatabase:
        """Get or open the state database."""
        if self._database is None:
            logger.debug("opening_state_database", url=self.config.state.url)
            self._database = StateDatabase(self.config.state.url)
        return self._database

    def cleanup(self) -> None:
        """Clean up resources."""
        if self._database is not None:
            self._database.dispose()
            self._database = None
        logger.debug("context_cleanup_complete")

    def __enter__(self) -> "MigrationContext":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.cleanup()
