"""
Migration module for Forum Bridge.

This module provides the import ledger, checkpoints, the entity importers,
the deferred relationship resolver and the coordinator that runs them.
"""

# Checkpoint management
from forum_migration.migration.checkpoint import CheckpointStore

# Run context
from forum_migration.migration.context import RunContext

# Coordination
from forum_migration.migration.coordinator import PHASES, MigrationCoordinator, Phase

# Database utilities
from forum_migration.migration.database import StateDatabase

# Entity registry
from forum_migration.migration.entities import (
    ENTITY_REGISTRY,
    IMPORT_ORDER,
    EntityType,
    get_info,
    ids_equal,
    normalize_id,
)

# Importers
from forum_migration.migration.importer import EntityImporter, create_importer

# Import ledger
from forum_migration.migration.ledger import EntityRecord, ImportLedger

# Deferred relationships
from forum_migration.migration.resolver import DeferredRelationshipResolver

__all__ = [
    # Entity registry
    "EntityType",
    "ENTITY_REGISTRY",
    "IMPORT_ORDER",
    "get_info",
    "normalize_id",
    "ids_equal",
    # State
    "StateDatabase",
    "ImportLedger",
    "EntityRecord",
    "CheckpointStore",
    # Run
    "RunContext",
    "EntityImporter",
    "create_importer",
    "DeferredRelationshipResolver",
    "MigrationCoordinator",
    "Phase",
    "PHASES",
]
