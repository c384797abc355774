"""Shared fixtures: configuration, in-memory collaborators and run contexts."""

import asyncio
from typing import Any

import pytest

from forum_migration.config import MigrationConfig
from forum_migration.migration.context import RunContext
from forum_migration.migration.database import StateDatabase
from forum_migration.migration.importer import create_importer
from forum_migration.reporting.events import EventBus
from tests.helpers.fakes import (
    FakeSourceProvider,
    InMemoryBlobStore,
    InMemoryTargetStore,
    RecordingObserver,
    forum_export,
)


def build_config(base_dir, run: dict[str, Any] | None = None, **performance: Any) -> MigrationConfig:
    """Test configuration rooted in a temporary directory."""
    return MigrationConfig(
        target={"adapter": "tests.helpers.fakes:InMemoryTargetStore"},
        paths={"base_dir": str(base_dir)},
        state={"db_url": "sqlite://"},
        performance={"cooldown_seconds": 0, "batch_size": 2, **performance},
        logging={"file": None},
        run=run or {},
    )


@pytest.fixture
def config(tmp_path):
    return build_config(tmp_path)


@pytest.fixture
def database():
    db = StateDatabase("sqlite://")
    yield db
    db.dispose()


@pytest.fixture
def target():
    return InMemoryTargetStore()


@pytest.fixture
def source():
    return FakeSourceProvider(forum_export())


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def recorder():
    return RecordingObserver()


@pytest.fixture
def make_context(config, database, target, source, blobs, recorder):
    """Factory for run contexts sharing one state database.

    Every context built by the factory sees the same ledger and checkpoints,
    as consecutive runs against one state file would.
    """

    def _make(**overrides: Any) -> RunContext:
        events = EventBus(progress_interval=config.performance.progress_interval)
        events.subscribe(recorder)
        ctx = RunContext.from_config(
            overrides.get("config", config),
            target=overrides.get("target", target),
            source=overrides.get("source", source),
            blobs=overrides.get("blobs", blobs),
            events=events,
            database=database,
        )
        ctx.begin()
        return ctx

    return _make


@pytest.fixture
def ctx(make_context):
    return make_context()


def import_types(ctx: RunContext, *entity_types: str, **kwargs: Any) -> None:
    """Run the bulk importers of the given types in order."""

    async def run() -> None:
        for entity_type in entity_types:
            await create_importer(entity_type, ctx, **kwargs).run()

    asyncio.run(run())
