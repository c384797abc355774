"""
Checkpoint store for resumable migrations.

This module provides the CheckpointStore class which records which phases
were started but not finished. The marks are only a hint for resume: every
importer is idempotent through the ledger, so rerunning a phase is safe.
"""

from datetime import UTC, datetime

from sqlalchemy import delete, exists, select

from forum_migration.client.exceptions import CheckpointError, StateError
from forum_migration.migration.database import StateDatabase
from forum_migration.migration.models import CheckpointMark
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


class CheckpointStore:
    """
    Durable per-phase "in progress" markers.

    Usage:
        store = CheckpointStore(db)

        store.mark_dirty("import_accounts")
        ...  # phase side effects
        store.clear("import_accounts")

        if store.any_dirty():
            print(store.dirty_phases())
    """

    def __init__(self, database: StateDatabase):
        """
        Initialize checkpoint store.

        Args:
            database: State database holding the marks
        """
        self.database = database

    def mark_dirty(self, phase: str) -> None:
        """
        Mark a phase as started. Idempotent.

        Raises:
            CheckpointError: If the mark cannot be written
        """
        try:
            with self.database.session() as session:
                already = session.scalar(
                    select(exists().where(CheckpointMark.phase_name == phase))
                )
                if not already:
                    session.add(
                        CheckpointMark(
                            phase_name=phase,
                            marked_at=datetime.now(UTC).replace(tzinfo=None),
                        )
                    )
        except StateError as e:
            raise CheckpointError(f"Failed to mark phase '{phase}' dirty: {e}") from e

        logger.debug("checkpoint_marked_dirty", phase=phase)

    def clear(self, phase: str) -> None:
        """
        Remove the mark of a finished phase.

        Raises:
            CheckpointError: If the mark cannot be removed
        """
        try:
            with self.database.session() as session:
                session.execute(delete(CheckpointMark).where(CheckpointMark.phase_name == phase))
        except StateError as e:
            raise CheckpointError(f"Failed to clear phase '{phase}': {e}") from e

        logger.debug("checkpoint_cleared", phase=phase)

    def is_dirty(self, phase: str) -> bool:
        """Return True if the phase started in an earlier run and never finished."""
        with self.database.session() as session:
            return bool(
                session.scalar(select(exists().where(CheckpointMark.phase_name == phase)))
            )

    def any_dirty(self) -> bool:
        """Return True if any phase is marked dirty."""
        with self.database.session() as session:
            return bool(session.scalar(select(exists().where(CheckpointMark.id.is_not(None)))))

    def dirty_phases(self) -> list[str]:
        """Names of all dirty phases, oldest first."""
        with self.database.session() as session:
            return list(
                session.scalars(
                    select(CheckpointMark.phase_name).order_by(
                        CheckpointMark.marked_at, CheckpointMark.id
                    )
                )
            )

    def clear_all(self) -> int:
        """
        Remove every mark.

        Returns:
            Number of marks removed
        """
        try:
            with self.database.session() as session:
                result = session.execute(delete(CheckpointMark))
                removed = result.rowcount or 0
        except StateError as e:
            raise CheckpointError(f"Failed to clear checkpoints: {e}") from e

        if removed:
            logger.info("checkpoints_cleared", removed=removed)
        return removed
