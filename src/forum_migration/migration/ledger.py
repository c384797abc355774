"""Import ledger.

The ledger maps a source entity id to the target entity created (or reused)
for it, together with a snapshot of both sides. It is the idempotency guard
of every importer and the only place the resolver reads source-only fields
from once the bulk phases are over.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select

from forum_migration.client.exceptions import StateError
from forum_migration.migration.database import StateDatabase
from forum_migration.migration.entities import EntityType, normalize_id
from forum_migration.migration.models import ImportedRecord
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EntityRecord:
    """One ledger entry."""

    entity_type: EntityType
    source_id: str
    target_id: str
    target_snapshot: dict[str, Any] = field(default_factory=dict)
    source_snapshot: dict[str, Any] = field(default_factory=dict)
    imported_at: datetime | None = None

    @classmethod
    def from_row(cls, row: ImportedRecord) -> "EntityRecord":
        return cls(
            entity_type=EntityType(row.entity_type),
            source_id=row.source_id,
            target_id=row.target_id,
            target_snapshot=dict(row.target_snapshot or {}),
            source_snapshot=dict(row.source_snapshot or {}),
            imported_at=row.imported_at,
        )


class ImportLedger:
    """Ledger of imported entities for one entity type.

    Usage:
        ledger = ImportLedger(db, EntityType.ACCOUNT)
        record = ledger.get_imported(17)
        if record is None:
            ledger.set_imported(17, "204", {"username": "bob"}, source_item)
    """

    def __init__(self, database: StateDatabase, entity_type: EntityType):
        self.database = database
        self.entity_type = entity_type

    def count(self) -> int:
        """Number of imported entities of this type."""
        with self.database.session() as session:
            return session.scalar(
                select(func.count())
                .select_from(ImportedRecord)
                .where(ImportedRecord.entity_type == self.entity_type.value)
            )

    def get_imported(self, source_id: Any) -> EntityRecord | None:
        """Look up the record for a source id.

        Args:
            source_id: Source id in any representation (int or str)

        Returns:
            The record, or None if the entity was never imported
        """
        key = normalize_id(source_id)
        if key is None:
            return None

        with self.database.session() as session:
            row = session.scalars(
                select(ImportedRecord).where(
                    ImportedRecord.entity_type == self.entity_type.value,
                    ImportedRecord.source_id == key,
                )
            ).first()
            return EntityRecord.from_row(row) if row else None

    def get_target_id(self, source_id: Any) -> str | None:
        """Target id for a source id, or None."""
        record = self.get_imported(source_id)
        return record.target_id if record else None

    def set_imported(
        self,
        source_id: Any,
        target_id: Any,
        target_snapshot: dict[str, Any] | None = None,
        source_snapshot: dict[str, Any] | None = None,
    ) -> EntityRecord:
        """Register an imported entity.

        A record is written once per source id. If one already exists it is
        returned unchanged and the new target id is ignored.

        Args:
            source_id: Source id
            target_id: Id of the created or reused target entity
            target_snapshot: Fields of the target entity worth keeping
            source_snapshot: Original source item, binaries stripped

        Returns:
            The stored record

        Raises:
            StateError: If either id is empty or the write fails
        """
        key = normalize_id(source_id)
        target_key = normalize_id(target_id)
        if key is None or target_key is None:
            raise StateError(
                f"Cannot register {self.entity_type.value} with empty id "
                f"(source_id={source_id!r}, target_id={target_id!r})"
            )

        with self.database.session() as session:
            existing = session.scalars(
                select(ImportedRecord).where(
                    ImportedRecord.entity_type == self.entity_type.value,
                    ImportedRecord.source_id == key,
                )
            ).first()

            if existing:
                if existing.target_id != target_key:
                    logger.warning(
                        "ledger_target_reassignment_ignored",
                        entity_type=self.entity_type.value,
                        source_id=key,
                        target_id=existing.target_id,
                        rejected_target_id=target_key,
                    )
                return EntityRecord.from_row(existing)

            row = ImportedRecord(
                entity_type=self.entity_type.value,
                source_id=key,
                target_id=target_key,
                target_snapshot=_json_safe(target_snapshot or {}),
                source_snapshot=_json_safe(source_snapshot or {}),
                imported_at=datetime.now(UTC).replace(tzinfo=None),
            )
            session.add(row)
            session.flush()

            logger.debug(
                "ledger_record_written",
                entity_type=self.entity_type.value,
                source_id=key,
                target_id=target_key,
            )
            return EntityRecord.from_row(row)

    def enrich(self, source_id: Any, fields: dict[str, Any]) -> EntityRecord | None:
        """Merge derived fields into a record's target snapshot.

        Only the snapshot changes; the target id is fixed for the lifetime of
        the record.

        Returns:
            Updated record, or None if the source id was never imported
        """
        key = normalize_id(source_id)
        if key is None:
            return None

        with self.database.session() as session:
            row = session.scalars(
                select(ImportedRecord).where(
                    ImportedRecord.entity_type == self.entity_type.value,
                    ImportedRecord.source_id == key,
                )
            ).first()
            if row is None:
                return None
            snapshot = dict(row.target_snapshot or {})
            snapshot.update(_json_safe(fields))
            row.target_snapshot = snapshot
            session.flush()
            return EntityRecord.from_row(row)

    def iter_records(self, batch_size: int = 500):
        """Yield all records ordered by insertion, one page at a time."""
        last_id = 0
        while True:
            with self.database.session() as session:
                rows = session.scalars(
                    select(ImportedRecord)
                    .where(
                        ImportedRecord.entity_type == self.entity_type.value,
                        ImportedRecord.id > last_id,
                    )
                    .order_by(ImportedRecord.id)
                    .limit(batch_size)
                ).all()
                records = [EntityRecord.from_row(row) for row in rows]
                if rows:
                    last_id = rows[-1].id

            if not records:
                return
            yield from records

    async def each(
        self,
        visitor: Callable[[EntityRecord], Awaitable[None]],
        limit: int = 10,
        on_visited: Callable[[int], None] | None = None,
    ) -> int:
        """Visit every record with at most ``limit`` visitors in flight.

        Args:
            visitor: Coroutine function called once per record
            limit: Maximum number of concurrent visitors
            on_visited: Optional callback receiving the running visit count

        Returns:
            Number of records visited
        """
        semaphore = asyncio.Semaphore(limit)
        visited = 0

        async def visit_with_semaphore(record: EntityRecord) -> None:
            nonlocal visited
            async with semaphore:
                await visitor(record)
                visited += 1
                if on_visited:
                    on_visited(visited)

        async def visit_page(page: list[EntityRecord]) -> None:
            # Every visitor of the page finishes before the first error is raised
            results = await asyncio.gather(
                *(visit_with_semaphore(r) for r in page), return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result

        # Pages keep at most one batch of tasks alive at a time
        page: list[EntityRecord] = []
        for record in self.iter_records():
            page.append(record)
            if len(page) >= limit * 10:
                await visit_page(page)
                page = []
        if page:
            await visit_page(page)

        return visited

    def delete_each_imported(self, progress: Callable[[int, int], None] | None = None) -> int:
        """Remove every record of this entity type.

        Args:
            progress: Optional callback receiving (deleted, total)

        Returns:
            Number of records removed
        """
        total = self.count()
        with self.database.session() as session:
            result = session.execute(
                delete(ImportedRecord).where(ImportedRecord.entity_type == self.entity_type.value)
            )
            deleted = result.rowcount or 0

        if progress:
            progress(deleted, total)

        logger.info("ledger_purged", entity_type=self.entity_type.value, deleted=deleted)
        return deleted


def _json_safe(data: dict[str, Any]) -> dict[str, Any]:
    """Drop values the JSON column cannot store (bytes) and stringify dates."""
    safe: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, (bytes, bytearray)):
            continue
        if isinstance(value, datetime):
            safe[key] = value.isoformat()
        elif isinstance(value, dict):
            safe[key] = _json_safe(value)
        else:
            safe[key] = value
    return safe
