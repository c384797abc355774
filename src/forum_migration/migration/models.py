"""
SQLAlchemy models for migration state tracking.

This module defines the database schema for the import ledger and the
per-phase checkpoint marks.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ImportedRecord(Base):
    """
    Maps a source entity id to the target entity created for it.

    One row per (entity_type, source_id). The row is written once, the first
    time an entity is created or reused; ``target_id`` is never reassigned.
    """

    __tablename__ = "imported_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    entity_type: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True, comment="Entity type (account, post, ...)"
    )
    source_id: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Normalized id in the source system"
    )
    target_id: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Id of the entity in the target store"
    )

    target_snapshot: Mapped[dict | None] = mapped_column(
        JSON, nullable=True, comment="Fields of the created target entity"
    )
    source_snapshot: Mapped[dict | None] = mapped_column(
        JSON, nullable=True, comment="Original source item, binaries stripped"
    )

    imported_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), comment="When the record was written"
    )

    __table_args__ = (
        UniqueConstraint("entity_type", "source_id", name="uq_entity_type_source_id"),
        Index("idx_entity_type_target_id", "entity_type", "target_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ImportedRecord(id={self.id}, entity_type='{self.entity_type}', "
            f"source_id='{self.source_id}', target_id='{self.target_id}')>"
        )


class CheckpointMark(Base):
    """
    Durable "phase in progress" marker.

    A row exists only while a phase is dirty: it is inserted before the
    phase's first side effect and deleted after the phase succeeds.
    """

    __tablename__ = "checkpoint_marks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    phase_name: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True, comment="Name of the dirty phase"
    )
    marked_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), comment="When the phase started"
    )

    def __repr__(self) -> str:
        return f"<CheckpointMark(phase_name='{self.phase_name}', marked_at={self.marked_at})>"
