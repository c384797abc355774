"""Central entity type definitions.

This module is the registry of every content kind the migration moves:
its source id field, which other entity types must be imported first, and
the name of its checkpoint. Importers, the resolver, the flush and the CLI
all read from here.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntityType(str, Enum):
    """Closed set of content kinds moved by the migration."""

    GROUP = "group"
    CONTAINER = "container"
    ACCOUNT = "account"
    ROOM = "room"
    MESSAGE = "message"
    THREAD = "thread"
    POST = "post"
    VOTE = "vote"
    BOOKMARK = "bookmark"


@dataclass(frozen=True)
class Dependency:
    """A source field that references another entity type.

    ``required`` dependencies skip the item when unresolved. Optional ones
    are looked up only when the field is present.
    """

    field: str
    entity_type: EntityType
    required: bool = True


@dataclass(frozen=True)
class EntityTypeInfo:
    """Metadata for an entity type."""

    entity_type: EntityType
    source_id_field: str
    description: str
    dependencies: tuple[Dependency, ...] = field(default_factory=tuple)
    blob_fields: tuple[str, ...] = field(default_factory=tuple)

    @property
    def name(self) -> str:
        return self.entity_type.value

    @property
    def checkpoint_name(self) -> str:
        return f"import_{self.entity_type.value}s"


ENTITY_REGISTRY: dict[EntityType, EntityTypeInfo] = {
    EntityType.GROUP: EntityTypeInfo(
        entity_type=EntityType.GROUP,
        source_id_field="_gid",
        description="Groups",
    ),
    EntityType.CONTAINER: EntityTypeInfo(
        entity_type=EntityType.CONTAINER,
        source_id_field="_cid",
        description="Containers (categories)",
    ),
    EntityType.ACCOUNT: EntityTypeInfo(
        entity_type=EntityType.ACCOUNT,
        source_id_field="_uid",
        description="Accounts",
        blob_fields=("_pictureBlob",),
    ),
    EntityType.ROOM: EntityTypeInfo(
        entity_type=EntityType.ROOM,
        source_id_field="_roomId",
        description="Conversation rooms",
        dependencies=(Dependency("_uid", EntityType.ACCOUNT),),
    ),
    EntityType.MESSAGE: EntityTypeInfo(
        entity_type=EntityType.MESSAGE,
        source_id_field="_mid",
        description="Conversation messages",
        dependencies=(
            Dependency("_fromuid", EntityType.ACCOUNT),
            Dependency("_roomId", EntityType.ROOM, required=False),
            Dependency("_touid", EntityType.ACCOUNT, required=False),
        ),
    ),
    EntityType.THREAD: EntityTypeInfo(
        entity_type=EntityType.THREAD,
        source_id_field="_tid",
        description="Threads (topics)",
        dependencies=(
            Dependency("_cid", EntityType.CONTAINER),
            Dependency("_uid", EntityType.ACCOUNT, required=False),
        ),
        blob_fields=("_attachmentsBlobs",),
    ),
    EntityType.POST: EntityTypeInfo(
        entity_type=EntityType.POST,
        source_id_field="_pid",
        description="Posts",
        dependencies=(
            Dependency("_tid", EntityType.THREAD),
            Dependency("_uid", EntityType.ACCOUNT, required=False),
            Dependency("_toPid", EntityType.POST, required=False),
        ),
        blob_fields=("_attachmentsBlobs",),
    ),
    EntityType.VOTE: EntityTypeInfo(
        entity_type=EntityType.VOTE,
        source_id_field="_vid",
        description="Votes",
        dependencies=(
            Dependency("_pid", EntityType.POST, required=False),
            Dependency("_tid", EntityType.THREAD, required=False),
            Dependency("_uid", EntityType.ACCOUNT, required=False),
        ),
    ),
    EntityType.BOOKMARK: EntityTypeInfo(
        entity_type=EntityType.BOOKMARK,
        source_id_field="_bid",
        description="Bookmarks",
        dependencies=(
            Dependency("_tid", EntityType.THREAD),
            Dependency("_uid", EntityType.ACCOUNT),
        ),
    ),
}

# Bulk import order; every type appears after the types it depends on
IMPORT_ORDER: tuple[EntityType, ...] = (
    EntityType.GROUP,
    EntityType.CONTAINER,
    EntityType.ACCOUNT,
    EntityType.ROOM,
    EntityType.MESSAGE,
    EntityType.THREAD,
    EntityType.POST,
    EntityType.VOTE,
    EntityType.BOOKMARK,
)


def get_info(entity_type: EntityType | str) -> EntityTypeInfo:
    """Get the registry entry for an entity type.

    Raises:
        ValueError: If the entity type is unknown
    """
    try:
        return ENTITY_REGISTRY[EntityType(entity_type)]
    except ValueError as e:
        valid = ", ".join(t.value for t in EntityType)
        raise ValueError(f"Unknown entity type: {entity_type}. Valid types: {valid}") from e


def normalize_id(value: Any) -> str | None:
    """Canonical string form of a source or target id.

    Integers, integral floats and numeric strings with surrounding
    whitespace all map to the same decimal string, so ``7``, ``"7"`` and
    ``7.0`` address the same ledger row. Empty values map to None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return repr(value)
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return str(int(text))
    return text


def ids_equal(left: Any, right: Any) -> bool:
    """Type-normalized id comparison; a missing id never equals anything."""
    left_id = normalize_id(left)
    right_id = normalize_id(right)
    if left_id is None or right_id is None:
        return False
    return left_id == right_id


def strip_blobs(item: dict[str, Any], entity_type: EntityType | str) -> dict[str, Any]:
    """Copy of a source item without its binary payload fields."""
    info = get_info(entity_type)
    excluded = set(info.blob_fields) | {"_password", "_hashed_password"}
    return {k: v for k, v in item.items() if k not in excluded}
