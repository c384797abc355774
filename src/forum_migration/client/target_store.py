"""Target store interface.

The target platform is reached only through this protocol. An adapter
implements entity creation and mutation, access rules, the social graph
and the platform settings; the migration engine never depends on a
concrete store.

Entity types are passed as the ``EntityType`` string values ("account",
"thread", ...). Ids are strings. ``create`` returns the created entity as a
dict holding at least ``"id"``; for threads it also holds
``"main_post_id"``.

Errors: adapters raise ``IntegrityViolationError`` for unique-key
collisions, ``TransientStoreError`` for retryable failures and
``TargetStoreError`` for anything else.
"""

from typing import Any, Protocol, runtime_checkable

GUESTS_GROUP = "guests"
REGISTERED_USERS_GROUP = "registered-users"
ADMINISTRATORS_GROUP = "administrators"
GLOBAL_MODERATORS_GROUP = "Global Moderators"

READ_PRIVILEGES = ("find", "read", "topics:read")

# Sort key that keeps pinned threads above every timestamp
PINNED_SORT_KEY = 2**53


@runtime_checkable
class TargetStore(Protocol):
    """Protocol for the target platform's store."""

    # Entities

    async def create(self, entity_type: str, data: dict[str, Any], **options: Any) -> dict[str, Any]:
        """Create an entity.

        Options understood by adapters:
            defer_teaser: for posts, skip the per-post thread teaser update
        """
        ...

    async def set_fields(self, entity_type: str, target_id: str, fields: dict[str, Any]) -> None:
        """Merge fields into an existing entity."""
        ...

    async def get(self, entity_type: str, target_id: str) -> dict[str, Any] | None:
        """Fetch an entity, or None if it does not exist."""
        ...

    async def count(self, entity_type: str) -> int:
        """Number of entities of a type currently in the store."""
        ...

    async def fetch_range(self, entity_type: str, start: int, stop: int) -> list[dict[str, Any]]:
        """Entities at positions start..stop (inclusive) of the type's ordered set."""
        ...

    async def purge(self, entity_type: str, target_id: str) -> None:
        """Delete an entity; containers cascade to their threads and posts."""
        ...

    # Accounts and groups

    async def find_account_by_email(self, email: str) -> str | None:
        """Id of the account owning an email address."""
        ...

    async def join_group(self, group_name: str, account_id: str, timestamp: int | None = None) -> None:
        ...

    async def grant_group_ownership(self, account_id: str, group_name: str) -> None:
        ...

    async def ban(self, account_id: str) -> None:
        ...

    async def clear_pending_confirmation(self, account_id: str | None = None) -> None:
        """Clear email confirmation markers of one account, or of all when None."""
        ...

    # Access rules

    async def grant_access(
        self, group_name: str, container_id: str, privileges: tuple[str, ...] | None = None
    ) -> None:
        """Allow a group on a container (all privileges when None)."""
        ...

    async def revoke_access(
        self, group_name: str, container_id: str, privileges: tuple[str, ...] | None = None
    ) -> None:
        """Disallow a group on a container (all privileges when None)."""
        ...

    # Containers and threads

    async def link_child_container(self, parent_id: str, child_id: str, order: int) -> None:
        """Move a container under a parent, at the given position."""
        ...

    async def pin_thread(self, thread_id: str) -> None:
        ...

    async def lock_thread(self, thread_id: str) -> None:
        ...

    async def set_thread_sort_key(self, container_id: str, thread_id: str, key: int) -> None:
        ...

    async def latest_post_timestamp(self, thread_id: str) -> int | None:
        ...

    async def update_teaser(self, thread_id: str) -> None:
        """Recompute the thread teaser from its posts."""
        ...

    async def mark_threads_read(self, account_id: str, thread_ids: list[str]) -> None:
        ...

    async def mark_containers_read(self, account_id: str, container_ids: list[str]) -> None:
        ...

    # Conversations

    async def get_pair_room(self, account_a: str, account_b: str) -> str | None:
        """Room created earlier for direct messages between two accounts."""
        ...

    async def set_pair_room(self, account_a: str, account_b: str, room_id: str) -> None:
        ...

    async def clear_room_unread(self, room_id: str) -> None:
        ...

    # Social graph

    async def follow(self, account_id: str, followed_id: str) -> None:
        ...

    async def is_following(self, account_id: str, followed_id: str) -> bool:
        ...

    async def friend(self, account_id: str, friend_id: str) -> None:
        ...

    async def is_friends(self, account_id: str, friend_id: str) -> bool:
        ...

    # Platform settings

    async def get_config(self) -> dict[str, Any]:
        ...

    async def set_config(self, values: dict[str, Any]) -> None:
        ...

    async def reset_counters(self) -> None:
        """Reset global id and count counters after a flush."""
        ...
