"""Deferred relationship resolver.

Once every bulk phase has run, some edges can finally be drawn: a container
whose parent was imported after it, a ban that would have blocked the
account's own posts, a lock that would have refused replies. Each sweep
walks one ledger with bounded concurrency and reads the source-only fields
from the stored source snapshot. Every step is existence-guarded or
idempotent, so a sweep can be rerun from scratch.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

from forum_migration.client.exceptions import TargetStoreError
from forum_migration.client.target_store import (
    GUESTS_GROUP,
    REGISTERED_USERS_GROUP,
)
from forum_migration.migration.context import RunContext
from forum_migration.migration.entities import EntityType, ids_equal, normalize_id
from forum_migration.migration.ledger import EntityRecord
from forum_migration.reporting.events import PhaseStats
from forum_migration.utils.logging import get_logger, log_phase_summary

logger = get_logger(__name__)


def decode_id_list(value: Any) -> list[Any]:
    """Decode a snapshot list field.

    Exports sometimes carry lists as JSON strings, occasionally encoded
    twice. Strings are decoded until something else comes out; anything
    that is not a list in the end counts as empty.

    Examples:
        >>> decode_id_list('"[1, 2]"')
        [1, 2]
        >>> decode_id_list("not json")
        []
    """
    while isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    return list(value) if isinstance(value, list) else []


def as_flag(value: Any) -> bool:
    """Truthiness of an exported 0/1 flag ("1", 1, True)."""
    if isinstance(value, bool):
        return value
    try:
        return int(value) != 0
    except (TypeError, ValueError):
        return False


class DeferredRelationshipResolver:
    """Second-pass sweeps over imported entities.

    Usage:
        resolver = DeferredRelationshipResolver(ctx)
        await resolver.fix_container_hierarchy()
        await resolver.fix_thread_teasers()
    """

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.target = ctx.target

    async def _sweep(
        self,
        phase: str,
        entity_type: EntityType,
        visitor: Callable[[EntityRecord, PhaseStats], Awaitable[None]],
    ) -> PhaseStats:
        """Visit every ledger record of a type, reporting progress."""
        events = self.ctx.events
        ledger = self.ctx.ledger(entity_type)
        stats = self.ctx.stats(phase)
        stats.total = ledger.count()
        events.progress(0, 1)

        async def visit(record: EntityRecord) -> None:
            try:
                await visitor(record, stats)
            except TargetStoreError as e:
                # One entity's fix-up never stops the sweep
                stats.failed += 1
                events.warn(
                    "fix_up_failed",
                    phase=phase,
                    entity_type=entity_type.value,
                    source_id=record.source_id,
                    target_id=record.target_id,
                    error=str(e),
                )
                return
            stats.bump("visited")

        await ledger.each(
            visit,
            limit=self.ctx.performance.each_limit,
            on_visited=lambda visited: events.progress(visited, stats.total),
        )

        events.progress(1, 1)
        visited = stats.counters.get("visited", 0)
        log_phase_summary(
            logger, phase, visited, stats.total, failed=stats.failed, **stats.counters
        )
        return stats

    async def fix_container_hierarchy(self) -> PhaseStats:
        """Link containers under their imported parents and disable flagged ones."""
        containers = self.ctx.ledger(EntityType.CONTAINER)

        async def fix(record: EntityRecord, stats: PhaseStats) -> None:
            source = record.source_snapshot
            fields: dict[str, Any] = {}

            if as_flag(source.get("_disabled")):
                fields["disabled"] = 1

            parent_ref = source.get("_parentCid")
            parent_id = None
            if normalize_id(parent_ref) is not None:
                parent = containers.get_imported(parent_ref)
                if parent is None:
                    self.ctx.events.warn(
                        "container_parent_not_imported",
                        container_id=record.target_id,
                        parent_source_id=normalize_id(parent_ref),
                    )
                else:
                    parent_id = parent.target_id
                    fields["parent_id"] = parent_id

            if not fields:
                return

            await self.target.set_fields(EntityType.CONTAINER.value, record.target_id, fields)
            if parent_id is not None:
                order = record.target_snapshot.get("order") or record.target_id
                await self.target.link_child_container(parent_id, record.target_id, order)
                stats.bump("linked")
            if fields.get("disabled"):
                stats.bump("disabled")
            containers.enrich(record.source_id, fields)

        return await self._sweep("fix_container_hierarchy", EntityType.CONTAINER, fix)

    async def fix_thread_teasers(self) -> PhaseStats:
        """Recompute each thread's teaser once, after all posts are in."""

        async def fix(record: EntityRecord, stats: PhaseStats) -> None:
            await self.target.update_teaser(record.target_id)

        return await self._sweep("fix_thread_teasers", EntityType.THREAD, fix)

    async def replay_accounts(self) -> PhaseStats:
        """Replay bans, read state, follows and friendships of every account."""
        threads = self.ctx.ledger(EntityType.THREAD)
        containers = self.ctx.ledger(EntityType.CONTAINER)
        auto_confirm = self.ctx.run.auto_confirm_emails

        def resolve_all(ledger, refs: list[Any], account_id: str, kind: str) -> list[str]:
            resolved = []
            for ref in refs:
                record = ledger.get_imported(ref)
                if record is None:
                    self.ctx.events.warn(
                        f"read_{kind}_not_imported",
                        account_id=account_id,
                        source_id=normalize_id(ref),
                    )
                    continue
                resolved.append(record.target_id)
            return resolved

        async def replay(record: EntityRecord, stats: PhaseStats) -> None:
            source = record.source_snapshot
            account_id = record.target_id

            if as_flag(source.get("_banned")):
                await self.target.ban(account_id)
                stats.bump("banned")
                self.ctx.events.log("account_banned_again", account_id=account_id)

            thread_ids = resolve_all(
                threads, decode_id_list(source.get("_readTids")), account_id, "thread"
            )
            if thread_ids:
                await self.target.mark_threads_read(account_id, thread_ids)

            container_ids = resolve_all(
                containers, decode_id_list(source.get("_readCids")), account_id, "container"
            )
            if container_ids:
                await self.target.mark_containers_read(account_id, container_ids)

            for ref in decode_id_list(source.get("_followingUids")):
                await self._follow(account_id, ref, stats)

            if auto_confirm:
                await self.target.clear_pending_confirmation(account_id)

            for ref in decode_id_list(source.get("_friendsUids")):
                await self._friend(account_id, ref, stats)

        return await self._sweep("replay_accounts", EntityType.ACCOUNT, replay)

    async def _follow(self, account_id: str, ref: Any, stats: PhaseStats) -> None:
        followed = self.ctx.ledger(EntityType.ACCOUNT).get_imported(ref)
        if followed is None:
            self.ctx.events.warn(
                "follow_target_not_imported",
                account_id=account_id,
                source_id=normalize_id(ref),
            )
            return
        if ids_equal(followed.target_id, account_id):
            return
        try:
            if await self.target.is_following(account_id, followed.target_id):
                return
            await self.target.follow(account_id, followed.target_id)
        except TargetStoreError as e:
            self.ctx.events.warn(
                "follow_failed",
                account_id=account_id,
                followed_id=followed.target_id,
                error=str(e),
            )
            return
        stats.bump("followed")

    async def _friend(self, account_id: str, ref: Any, stats: PhaseStats) -> None:
        friend = self.ctx.ledger(EntityType.ACCOUNT).get_imported(ref)
        if friend is None:
            self.ctx.events.warn(
                "friend_not_imported",
                account_id=account_id,
                source_id=normalize_id(ref),
            )
            return
        if ids_equal(friend.target_id, account_id):
            return
        try:
            if await self.target.is_friends(account_id, friend.target_id):
                logger.debug("already_friends", account_id=account_id, friend_id=friend.target_id)
                return
            await self.target.friend(account_id, friend.target_id)
        except TargetStoreError as e:
            self.ctx.events.warn(
                "friend_failed",
                account_id=account_id,
                friend_id=friend.target_id,
                error=str(e),
            )
            return
        stats.bump("friended")

    async def fix_thread_timestamps_and_relock(self) -> PhaseStats:
        """Relock locked threads and sort unpinned ones by their latest post."""

        async def fix(record: EntityRecord, stats: PhaseStats) -> None:
            source = record.source_snapshot
            thread_id = record.target_id

            if as_flag(source.get("_locked")):
                await self.target.lock_thread(thread_id)
                stats.bump("locked")

            pinned = as_flag(record.target_snapshot.get("pinned")) or as_flag(
                source.get("_pinned")
            )
            container_id = normalize_id(record.target_snapshot.get("container_id"))
            if pinned or container_id is None:
                return

            latest = await self.target.latest_post_timestamp(thread_id)
            if latest is None:
                return
            await self.target.set_thread_sort_key(container_id, thread_id, latest)
            stats.bump("resorted")

        return await self._sweep("fix_thread_timestamps_and_relock", EntityType.THREAD, fix)

    async def fix_group_ownership_and_restrict_containers(self) -> PhaseStats:
        """Grant group owners and make group containers exclusive to the group."""
        accounts = self.ctx.ledger(EntityType.ACCOUNT)
        containers = self.ctx.ledger(EntityType.CONTAINER)

        async def fix(record: EntityRecord, stats: PhaseStats) -> None:
            source = record.source_snapshot
            group_name = record.target_id
            if as_flag(source.get("_system")):
                return

            owner_ref = source.get("_ownerUid")
            if normalize_id(owner_ref) is None:
                self.ctx.events.warn("group_has_no_owner", group=group_name)
            else:
                owner = accounts.get_imported(owner_ref)
                if owner is None:
                    self.ctx.events.warn(
                        "group_owner_not_imported",
                        group=group_name,
                        owner_source_id=normalize_id(owner_ref),
                    )
                else:
                    await self.target.grant_group_ownership(owner.target_id, group_name)
                    stats.bump("owners_granted")

            for ref in decode_id_list(source.get("_cids")):
                container = containers.get_imported(ref)
                if container is None:
                    continue
                await self.target.revoke_access(GUESTS_GROUP, container.target_id)
                await self.target.revoke_access(REGISTERED_USERS_GROUP, container.target_id)
                await self.target.grant_access(group_name, container.target_id)
                stats.bump("containers_restricted")

        return await self._sweep(
            "fix_group_ownership_and_restrict_containers", EntityType.GROUP, fix
        )
