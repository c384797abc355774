"""Destructive flush of the target before a fresh run.

Containers go first (the store cascades their threads, posts, votes and
bookmarks), then accounts except the administrator sentinel, groups that
came from an import, conversations, the store counters and finally every
ledger. Removal shifts the remaining items back, so the shrinking sets are
walked with the destructive cursor pinned at the start.
"""

from typing import Any

from forum_migration.client.exceptions import TargetStoreError
from forum_migration.migration.context import RunContext
from forum_migration.migration.cursor import BatchCursor, process_destructive
from forum_migration.migration.entities import IMPORT_ORDER, EntityType, normalize_id
from forum_migration.reporting.events import PhaseStats
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Administrator account that is never removed
SENTINEL_ACCOUNT_ID = "1"


class TargetFlusher:
    """Empties the target sets a run writes to.

    Usage:
        flusher = TargetFlusher(ctx)
        await flusher.flush()
    """

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.target = ctx.target
        self.batch_size = ctx.performance.purge_batch_size

    async def flush(self) -> None:
        """Run every purge step in order, each as its own phase."""
        steps = (
            ("purge_containers", self.purge_containers),
            ("purge_accounts", self.purge_accounts),
            ("purge_groups", self.purge_groups),
            ("purge_messages", self.purge_messages),
            ("purge_rooms", self.purge_rooms),
            ("reset_counters", self.reset_counters),
            ("purge_ledgers", self.purge_ledgers),
        )
        for phase, step in steps:
            self.ctx.events.phase_changed(phase)
            stats = self.ctx.stats(phase)
            stats.status = "running"
            await step(stats)
            stats.status = "completed"
            self.ctx.events.progress(1, 1)

    def _fetch(self, entity_type: EntityType):
        async def fetch(start: int, stop: int) -> list[dict[str, Any]]:
            return await self.target.fetch_range(entity_type.value, start, stop)

        return fetch

    async def _purge_pinned(
        self,
        entity_type: EntityType,
        stats: PhaseStats,
        keep: set[str] | None = None,
        warn_on_error: bool = False,
    ) -> int:
        """Remove every item of a type except ``keep``, walking from position 0."""
        keep = keep or set()
        stats.total = await self.target.count(entity_type.value)
        self.ctx.events.progress(0, 1)
        seen = 0

        async def remove(item: dict[str, Any]) -> None:
            nonlocal seen
            seen += 1
            self.ctx.events.progress(seen, stats.total)
            target_id = normalize_id(item.get("id"))
            if target_id is None or target_id in keep:
                return
            try:
                await self.target.purge(entity_type.value, target_id)
            except TargetStoreError as e:
                if not warn_on_error:
                    raise
                self.ctx.events.warn(
                    "purge_failed",
                    entity_type=entity_type.value,
                    target_id=target_id,
                    error=str(e),
                )
                return
            stats.bump("purged")

        def only_kept_left(start: int, stop: int, items: list[dict[str, Any]]) -> bool:
            return all(normalize_id(item.get("id")) in keep for item in items)

        await process_destructive(
            self._fetch(entity_type),
            remove,
            self.batch_size,
            always_start_at=0,
            done_if=only_kept_left,
        )
        purged = stats.counters.get("purged", 0)
        logger.info("target_purged", entity_type=entity_type.value, purged=purged)
        return purged

    async def purge_containers(self, stats: PhaseStats) -> int:
        return await self._purge_pinned(EntityType.CONTAINER, stats, warn_on_error=True)

    async def purge_accounts(self, stats: PhaseStats) -> int:
        return await self._purge_pinned(EntityType.ACCOUNT, stats, keep={SENTINEL_ACCOUNT_ID})

    async def purge_groups(self, stats: PhaseStats) -> int:
        """Destroy groups, keeping system groups that were not imported.

        The group list is read in full first since destroying groups while
        walking forward would skip some of them.
        """
        imported = {record.target_id for record in self.ctx.ledger(EntityType.GROUP).iter_records()}
        groups: list[dict[str, Any]] = []
        async for batch in BatchCursor(self._fetch(EntityType.GROUP), self.batch_size):
            groups.extend(batch)

        stats.total = len(groups)
        self.ctx.events.progress(0, 1)
        for index, group in enumerate(groups, start=1):
            self.ctx.events.progress(index, stats.total)
            name = normalize_id(group.get("id") or group.get("name"))
            if name is None:
                continue
            if group.get("system") and name not in imported:
                stats.bump("kept")
                continue
            await self.target.purge(EntityType.GROUP.value, name)
            stats.bump("purged")
        return stats.counters.get("purged", 0)

    async def purge_messages(self, stats: PhaseStats) -> int:
        return await self._purge_pinned(EntityType.MESSAGE, stats)

    async def purge_rooms(self, stats: PhaseStats) -> int:
        return await self._purge_pinned(EntityType.ROOM, stats)

    async def reset_counters(self, stats: PhaseStats) -> None:
        self.ctx.events.progress(0, 1)
        await self.target.reset_counters()

    async def purge_ledgers(self, stats: PhaseStats) -> int:
        """Forget every imported record (the ``ledger purge`` command)."""
        removed = 0
        for entity_type in IMPORT_ORDER:
            removed += self.ctx.ledger(entity_type).delete_each_imported(
                progress=self.ctx.events.progress
            )
        stats.bump("purged", removed)
        return removed
