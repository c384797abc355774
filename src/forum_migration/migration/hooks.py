"""Per-type post-process hooks.

A source adapter may ask to see every imported entity of a type once the
run is otherwise complete (to rewrite links, for instance). The hook gets a
fixed set of target-side collaborators, nothing else.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from forum_migration.client.blob_store import BlobStore
from forum_migration.client.target_store import TargetStore
from forum_migration.config import RunConfig
from forum_migration.migration.context import RunContext
from forum_migration.migration.entities import EntityType
from forum_migration.migration.ledger import EntityRecord, ImportLedger
from forum_migration.reporting.events import EventBus
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)

HOOK_ORDER: tuple[EntityType, ...] = (
    EntityType.ACCOUNT,
    EntityType.MESSAGE,
    EntityType.GROUP,
    EntityType.CONTAINER,
    EntityType.THREAD,
    EntityType.POST,
    EntityType.BOOKMARK,
    EntityType.VOTE,
)


@dataclass(frozen=True)
class HookCapabilities:
    """Collaborators a post-process hook may use."""

    target: TargetStore
    blobs: BlobStore
    ledgers: Mapping[EntityType, ImportLedger]
    events: EventBus
    config: RunConfig

    @classmethod
    def from_context(cls, ctx: RunContext) -> "HookCapabilities":
        return cls(
            target=ctx.target,
            blobs=ctx.blobs,
            ledgers=MappingProxyType(dict(ctx.ledgers)),
            events=ctx.events,
            config=ctx.run,
        )


async def run_post_process_hooks(ctx: RunContext, phase: str = "post_process_hooks") -> int:
    """Hand every imported entity to the source hook of its type.

    Types the source does not support are skipped. Hook errors propagate.

    Returns:
        Number of entities handed to a hook
    """
    capabilities = HookCapabilities.from_context(ctx)
    stats = ctx.stats(phase)
    processed = 0

    for entity_type in HOOK_ORDER:
        if not ctx.source.supports_immediate_process(entity_type.value):
            continue

        ledger = ctx.ledger(entity_type)
        total = ledger.count()
        ctx.events.log("post_process_started", entity_type=entity_type.value, total=total)
        ctx.events.progress(0, 1)

        async def process(record: EntityRecord, entity_type: EntityType = entity_type) -> None:
            await ctx.source.immediate_process(entity_type.value, record, capabilities)

        count = await ledger.each(
            process,
            limit=ctx.performance.each_limit,
            on_visited=lambda visited, total=total: ctx.events.progress(visited, total),
        )
        ctx.events.progress(1, 1)
        stats.bump(entity_type.value, count)
        processed += count
        logger.info("post_process_completed", entity_type=entity_type.value, processed=count)

    stats.total = processed
    return processed
