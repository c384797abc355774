"""Entity importers.

One algorithm moves every entity type. ``EntityImporter.import_item`` runs
the same linear sequence for each source item:

1. idempotency check against the ledger;
2. dependency resolution through the ledgers of the referenced types;
3. field transform (defaults, cosmetic pools, truncation);
4. binary payload materialization;
5. creation in the target, with integrity violations handed to the
   conflict resolver;
6. follow-up writes and registration in the ledger.

Subclasses override ``transform``, ``create`` and ``after_create`` only.
Items are processed strictly one after another within a phase, so an item
may depend on a ledger entry written by an earlier item of the same batch.
"""

import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from forum_migration.client.exceptions import (
    DependencyError,
    FatalMigrationError,
    IntegrityViolationError,
    SkipItemError,
    StateError,
    TransformationError,
)
from forum_migration.client.target_store import (
    ADMINISTRATORS_GROUP,
    GLOBAL_MODERATORS_GROUP,
)
from forum_migration.migration.attachments import (
    PROFILE_FOLDER,
    BlobMaterializer,
    MaterializedAttachments,
    safe_filename,
)
from forum_migration.migration.conflicts import ConflictResolver, ResolutionAction
from forum_migration.migration.context import RunContext
from forum_migration.migration.cursor import BatchCursor
from forum_migration.migration.entities import (
    EntityType,
    get_info,
    ids_equal,
    normalize_id,
    strip_blobs,
)
from forum_migration.migration.ledger import EntityRecord
from forum_migration.reporting.events import PhaseStats
from forum_migration.utils.accounts import generate_password, make_valid_username, slugify
from forum_migration.utils.logging import get_logger, log_phase_summary

logger = get_logger(__name__)

GUEST_ACCOUNT_ID = "0"
ROOT_CONTAINER_ID = "0"


class ImportOutcome(str, Enum):
    IMPORTED = "imported"
    ALREADY_IMPORTED = "already_imported"
    SKIPPED = "skipped"


@dataclass
class PreparedItem:
    """A source item on its way into the target."""

    source_id: str
    item: dict[str, Any]
    deps: dict[str, EntityRecord | None]
    data: dict[str, Any] = field(default_factory=dict)
    fields: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    snapshot: dict[str, Any] = field(default_factory=dict)


def drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def truncate(value: Any, limit: int | None, ellipsis: str = "...") -> Any:
    """Cut a string to a target length limit, marking the cut."""
    if not isinstance(value, str) or limit is None or len(value) <= limit:
        return value
    if limit <= len(ellipsis):
        return value[:limit]
    return value[: limit - len(ellipsis)] + ellipsis


def pick_from_pool(pool: list[str], source_id: str) -> str | None:
    """Deterministic choice from a cosmetic pool, stable across reruns."""
    if not pool:
        return None
    return pool[zlib.crc32(source_id.encode("utf-8")) % len(pool)]


def split_tags(tags: Any) -> list[str] | None:
    if tags is None:
        return None
    if isinstance(tags, list):
        return tags
    return str(tags).split(",")


class EntityImporter:
    """Base importer; one instance per phase run.

    Usage:
        importer = create_importer(EntityType.ACCOUNT, ctx)
        stats = await importer.run()
    """

    ENTITY_TYPE: EntityType

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.target = ctx.target
        self.info = get_info(self.ENTITY_TYPE)
        self.ledger = ctx.ledger(self.ENTITY_TYPE)
        self.phase = self.info.checkpoint_name
        self.conflicts = ConflictResolver(
            ctx.run.duplicate_key_policy, ctx.run.max_duplicate_key_attempts
        )
        self.materializer = BlobMaterializer(
            ctx.blobs, ctx.tmp_dir, ctx.performance.blob_retry_attempts
        )
        # 1-based position of the item being processed in this phase
        self.position = 0

    @property
    def stats(self) -> PhaseStats:
        return self.ctx.stats(self.phase)

    @property
    def entity_name(self) -> str:
        return self.ENTITY_TYPE.value

    async def run(self) -> PhaseStats:
        """Import every source item of this entity type.

        Raises:
            SourceProviderError: If the source cannot be read
            StateError: If the ledger cannot be written
        """
        events = self.ctx.events
        total = await self.ctx.source.count(self.entity_name)
        self.stats.total = total
        events.progress(0, 1)
        events.success(f"Importing {total} {self.entity_name}s.", total=total)

        async def fetch(start: int, stop: int) -> list[dict[str, Any]]:
            return await self.ctx.source.fetch_batch(self.entity_name, start, stop)

        async for batch in BatchCursor(fetch, self.ctx.performance.batch_size):
            for item in batch:
                self.position += 1
                await self.import_item(item)
                events.progress(self.position, total)

        await self.after_phase()

        stats = self.stats
        events.progress(1, 1)
        log_phase_summary(
            logger,
            self.phase,
            stats.imported,
            total,
            already_imported=stats.already_imported,
            skipped=stats.skipped,
            **stats.counters,
        )
        message = f"Imported {stats.imported}/{total} {self.entity_name}s"
        if stats.already_imported:
            message += (
                f" (out of which {stats.already_imported} were already imported "
                "at an earlier time)"
            )
        events.success(message, imported=stats.imported, total=total)
        return stats

    async def import_item(self, item: dict[str, Any]) -> ImportOutcome:
        """Run the full pipeline for one source item.

        Item-local failures become a skip with a warning. Ledger failures
        and fatal errors propagate. The ledger record is written as soon as
        the target entity exists, so a failed follow-up write never leads to
        a second creation on the next run.
        """
        source_id = normalize_id(item.get(self.info.source_id_field))
        if source_id is None:
            self.ctx.skip(
                self.phase,
                self.ENTITY_TYPE,
                None,
                f"missing {self.info.source_id_field}",
            )
            return ImportOutcome.SKIPPED

        if self.ledger.get_imported(source_id) is not None:
            self.stats.imported += 1
            self.stats.already_imported += 1
            return ImportOutcome.ALREADY_IMPORTED

        try:
            deps = self.resolve_dependencies(item)
            prepared = PreparedItem(source_id=source_id, item=item, deps=deps)
            await self.transform(prepared)
            created = await self.create_with_conflicts(prepared)
        except (StateError, FatalMigrationError):
            raise
        except (DependencyError, SkipItemError, TransformationError) as e:
            self.ctx.skip(self.phase, self.ENTITY_TYPE, source_id, str(e))
            return ImportOutcome.SKIPPED
        except Exception as e:
            self.ctx.skip(
                self.phase, self.ENTITY_TYPE, source_id, f"{type(e).__name__}: {e}"
            )
            return ImportOutcome.SKIPPED

        self.ledger.set_imported(
            source_id,
            created["id"],
            {**created, **prepared.snapshot},
            strip_blobs(item, self.ENTITY_TYPE),
        )
        await self.follow_up(prepared, created)

        self.stats.imported += 1
        logger.debug(
            "entity_imported",
            entity_type=self.entity_name,
            source_id=source_id,
            target_id=str(created["id"]),
        )
        return ImportOutcome.IMPORTED

    def resolve_dependencies(self, item: dict[str, Any]) -> dict[str, EntityRecord | None]:
        """Look up every declared dependency in the ledger of its type.

        A required dependency that is absent or was never imported raises
        ``DependencyError``. Optional ones resolve to None in that case.
        """
        resolved: dict[str, EntityRecord | None] = {}
        for dep in self.info.dependencies:
            ref = item.get(dep.field)
            if normalize_id(ref) is None:
                if dep.required:
                    raise DependencyError(f"{dep.field} is missing")
                resolved[dep.field] = None
                continue

            record = self.ctx.ledger(dep.entity_type).get_imported(ref)
            if record is None and dep.required:
                raise DependencyError(
                    f"{dep.entity_type.value} {dep.field}={ref} was not imported"
                )
            resolved[dep.field] = record
        return resolved

    async def transform(self, prepared: PreparedItem) -> None:
        """Fill ``prepared.data`` (create payload) and ``prepared.fields``."""
        raise NotImplementedError

    async def create(self, prepared: PreparedItem) -> dict[str, Any]:
        return await self.target.create(self.entity_name, prepared.data, **prepared.options)

    async def find_conflict_owner(self, key_field: str, value: str) -> str | None:
        """Target id owning the key that collided, used by the merge policy."""
        return None

    async def create_with_conflicts(self, prepared: PreparedItem) -> dict[str, Any]:
        """Create the entity, applying the duplicate-key policy on collisions."""
        attempt = 0
        suffixed = False
        while True:
            attempt += 1
            try:
                created = await self.create(prepared)
            except IntegrityViolationError as e:
                key_field = e.field
                resolution = await self.conflicts.resolve(
                    e, attempt, lambda value: self.find_conflict_owner(key_field, value)
                )
                if resolution.action is ResolutionAction.REUSE:
                    self.stats.bump("duplicate_key_merged")
                    return {"id": resolution.target_id, "reused": True}
                if resolution.action is ResolutionAction.RETRY:
                    suffixed = True
                    prepared.data[e.field] = resolution.candidate_key
                    continue
                raise SkipItemError(resolution.reason) from e

            if suffixed:
                self.stats.bump("duplicate_key_suffixed")
            if not created or normalize_id(created.get("id")) is None:
                raise TransformationError(f"target returned no id for {self.entity_name}")
            return created

    async def follow_up(self, prepared: PreparedItem, created: dict[str, Any]) -> None:
        """Run ``after_create`` for an entity already in the ledger.

        A failure leaves the entity imported without the follow-up fields
        and is reported with a warning.
        """
        try:
            snapshot = await self.after_create(prepared, created)
        except (StateError, FatalMigrationError):
            raise
        except Exception as e:
            self.stats.bump("follow_up_failed")
            self.ctx.events.warn(
                "follow_up_failed",
                entity_type=self.entity_name,
                source_id=prepared.source_id,
                target_id=str(created["id"]),
                error=f"{type(e).__name__}: {e}",
            )
            return
        self.ledger.enrich(prepared.source_id, snapshot)

    async def after_create(self, prepared: PreparedItem, created: dict[str, Any]) -> dict[str, Any]:
        """Follow-up writes; returns the target snapshot kept in the ledger."""
        fields = drop_none(prepared.fields)
        if fields:
            await self.target.set_fields(self.entity_name, str(created["id"]), fields)
        return {**created, **fields, **prepared.snapshot}

    async def after_phase(self) -> None:
        """Called once after the last item of the phase."""
        return None

    async def resolve_account(
        self, prepared: PreparedItem, uid_field: str = "_uid", email_field: str = "_uemail"
    ) -> str | None:
        """Target account for an item's author.

        The ledger wins when the source id field is present; the email
        lookup is used for items that only carry an address.
        """
        item = prepared.item
        if normalize_id(item.get(uid_field)) is not None:
            if self.ctx.is_owner(item.get(uid_field)):
                return self.ctx.run.owner_takeover.target_id
            record = prepared.deps.get(uid_field)
            if record is None:
                record = self.ctx.ledger(EntityType.ACCOUNT).get_imported(item.get(uid_field))
            return record.target_id if record else None
        if item.get(email_field):
            owner = await self.target.find_account_by_email(item[email_field])
            return normalize_id(owner)
        return None


class GroupImporter(EntityImporter):
    """Groups; the target id is the group name."""

    ENTITY_TYPE = EntityType.GROUP

    async def transform(self, prepared: PreparedItem) -> None:
        item = prepared.item
        name = (item.get("_name") or f"Group {self.position}").replace("/", "-")
        name = truncate(name, self.ctx.run.field_limits.get("group_name"), ellipsis="")

        prepared.data = drop_none(
            {
                "name": name,
                "description": item.get("_description") or "no description available",
                "userTitle": item.get("_userTitle"),
                "disableJoinRequests": item.get("_disableJoinRequests"),
                "system": item.get("_system") or 0,
                "private": item.get("_private") or 0,
                "hidden": item.get("_hidden") or 0,
                "timestamp": item.get("_createtime") or item.get("_timestamp"),
            }
        )
        user_title_enabled = item.get("_userTitleEnabled")
        if isinstance(user_title_enabled, bool) or not isinstance(user_title_enabled, (int, float)):
            user_title_enabled = 1
        prepared.fields = {
            "userTitleEnabled": user_title_enabled,
            **(item.get("_fields") or {}),
        }

    async def create(self, prepared: PreparedItem) -> dict[str, Any]:
        created = await super().create(prepared)
        return {**(created or {}), "id": (created or {}).get("id") or prepared.data["name"]}


class ContainerImporter(EntityImporter):
    """Containers; parent and disabled flags are fixed later by the resolver."""

    ENTITY_TYPE = EntityType.CONTAINER

    async def transform(self, prepared: PreparedItem) -> None:
        item = prepared.item
        run = self.ctx.run
        name = item.get("_name") or f"Category {self.position}"

        prepared.data = drop_none(
            {
                "name": truncate(name, run.field_limits.get("container_name")),
                "description": item.get("_description") or "no description available",
                "backgroundImage": item.get("_backgroundImage"),
                "parent_id": ROOT_CONTAINER_ID,
                "disabled": 0,
                "order": item.get("_order") or self.position,
                "link": item.get("_link") or 0,
                "icon": item.get("_icon")
                or pick_from_pool(run.container_icons, prepared.source_id),
                "bgColor": item.get("_bgColor")
                or pick_from_pool(run.container_bg_colors, prepared.source_id),
                "color": item.get("_color")
                or pick_from_pool(run.container_text_colors, prepared.source_id),
            }
        )
        prepared.fields = dict(item.get("_fields") or {})
        prepared.snapshot = {"order": prepared.data["order"]}


class AccountImporter(EntityImporter):
    """Accounts, including owner takeover and duplicate email handling."""

    ENTITY_TYPE = EntityType.ACCOUNT

    async def transform(self, prepared: PreparedItem) -> None:
        item = prepared.item
        run = self.ctx.run

        valid = make_valid_username(item.get("_username"), item.get("_alternativeUsername"))
        if not valid.is_valid:
            raise SkipItemError(f"username '{item.get('_username')}' is invalid")

        if run.password_generation.enabled:
            password = generate_password(
                run.password_generation.length, run.password_generation.chars
            )
        else:
            password = item.get("_password")

        prepared.data = drop_none(
            {
                "username": truncate(valid.username, run.field_limits.get("username"), ""),
                "email": item.get("_email"),
                "password": password,
            }
        )
        prepared.snapshot = {"userslug": valid.userslug}

        joindate = item.get("_joindate") or self.ctx.start_time
        prepared.fields = {
            "signature": truncate(item.get("_signature") or "", run.field_limits.get("signature")),
            "website": item.get("_website") or "",
            "location": item.get("_location") or "",
            "joindate": joindate,
            "reputation": (item.get("_reputation") or 0) * run.reputation_multiplier,
            "profileviews": item.get("_profileViews") or 0,
            "fullname": item.get("_fullname") or "",
            "birthday": item.get("_birthday") or "",
            "showemail": 1 if item.get("_showemail") else 0,
            "lastposttime": item.get("_lastposttime") or 0,
            "lastonline": item.get("_lastonline") or item.get("_joindate"),
            "email:confirmed": 1 if run.auto_confirm_emails else 0,
            "status": "offline",
            # Bans are replayed by the resolver
            "banned": 0,
            **(item.get("_fields") or {}),
        }

    async def create(self, prepared: PreparedItem) -> dict[str, Any]:
        item = prepared.item
        if self.ctx.is_owner(prepared.source_id, item.get("_username")):
            self.ctx.owner_source_id = prepared.source_id
            target_id = self.ctx.run.owner_takeover.target_id
            self.ctx.events.warn(
                "account_taken_over",
                source_id=prepared.source_id,
                username=item.get("_username"),
                target_id=target_id,
            )
            return {"id": target_id, "owner": True}
        return await super().create(prepared)

    async def find_conflict_owner(self, key_field: str, value: str) -> str | None:
        if key_field != "email":
            return None
        return normalize_id(await self.target.find_account_by_email(value))

    async def after_create(self, prepared: PreparedItem, created: dict[str, Any]) -> dict[str, Any]:
        item = prepared.item
        account_id = str(created["id"])
        joined_at = item.get("_joindate") or self.ctx.start_time

        # The administrator account keeps its own level
        if not created.get("owner"):
            level = str(item.get("_level") or "").lower()
            if level == "moderator":
                await self.target.join_group(GLOBAL_MODERATORS_GROUP, account_id, joined_at)
                self.ctx.events.warn(
                    "account_became_moderator", username=prepared.data.get("username")
                )
            elif level == "administrator":
                await self.target.join_group(ADMINISTRATORS_GROUP, account_id, joined_at)
                self.ctx.events.warn(
                    "account_became_administrator", username=prepared.data.get("username")
                )

        group_ledger = self.ctx.ledger(EntityType.GROUP)
        for gid in item.get("_groups") or []:
            group = group_ledger.get_imported(gid)
            if group is None:
                continue
            try:
                await self.target.join_group(group.target_id, account_id, joined_at)
            except Exception as e:
                logger.warning(
                    "group_join_failed",
                    group=group.target_id,
                    account_id=account_id,
                    error=str(e),
                )

        fields = drop_none(prepared.fields)
        kept_picture = False
        if item.get("_pictureBlob"):
            filename = safe_filename(item.get("_pictureFilename"))
            name = f"_{account_id}_{filename}" if filename else f"{account_id}.png"
            saved = await self.materializer.save(item["_pictureBlob"], name, PROFILE_FOLDER)
            if saved:
                fields["uploadedpicture"] = fields["picture"] = saved[0]
                kept_picture = True
        elif item.get("_picture"):
            fields["uploadedpicture"] = fields["picture"] = item["_picture"]
            kept_picture = True

        await self.target.set_fields(self.entity_name, account_id, fields)
        return {
            **created,
            **fields,
            **prepared.snapshot,
            "username": prepared.data.get("username"),
            "email": prepared.data.get("email"),
            "kept_picture": kept_picture,
        }

    async def after_phase(self) -> None:
        if self.ctx.run.auto_confirm_emails:
            await self.target.clear_pending_confirmation(None)


class RoomImporter(EntityImporter):
    """Conversation rooms; need an owner and at least one imported member."""

    ENTITY_TYPE = EntityType.ROOM

    async def transform(self, prepared: PreparedItem) -> None:
        item = prepared.item
        accounts = self.ctx.ledger(EntityType.ACCOUNT)
        owner = prepared.deps["_uid"]

        members = []
        for uid in item.get("_uids") or []:
            record = accounts.get_imported(uid)
            if record is not None:
                members.append(record.target_id)
        if not members:
            raise DependencyError(f"none of the members {item.get('_uids')} were imported")

        prepared.data = drop_none(
            {
                "owner_id": owner.target_id,
                "member_ids": members,
                "name": item.get("_roomName"),
                "timestamp": item.get("_timestamp"),
            }
        )


class MessageImporter(EntityImporter):
    """Messages in imported rooms, or legacy direct messages in pair rooms."""

    ENTITY_TYPE = EntityType.MESSAGE

    async def transform(self, prepared: PreparedItem) -> None:
        item = prepared.item
        sender = prepared.deps["_fromuid"].target_id

        if normalize_id(item.get("_roomId")) is not None:
            room = prepared.deps.get("_roomId")
            if room is None:
                raise DependencyError(f"room _roomId={item.get('_roomId')} was not imported")
            room_id = room.target_id
        elif normalize_id(item.get("_touid")) is not None:
            recipient = prepared.deps.get("_touid")
            if recipient is None:
                raise DependencyError(f"account _touid={item.get('_touid')} was not imported")
            room_id = await self.pair_room(sender, recipient.target_id, item.get("_timestamp"))
        else:
            raise DependencyError("message has neither _roomId nor _touid")

        prepared.data = drop_none(
            {
                "account_id": sender,
                "room_id": room_id,
                "content": item.get("_content") or "",
                "timestamp": item.get("_timestamp"),
                "ip": item.get("_ip"),
            }
        )
        prepared.snapshot = {"room_id": room_id}

    async def pair_room(self, sender: str, recipient: str, timestamp: Any) -> str:
        """Room shared by all direct messages between two accounts."""
        room_id = await self.target.get_pair_room(sender, recipient)
        if room_id is not None:
            return str(room_id)

        room = await self.target.create(
            EntityType.ROOM.value,
            drop_none(
                {
                    "owner_id": sender,
                    "member_ids": [recipient],
                    "name": f"Room:{sender}:{recipient}",
                    "timestamp": timestamp,
                }
            ),
        )
        room_id = str(room["id"])
        await self.target.set_pair_room(sender, recipient, room_id)
        return room_id

    async def after_create(self, prepared: PreparedItem, created: dict[str, Any]) -> dict[str, Any]:
        await self.target.clear_room_unread(prepared.data["room_id"])
        return {**created, **prepared.snapshot}


class ThreadImporter(EntityImporter):
    """Threads with their main post. Locks are deferred to the resolver."""

    ENTITY_TYPE = EntityType.THREAD

    async def transform(self, prepared: PreparedItem) -> None:
        item = prepared.item
        run = self.ctx.run
        container = prepared.deps["_cid"]
        account_id = await self.resolve_account(prepared) or GUEST_ACCOUNT_ID

        attachments = await self.materializer.save_attachments(
            item.get("_attachmentsBlobs"), f"attachment_t_{prepared.source_id}"
        )
        images = list(item.get("_images") or []) + attachments.images
        files = list(item.get("_attachments") or []) + attachments.files

        content = item.get("_content") or ""
        title = item.get("_title") or ""
        if slugify(title):
            title = title[0].upper() + title[1:]
        else:
            title = truncate(content, 100)
        content += MaterializedAttachments(images, files).render()

        prepared.data = drop_none(
            {
                "account_id": account_id,
                "title": truncate(title, run.field_limits.get("title")),
                "content": content,
                "timestamp": item.get("_timestamp"),
                "ip": item.get("_ip"),
                "handle": item.get("_handle") or item.get("_guest"),
                "container_id": container.target_id,
                "thumb": item.get("_thumb"),
                "tags": split_tags(item.get("_tags")),
            }
        )
        prepared.fields = {
            "viewcount": item.get("_views") or item.get("_viewcount") or item.get("_viewscount") or 0,
            "locked": 0,
            "deleted": 1 if item.get("_deleted") else 0,
            "pinned": 1 if item.get("_pinned") else 0,
            **(item.get("_fields") or {}),
        }
        prepared.snapshot = {"account_id": account_id, "container_id": container.target_id}

    async def after_create(self, prepared: PreparedItem, created: dict[str, Any]) -> dict[str, Any]:
        item = prepared.item
        thread_id = str(created["id"])
        container_id = prepared.data["container_id"]

        if item.get("_pinned"):
            await self.target.pin_thread(thread_id)
        elif item.get("_timestamp") is not None:
            await self.target.set_thread_sort_key(container_id, thread_id, item["_timestamp"])

        fields = drop_none(prepared.fields)
        await self.target.set_fields(self.entity_name, thread_id, fields)

        main_post_id = normalize_id(created.get("main_post_id"))
        if main_post_id is not None:
            post_fields = {
                "votes": item.get("_votes") or 0,
                "reputation": item.get("_reputation") or 0,
                "edited": item.get("_edited") or 0,
            }
            await self.target.set_fields(EntityType.POST.value, main_post_id, post_fields)

        return {
            **created,
            **fields,
            "main_post_id": main_post_id,
            "account_id": prepared.data["account_id"],
            "container_id": container_id,
        }


class PostImporter(EntityImporter):
    """Replies. Teaser updates are deferred unless ``defer_teasers`` is off."""

    ENTITY_TYPE = EntityType.POST

    def __init__(self, ctx: RunContext, defer_teasers: bool = True):
        super().__init__(ctx)
        self.defer_teasers = defer_teasers

    async def transform(self, prepared: PreparedItem) -> None:
        item = prepared.item
        thread = prepared.deps["_tid"]
        account_id = await self.resolve_account(prepared) or GUEST_ACCOUNT_ID
        reply_to = prepared.deps.get("_toPid")

        attachments = await self.materializer.save_attachments(
            item.get("_attachmentsBlobs"), f"attachment_p_{prepared.source_id}"
        )
        images = list(item.get("_images") or []) + attachments.images
        files = list(item.get("_attachments") or []) + attachments.files

        content = item.get("_content") or ""
        if images or files:
            content += "\n<br>\n<br>"
            content += MaterializedAttachments(images, files).render()

        prepared.data = drop_none(
            {
                "account_id": account_id,
                "thread_id": thread.target_id,
                "content": content,
                "timestamp": item.get("_timestamp") or self.ctx.start_time,
                "handle": item.get("_handle") or item.get("_guest"),
                "ip": item.get("_ip"),
                "to_post_id": reply_to.target_id if reply_to else None,
            }
        )
        prepared.options = {"defer_teaser": self.defer_teasers}
        prepared.fields = {
            "reputation": item.get("_reputation") or 0,
            "votes": item.get("_votes") or 0,
            "edited": item.get("_edited") or 0,
            "deleted": item.get("_deleted") or 0,
            **(item.get("_fields") or {}),
        }
        prepared.snapshot = {"account_id": account_id, "thread_id": thread.target_id}


class VoteImporter(EntityImporter):
    """Up and down votes on posts, or on a thread's main post."""

    ENTITY_TYPE = EntityType.VOTE

    async def transform(self, prepared: PreparedItem) -> None:
        item = prepared.item
        post = prepared.deps.get("_pid")
        thread = prepared.deps.get("_tid")

        if item.get("_uemail"):
            voter = normalize_id(await self.target.find_account_by_email(item["_uemail"]))
        else:
            voter = prepared.deps["_uid"].target_id if prepared.deps.get("_uid") else None

        if post is not None:
            post_id = post.target_id
            author = post.target_snapshot.get("account_id")
        elif thread is not None:
            post_id = normalize_id(thread.target_snapshot.get("main_post_id"))
            author = thread.target_snapshot.get("account_id")
        else:
            post_id = author = None

        if ids_equal(author, voter):
            self.stats.bump("self_voted")
            raise SkipItemError(f"account {voter} voted on its own post")

        if post_id is None or voter is None:
            raise DependencyError(
                f"vote target (_pid={item.get('_pid')}, _tid={item.get('_tid')}) "
                f"or voter (_uid={item.get('_uid')}) was not imported"
            )

        prepared.data = {
            "post_id": post_id,
            "account_id": voter,
            "direction": -1 if normalize_id(item.get("_action")) == "-1" else 1,
        }


class BookmarkImporter(EntityImporter):
    ENTITY_TYPE = EntityType.BOOKMARK

    async def transform(self, prepared: PreparedItem) -> None:
        prepared.data = drop_none(
            {
                "thread_id": prepared.deps["_tid"].target_id,
                "account_id": prepared.deps["_uid"].target_id,
                "index": prepared.item.get("_index"),
            }
        )


IMPORTERS: dict[EntityType, type[EntityImporter]] = {
    EntityType.GROUP: GroupImporter,
    EntityType.CONTAINER: ContainerImporter,
    EntityType.ACCOUNT: AccountImporter,
    EntityType.ROOM: RoomImporter,
    EntityType.MESSAGE: MessageImporter,
    EntityType.THREAD: ThreadImporter,
    EntityType.POST: PostImporter,
    EntityType.VOTE: VoteImporter,
    EntityType.BOOKMARK: BookmarkImporter,
}


def create_importer(entity_type: EntityType | str, ctx: RunContext, **kwargs: Any) -> EntityImporter:
    """Build the importer for an entity type.

    Raises:
        ValueError: If the entity type is unknown
    """
    importer_class = IMPORTERS[get_info(entity_type).entity_type]
    return importer_class(ctx, **kwargs)
