"""Tests for the per-type importers."""

import asyncio

from forum_migration.client.exceptions import TargetStoreError
from forum_migration.config import DuplicateKeyPolicy
from forum_migration.migration.entities import EntityType
from forum_migration.migration.importer import (
    GUEST_ACCOUNT_ID,
    ImportOutcome,
    create_importer,
    pick_from_pool,
    truncate,
)
from forum_migration.migration.resolver import DeferredRelationshipResolver
from forum_migration.reporting.events import EventLevel
from tests.conftest import build_config, import_types
from tests.helpers.fakes import FakeSourceProvider, InMemoryTargetStore

ALL_TYPES = ("group", "container", "account", "room", "message", "thread", "post", "vote", "bookmark")


def test_import_is_idempotent(make_context, target):
    first = make_context()
    import_types(first, *ALL_TYPES)
    sizes = {kind: len(target.all(kind)) for kind in ALL_TYPES}
    ledger_sizes = {kind: first.ledger(kind).count() for kind in ALL_TYPES}

    second = make_context()
    import_types(second, *ALL_TYPES)

    assert {kind: len(target.all(kind)) for kind in ALL_TYPES} == sizes
    assert {kind: second.ledger(kind).count() for kind in ALL_TYPES} == ledger_sizes
    accounts = second.stats("import_accounts")
    assert accounts.imported == 3
    assert accounts.already_imported == 3


def test_full_import_counts(ctx, target):
    import_types(ctx, *ALL_TYPES)

    assert ctx.ledger("group").count() == 1
    assert ctx.ledger("container").count() == 3
    assert ctx.ledger("account").count() == 3
    assert ctx.ledger("room").count() == 1
    assert ctx.ledger("message").count() == 3
    assert ctx.ledger("thread").count() == 2
    assert ctx.ledger("post").count() == 2
    # vote 2 is bob voting on his own post
    assert ctx.ledger("vote").count() == 1
    assert ctx.ledger("bookmark").count() == 1
    assert ctx.stats("import_votes").counters["self_voted"] == 1


def test_group_target_id_is_its_name(ctx, target):
    import_types(ctx, "group")

    record = ctx.ledger("group").get_imported(1)
    assert record.target_id == "Staff"
    assert target.entities["group"]["Staff"]["userTitleEnabled"] == 1


def test_thread_with_missing_container_is_skipped_then_imported(make_context, source, target):
    source.data["thread"].append({"_tid": 200, "_cid": 99, "_uid": 10, "_title": "orphan"})
    ctx = make_context()
    import_types(ctx, "group", "container", "account", "thread")

    stats = ctx.stats("import_threads")
    assert stats.imported == 2
    assert stats.total == 3
    assert ctx.ledger("thread").get_imported(200) is None
    assert any(item.source_id == "200" for item in ctx.summary.skipped_items)

    source.data["container"].append({"_cid": 99, "_name": "Found"})
    fixed = make_context()
    import_types(fixed, "container", "thread")
    import_types(make_context(), "thread")

    assert fixed.ledger("thread").get_imported(200) is not None
    assert len([t for t in target.all("thread") if t["title"] == "Orphan"]) == 1


def test_single_thread_dependency_skip_reports_zero_of_one(make_context, target):
    source = FakeSourceProvider({"thread": [{"_tid": 5, "_cid": 1, "_title": "alone"}]})
    ctx = make_context(source=source)
    import_types(ctx, "thread")

    stats = ctx.stats("import_threads")
    assert (stats.imported, stats.total, stats.skipped) == (0, 1, 1)
    assert "container" in ctx.summary.skipped_items[0].reason
    assert target.all("thread") == []


def test_optional_author_falls_back_to_guest(make_context, target):
    source = FakeSourceProvider(
        {
            "container": [{"_cid": 1, "_name": "General"}],
            "thread": [{"_tid": 5, "_cid": 1, "_uid": 404, "_title": "guest post"}],
        }
    )
    ctx = make_context(source=source)
    import_types(ctx, "container", "thread")

    thread = target.all("thread")[0]
    assert thread["account_id"] == GUEST_ACCOUNT_ID


def test_missing_source_id_is_skipped(make_context):
    source = FakeSourceProvider({"container": [{"_name": "no id"}]})
    ctx = make_context(source=source)
    import_types(ctx, "container")

    assert ctx.stats("import_containers").skipped == 1
    assert "_cid" in ctx.summary.skipped_items[0].reason


def _account_source(email: str) -> FakeSourceProvider:
    return FakeSourceProvider({"account": [{"_uid": 1, "_username": "dupe", "_email": email}]})


def test_suffix_policy_converges_on_next_free_address(make_context, tmp_path, target):
    target.seed_account("dup@example.com")
    target.seed_account("dup+dup1@example.com")
    config = build_config(tmp_path, run={"duplicate_key_policy": "suffix"})
    ctx = make_context(config=config, source=_account_source("dup@example.com"))
    import_types(ctx, "account")

    record = ctx.ledger("account").get_imported(1)
    assert record.target_snapshot["email"] == "dup+dup2@example.com"
    assert ctx.stats("import_accounts").counters["duplicate_key_suffixed"] == 1

    rerun = make_context(config=config, source=_account_source("dup@example.com"))
    import_types(rerun, "account")
    assert len(target.all("account")) == 4


def test_suffix_policy_gives_up_after_max_attempts(make_context, tmp_path, target):
    for email in ("dup@example.com", "dup+dup1@example.com", "dup+dup2@example.com"):
        target.seed_account(email)
    config = build_config(
        tmp_path, run={"duplicate_key_policy": "suffix", "max_duplicate_key_attempts": 2}
    )
    ctx = make_context(config=config, source=_account_source("dup@example.com"))
    import_types(ctx, "account")

    assert ctx.ledger("account").count() == 0
    assert ctx.stats("import_accounts").skipped == 1


def test_merge_policy_reuses_existing_account(make_context, tmp_path, target):
    existing = target.seed_account("taken@example.com")
    config = build_config(tmp_path, run={"duplicate_key_policy": DuplicateKeyPolicy.MERGE})
    ctx = make_context(config=config, source=_account_source("taken@example.com"))
    import_types(ctx, "account")

    assert ctx.ledger("account").get_target_id(1) == existing
    assert ctx.stats("import_accounts").counters["duplicate_key_merged"] == 1
    assert len(target.all("account")) == 2


def test_skip_policy_skips_colliding_account(make_context, tmp_path, target):
    target.seed_account("taken@example.com")
    config = build_config(tmp_path, run={"duplicate_key_policy": "skip"})
    ctx = make_context(config=config, source=_account_source("taken@example.com"))
    import_types(ctx, "account")

    assert ctx.ledger("account").count() == 0
    assert "already exists" in ctx.summary.skipped_items[0].reason


def test_owner_takeover_maps_onto_administrator(make_context, tmp_path, target):
    config = build_config(
        tmp_path, run={"owner_takeover": {"enabled": True, "username": "ALICE"}}
    )
    ctx = make_context(config=config)
    import_types(ctx, "account")

    assert ctx.ledger("account").get_target_id(10) == "1"
    assert ctx.owner_source_id == "10"
    # alice, bob and carol minus the takeover: two new accounts
    assert len(target.all("account")) == 3


def test_account_fields_and_moderator_level(ctx, target):
    import_types(ctx, "group", "account")

    alice = ctx.ledger("account").get_imported(10)
    carol = ctx.ledger("account").get_imported("12")
    assert target.entities["account"][alice.target_id]["banned"] == 0
    assert alice.target_id in target.memberships["Staff"]
    assert carol.target_id in target.memberships["Global Moderators"]
    assert target.confirmation_clears == [None]


def test_invalid_username_is_skipped(make_context):
    source = FakeSourceProvider({"account": [{"_uid": 1, "_username": "!!!", "_email": "x@y"}]})
    ctx = make_context(source=source)
    import_types(ctx, "account")

    assert ctx.stats("import_accounts").skipped == 1


def test_direct_messages_share_one_pair_room(ctx, target):
    import_types(ctx, "account", "room", "message")

    assert len(target.pair_rooms) == 1
    pair_room = next(iter(target.pair_rooms.values()))
    rooms = {ctx.ledger("message").get_imported(mid).target_snapshot["room_id"] for mid in (2, 3)}
    assert rooms == {pair_room}
    assert len(target.all("room")) == 2


def test_self_vote_detected_across_id_types(make_context, target):
    source = FakeSourceProvider({"vote": [{"_vid": 1, "_pid": 500, "_uid": 50}]})
    ctx = make_context(source=source)
    ctx.ledger(EntityType.ACCOUNT).set_imported(50, "5")
    ctx.ledger(EntityType.POST).set_imported(500, "900", {"account_id": 5})

    importer = create_importer(EntityType.VOTE, ctx)
    outcome = asyncio.run(importer.import_item(source.data["vote"][0]))

    assert outcome is ImportOutcome.SKIPPED
    assert importer.stats.counters["self_voted"] == 1
    assert target.all("vote") == []


def test_vote_on_thread_uses_main_post(ctx, target):
    import_types(ctx, "container", "account", "thread")
    source = FakeSourceProvider({"vote": [{"_vid": 9, "_tid": 100, "_uid": 11, "_action": -1}]})
    ctx.source = source
    import_types(ctx, "vote")

    thread = ctx.ledger("thread").get_imported(100)
    vote = target.all("vote")[0]
    assert vote["post_id"] == thread.target_snapshot["main_post_id"]
    assert vote["direction"] == -1


def _thread_with_posts(count: int) -> FakeSourceProvider:
    return FakeSourceProvider(
        {
            "container": [{"_cid": 1, "_name": "General"}],
            "thread": [{"_tid": 1, "_cid": 1, "_title": "busy", "_timestamp": 1}],
            "post": [
                {"_pid": n, "_tid": 1, "_content": f"post {n}", "_timestamp": n + 1}
                for n in range(1, count + 1)
            ],
        }
    )


def test_teaser_updated_once_when_deferred(make_context, target):
    ctx = make_context(source=_thread_with_posts(50))
    import_types(ctx, "container", "thread", "post")

    assert sum(target.teaser_updates.values()) == 0
    asyncio.run(DeferredRelationshipResolver(ctx).fix_thread_teasers())

    thread_id = ctx.ledger("thread").get_target_id(1)
    assert target.teaser_updates == {thread_id: 1}


def test_teaser_updated_per_post_when_not_deferred(make_context, target):
    ctx = make_context(source=_thread_with_posts(50))
    import_types(ctx, "container", "thread")
    import_types(ctx, "post", defer_teasers=False)

    thread_id = ctx.ledger("thread").get_target_id(1)
    assert target.teaser_updates[thread_id] == 50


def test_container_cosmetics_are_stable(ctx, target):
    import_types(ctx, "container")

    general = target.entities["container"][ctx.ledger("container").get_target_id(1)]
    assert general["icon"] == "fa-comment"
    assert general["bgColor"] == pick_from_pool(ctx.run.container_bg_colors, "1")
    assert general["parent_id"] == "0"


def test_thread_attachments_are_appended(make_context, blobs, target):
    png = b"\x89PNG\r\n\x1a\n" + b"0" * 8
    source = FakeSourceProvider(
        {
            "container": [{"_cid": 1, "_name": "General"}],
            "thread": [
                {
                    "_tid": 1,
                    "_cid": 1,
                    "_title": "pics",
                    "_content": "look",
                    "_attachmentsBlobs": [
                        {"blob": png, "filename": "a.png"},
                        {"blob": b"plain text", "extension": ".txt"},
                    ],
                }
            ],
        }
    )
    ctx = make_context(source=source)
    import_types(ctx, "container", "thread")

    content = target.all("thread")[0]["content"]
    assert '<img class="imported-image-tag"' in content
    assert 'download="attachment_t_1_1.txt"' in content
    assert "_imported_attachments/attachment_t_1_0_a.png" in blobs.blobs
    record = ctx.ledger("thread").get_imported(1)
    assert "_attachmentsBlobs" not in record.source_snapshot


def test_truncate_marks_the_cut():
    assert truncate("abcdefghij", 6) == "abc..."
    assert truncate("abc", 6) == "abc"
    assert truncate("abcdefghij", 4, ellipsis="") == "abcd"
    assert truncate(None, 4) is None


def test_fresh_store_accepts_every_type(make_context):
    target = InMemoryTargetStore()
    ctx = make_context(target=target)
    import_types(ctx, *ALL_TYPES)

    assert ctx.summary.skipped_items[0].entity_type == "vote"
    assert len(ctx.summary.skipped_items) == 1


def test_failed_follow_up_keeps_entity_in_ledger(make_context, target, recorder):
    set_fields = target.set_fields
    failures = []

    async def refuse_first_thread(entity_type, target_id, fields):
        if entity_type == "thread" and not failures:
            failures.append(target_id)
            raise TargetStoreError("thread fields rejected")
        await set_fields(entity_type, target_id, fields)

    target.set_fields = refuse_first_thread
    first = make_context()
    import_types(first, "group", "container", "account", "thread")

    assert first.ledger("thread").count() == 2
    assert first.stats("import_threads").counters["follow_up_failed"] == 1
    assert "follow_up_failed" in recorder.messages(EventLevel.WARN)
    record = first.ledger("thread").get_imported(100)
    assert record.target_snapshot["main_post_id"]
    assert record.target_snapshot["container_id"] == first.ledger("container").get_target_id(1)

    second = make_context()
    import_types(second, "thread")

    assert len(target.all("thread")) == 2
    assert second.stats("import_threads").already_imported == 2


def test_account_picture_name_keeps_only_the_file_name(make_context, blobs, target):
    source = FakeSourceProvider(
        {
            "account": [
                {
                    "_uid": 5,
                    "_username": "dave",
                    "_email": "dave@example.com",
                    "_pictureBlob": b"GIF89a",
                    "_pictureFilename": "../../../avatar.gif",
                }
            ]
        }
    )
    ctx = make_context(source=source)
    import_types(ctx, "account")

    account_id = ctx.ledger("account").get_target_id(5)
    name = f"_imported_profiles/_{account_id}_avatar.gif"
    assert list(blobs.blobs) == [name]
    assert target.entities["account"][account_id]["picture"] == f"/uploads/{name}"
