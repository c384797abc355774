"""Tests for the deferred relationship sweeps."""

import asyncio

import pytest

from forum_migration.client.exceptions import TargetStoreError
from forum_migration.client.target_store import GUESTS_GROUP, REGISTERED_USERS_GROUP
from forum_migration.migration.resolver import (
    DeferredRelationshipResolver,
    as_flag,
    decode_id_list,
)
from forum_migration.reporting.events import EventLevel
from tests.conftest import import_types

ALL_TYPES = ("group", "container", "account", "room", "message", "thread", "post", "vote", "bookmark")


@pytest.mark.parametrize(
    "value,expected",
    [
        ([1, 2], [1, 2]),
        ("[1, 2]", [1, 2]),
        ('"[3]"', [3]),
        ("not json", []),
        ('{"a": 1}', []),
        (None, []),
        ("", []),
    ],
)
def test_decode_id_list(value, expected):
    assert decode_id_list(value) == expected


@pytest.mark.parametrize(
    "value,expected",
    [(1, True), ("1", True), (True, True), (0, False), ("0", False), (None, False), ("x", False)],
)
def test_as_flag(value, expected):
    assert as_flag(value) is expected


@pytest.fixture
def imported(ctx):
    import_types(ctx, *ALL_TYPES)
    return ctx


def _run(coro):
    return asyncio.run(coro)


def test_container_hierarchy_links_parent_and_disables(imported, target):
    ctx = imported
    stats = _run(DeferredRelationshipResolver(ctx).fix_container_hierarchy())

    general = ctx.ledger("container").get_target_id(1)
    staff = ctx.ledger("container").get_imported(2)
    archive = ctx.ledger("container").get_target_id(3)
    assert target.entities["container"][staff.target_id]["parent_id"] == general
    assert target.entities["container"][archive]["disabled"] == 1
    assert ctx.ledger("container").get_imported(2).target_snapshot["parent_id"] == general
    assert stats.counters == {"linked": 1, "disabled": 1, "visited": 3}


def test_unresolved_parent_warns(ctx, source, target, recorder):
    source.data["container"] = [{"_cid": 5, "_name": "Lost", "_parentCid": 77}]
    import_types(ctx, "container")
    _run(DeferredRelationshipResolver(ctx).fix_container_hierarchy())

    assert "container_parent_not_imported" in recorder.messages(EventLevel.WARN)
    assert target.all("container")[0]["parent_id"] == "0"


def test_replay_accounts(imported, target):
    ctx = imported
    _run(DeferredRelationshipResolver(ctx).replay_accounts())

    accounts = ctx.ledger("account")
    alice, bob = accounts.get_target_id(10), accounts.get_target_id(11)
    assert target.banned == {bob}
    assert target.following == {(alice, bob)}
    assert frozenset((alice, bob)) in target.friends
    assert target.read_threads[alice] == {ctx.ledger("thread").get_target_id(100)}
    assert target.read_containers[alice] == {ctx.ledger("container").get_target_id(1)}
    assert alice in target.confirmation_clears


def test_replay_accounts_is_rerunnable(imported, target):
    resolver = DeferredRelationshipResolver(imported)
    _run(resolver.replay_accounts())
    stats = _run(resolver.replay_accounts())

    # second pass finds the follow and friendship already in place
    assert stats.counters["followed"] == 1
    assert stats.counters["friended"] == 1
    assert len(target.following) == 1


def test_self_follow_is_ignored(ctx, source, target):
    source.data["account"] = [
        {"_uid": 1, "_username": "solo", "_email": "solo@x", "_followingUids": [1]}
    ]
    import_types(ctx, "account")
    _run(DeferredRelationshipResolver(ctx).replay_accounts())

    assert target.following == set()


def test_relock_and_resort(imported, target):
    ctx = imported
    _run(DeferredRelationshipResolver(ctx).fix_thread_timestamps_and_relock())

    hello = ctx.ledger("thread").get_imported(100)
    rules = ctx.ledger("thread").get_imported(101)
    general = ctx.ledger("container").get_target_id(1)
    assert target.entities["thread"][hello.target_id]["locked"] == 1
    assert target.sort_keys[(general, hello.target_id)] == 1600
    assert target.entities["thread"][rules.target_id].get("locked") == 0


def test_group_ownership_and_restriction(imported, target):
    ctx = imported
    staff_room = ctx.ledger("container").get_target_id(2)
    for group in (GUESTS_GROUP, REGISTERED_USERS_GROUP):
        _run(target.grant_access(group, staff_room))

    _run(DeferredRelationshipResolver(ctx).fix_group_ownership_and_restrict_containers())

    alice = ctx.ledger("account").get_target_id(10)
    assert (alice, "Staff") in target.group_owners
    assert (GUESTS_GROUP, staff_room) not in target.access
    assert (REGISTERED_USERS_GROUP, staff_room) not in target.access
    assert target.access[("Staff", staff_room)] == {"*"}


def test_group_without_owner_warns(ctx, source, recorder):
    source.data["group"] = [{"_gid": 3, "_name": "Orphans"}]
    import_types(ctx, "group")
    _run(DeferredRelationshipResolver(ctx).fix_group_ownership_and_restrict_containers())

    assert "group_has_no_owner" in recorder.messages(EventLevel.WARN)


def test_sweep_counts_visits_not_imports(imported):
    stats = _run(DeferredRelationshipResolver(imported).fix_thread_teasers())

    assert stats.total == 2
    assert stats.imported == 0
    assert stats.counters["visited"] == 2


def test_failed_fix_up_does_not_stop_the_sweep(imported, target, recorder):
    async def refuse_ban(account_id):
        raise TargetStoreError("ban endpoint unavailable")

    target.ban = refuse_ban
    stats = _run(DeferredRelationshipResolver(imported).replay_accounts())

    assert stats.failed == 1
    assert stats.counters["visited"] == 2
    assert "fix_up_failed" in recorder.messages(EventLevel.WARN)
    alice = imported.ledger("account").get_target_id(10)
    assert target.read_threads[alice]
