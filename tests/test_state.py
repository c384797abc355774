"""Tests for the import ledger, checkpoint store and id normalization."""

import asyncio

import pytest

from forum_migration.client.exceptions import StateError
from forum_migration.migration.checkpoint import CheckpointStore
from forum_migration.migration.entities import (
    IMPORT_ORDER,
    EntityType,
    get_info,
    ids_equal,
    normalize_id,
    strip_blobs,
)
from forum_migration.migration.ledger import ImportLedger


@pytest.fixture
def ledger(database):
    return ImportLedger(database, EntityType.ACCOUNT)


@pytest.mark.parametrize(
    "value,expected",
    [(7, "7"), ("7", "7"), (" 7 ", "7"), (7.0, "7"), ("007", "7"), ("abc", "abc"), ("", None), (None, None)],
)
def test_normalize_id(value, expected):
    assert normalize_id(value) == expected


def test_ids_equal():
    assert ids_equal(5, "5")
    assert not ids_equal(None, None)
    assert not ids_equal("5", "6")


def test_every_dependency_is_imported_earlier():
    for position, entity_type in enumerate(IMPORT_ORDER):
        for dep in get_info(entity_type).dependencies:
            if dep.entity_type is entity_type:
                continue
            assert IMPORT_ORDER.index(dep.entity_type) < position


def test_get_info_rejects_unknown_type():
    with pytest.raises(ValueError):
        get_info("forum")


def test_strip_blobs():
    item = {"_uid": 1, "_pictureBlob": b"x", "_password": "secret", "_username": "a"}
    assert strip_blobs(item, EntityType.ACCOUNT) == {"_uid": 1, "_username": "a"}


def test_ledger_lookup_normalizes_ids(ledger):
    ledger.set_imported(17, 204, {"username": "bob"}, {"_uid": 17})

    record = ledger.get_imported("17")
    assert record.target_id == "204"
    assert record.target_snapshot == {"username": "bob"}
    assert ledger.get_target_id(17.0) == "204"
    assert ledger.get_imported(18) is None


def test_target_id_is_never_reassigned(ledger):
    ledger.set_imported(1, "10")
    record = ledger.set_imported("1", "99")

    assert record.target_id == "10"
    assert ledger.count() == 1


def test_empty_ids_are_rejected(ledger):
    with pytest.raises(StateError):
        ledger.set_imported(None, "1")
    with pytest.raises(StateError):
        ledger.set_imported(1, "")


def test_ledgers_are_scoped_by_type(database, ledger):
    ledger.set_imported(1, "10")
    posts = ImportLedger(database, EntityType.POST)

    assert posts.get_imported(1) is None
    assert posts.count() == 0


def test_enrich_merges_snapshot(ledger):
    ledger.set_imported(1, "10", {"a": 1})
    record = ledger.enrich(1, {"b": 2, "blob": b"raw"})

    assert record.target_snapshot == {"a": 1, "b": 2}
    assert record.target_id == "10"
    assert ledger.enrich(2, {"b": 2}) is None


def test_each_visits_every_record_with_bounded_concurrency(ledger):
    for n in range(25):
        ledger.set_imported(n, f"t{n}")

    in_flight = 0
    peak = 0
    seen = []

    async def visit(record):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        seen.append(record.source_id)
        in_flight -= 1

    visited = asyncio.run(ledger.each(visit, limit=3))

    assert visited == 25
    assert sorted(seen, key=int) == [str(n) for n in range(25)]
    assert peak <= 3


def test_each_finishes_the_page_before_raising(ledger):
    for n in range(5):
        ledger.set_imported(n, f"t{n}")
    seen = []

    async def visit(record):
        await asyncio.sleep(0)
        if record.source_id == "1":
            raise StateError("snapshot unreadable")
        seen.append(record.source_id)

    with pytest.raises(StateError):
        asyncio.run(ledger.each(visit, limit=2))
    assert sorted(seen, key=int) == ["0", "2", "3", "4"]


def test_delete_each_imported(ledger):
    for n in range(3):
        ledger.set_imported(n, n + 100)
    progress = []

    assert ledger.delete_each_imported(progress=lambda done, total: progress.append((done, total))) == 3
    assert ledger.count() == 0
    assert progress == [(3, 3)]


def test_checkpoint_lifecycle(database):
    store = CheckpointStore(database)
    assert not store.any_dirty()

    store.mark_dirty("import_accounts")
    store.mark_dirty("import_accounts")
    store.mark_dirty("import_posts")

    assert store.is_dirty("import_accounts")
    assert store.dirty_phases() == ["import_accounts", "import_posts"]

    store.clear("import_accounts")
    assert not store.is_dirty("import_accounts")
    assert store.clear_all() == 1
    assert not store.any_dirty()


def test_checkpoints_survive_a_new_store(database):
    CheckpointStore(database).mark_dirty("import_threads")
    assert CheckpointStore(database).dirty_phases() == ["import_threads"]
