"""Tests for forward and destructive batch traversal."""

import asyncio

import pytest

from forum_migration.migration.cursor import BatchCursor, iterate_batches, process_destructive


def _fetcher(items, calls=None):
    async def fetch(start, stop):
        if calls is not None:
            calls.append((start, stop))
        return list(items[start : stop + 1])

    return fetch


def test_forward_cursor_windows_are_inclusive():
    calls = []
    cursor = BatchCursor(_fetcher(list(range(7)), calls), batch_size=3)

    async def collect():
        return [batch async for batch in cursor]

    assert asyncio.run(collect()) == [[0, 1, 2], [3, 4, 5], [6]]
    assert calls == [(0, 2), (3, 5), (6, 8), (7, 9)]
    assert cursor.exhausted


def test_forward_cursor_advances_by_items_returned():
    async def short_fetch(start, stop):
        # never returns more than two items
        return list(range(start, min(start + 2, 5)))

    async def collect():
        return [batch async for batch in iterate_batches(short_fetch, 10)]

    assert asyncio.run(collect()) == [[0, 1], [2, 3], [4]]


def test_empty_set_yields_nothing():
    cursor = BatchCursor(_fetcher([]), batch_size=5)
    assert asyncio.run(cursor.next_batch()) == []
    assert asyncio.run(cursor.next_batch()) == []


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        BatchCursor(_fetcher([]), batch_size=0)


def test_destructive_walk_stays_pinned():
    items = list(range(5))
    calls = []

    async def remove(item):
        items.remove(item)

    batches = asyncio.run(process_destructive(_fetcher(items, calls), remove, batch_size=2))

    assert items == []
    assert batches == 3
    assert {start for start, _ in calls} == {0}


def test_destructive_walk_stops_on_done_if():
    items = ["keep", "a", "b", "c"]

    async def remove(item):
        if item != "keep":
            items.remove(item)

    def only_keep_left(start, stop, batch):
        return batch == ["keep"]

    asyncio.run(
        process_destructive(_fetcher(items), remove, batch_size=2, done_if=only_keep_left)
    )
    assert items == ["keep"]


def test_destructive_walk_stops_when_nothing_is_removed():
    handled = []

    async def ignore(item):
        handled.append(item)

    batches = asyncio.run(process_destructive(_fetcher([1, 2]), ignore, batch_size=5))

    assert batches == 1
    assert handled == [1, 2]
