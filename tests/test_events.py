"""Tests for the event bus and run summary."""

import pytest

from forum_migration.client.exceptions import EventChannelError
from forum_migration.reporting.events import EventBus, EventLevel, MigrationObserver, RunSummary
from tests.helpers.fakes import RecordingObserver


class ExplodingObserver(MigrationObserver):
    def on_log(self, level, message, context):
        raise RuntimeError("display closed")

    def on_error(self, error, phase):
        raise RuntimeError("display closed")


@pytest.fixture
def bus():
    return EventBus(progress_interval=10)


def test_progress_is_throttled(bus):
    recorder = RecordingObserver()
    bus.subscribe(recorder)
    bus.phase_changed("import_posts")

    emitted = [bus.progress(count, 100) for count in (0, 5, 9, 10, 15, 21, 100)]

    assert emitted == [True, False, False, True, False, True, True]
    assert [count for count, _, _ in recorder.progress] == [0, 10, 21, 100]


def test_phase_change_resets_throttle(bus):
    recorder = RecordingObserver()
    bus.subscribe(recorder)
    bus.phase_changed("import_threads")
    bus.progress(50, 100)
    bus.phase_changed("import_posts")

    assert bus.progress(5, 100) is False
    assert bus.progress(10, 100) is True


def test_zero_total_counts_as_complete(bus):
    assert bus.progress(0, 0) is True


def test_log_levels_are_routed(recorder):
    bus = EventBus(subscriber_levels=["warn", "error"], console_levels=[])
    bus.subscribe(recorder)
    bus.phase_changed("import_accounts")

    bus.log("importer.start")
    bus.warn("item_skipped", source_id="7")
    bus.success("done")

    assert recorder.logs == [
        (EventLevel.WARN, "item_skipped", {"source_id": "7", "phase": "import_accounts"})
    ]


def test_observer_failure_is_fatal(recorder):
    bus = EventBus()
    bus.subscribe(ExplodingObserver())

    with pytest.raises(EventChannelError):
        bus.warn("anything")


def test_error_hook_never_raises(recorder):
    bus = EventBus()
    bus.subscribe(ExplodingObserver())
    bus.subscribe(recorder)

    bus.error(ValueError("boom"), "import_posts")

    assert recorder.errors[0][1] == "import_posts"


def test_summary_totals():
    summary = RunSummary()
    summary.phase("import_accounts").imported = 3
    summary.phase("import_posts").imported = 2
    summary.phase("import_posts").skipped = 1
    summary.phase("fix_thread_teasers").bump("visited", 4)

    assert summary.total_imported == 5
    assert summary.total_skipped == 1
    data = summary.to_dict()
    assert [p["phase"] for p in data["phases"]] == [
        "import_accounts",
        "import_posts",
        "fix_thread_teasers",
    ]
    assert data["phases"][2]["counters"] == {"visited": 4}
