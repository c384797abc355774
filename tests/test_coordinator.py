"""End-to-end tests for the migration coordinator."""

import asyncio
import json

import pytest

from forum_migration.client.exceptions import (
    EnvironmentBackupError,
    FatalMigrationError,
    PhaseFailedError,
    TargetStoreError,
)
from forum_migration.client.target_store import GUESTS_GROUP, READ_PRIVILEGES
from forum_migration.migration.coordinator import (
    PHASE_NAMES,
    PHASES,
    MigrationCoordinator,
    get_phase,
)
from forum_migration.reporting.events import EventLevel
from tests.helpers.fakes import InMemoryTargetStore


def _fail_on_post(after: int):
    created = 0

    def fail(entity_type, data):
        nonlocal created
        if entity_type != "post":
            return None
        created += 1
        if created > after:
            return FatalMigrationError("target went away")
        return None

    return fail


def test_phase_order():
    names = list(PHASE_NAMES)
    assert names[0] == "backup_environment"
    assert names[-1] == "teardown"
    assert names.index("import_groups") < names.index("cooldown") < names.index("import_containers")
    assert names.index("import_containers") + 1 == names.index("allow_guests_write")
    assert names.index("import_bookmarks") < names.index("fix_container_hierarchy")
    assert names.index("restore_environment") < names.index("disallow_guests_write")
    assert [p.name for p in PHASES if p.checkpointed] == [
        "import_groups",
        "import_containers",
        "import_accounts",
        "import_rooms",
        "import_messages",
        "import_threads",
        "import_posts",
        "import_votes",
        "import_bookmarks",
    ]


def test_get_phase_rejects_unknown_name():
    assert get_phase("cooldown").description
    with pytest.raises(ValueError):
        get_phase("import_everything")


def test_nothing_skipped_without_dirty_phase(ctx):
    assert MigrationCoordinator(ctx).phases_to_skip() == []


def test_skip_phases_before_first_dirty(ctx):
    ctx.checkpoints.mark_dirty("import_posts")
    skipped = MigrationCoordinator(ctx).phases_to_skip()

    assert skipped == [
        "import_groups",
        "import_containers",
        "import_accounts",
        "import_rooms",
        "import_messages",
        "import_threads",
        "allow_guests_write",
    ]


def test_guest_write_phase_runs_when_containers_are_dirty(ctx):
    ctx.checkpoints.mark_dirty("import_containers")
    assert MigrationCoordinator(ctx).phases_to_skip() == ["import_groups"]


def test_full_run(ctx, target, recorder, tmp_path):
    summary = asyncio.run(MigrationCoordinator(ctx).run())

    assert summary.success
    assert recorder.phases == list(PHASE_NAMES)
    assert recorder.completed == [summary]
    assert not ctx.checkpoints.any_dirty()
    assert not (tmp_path / "tmp" / "environment.backup.json").exists()

    # restored settings, maintenance off
    assert target.settings["maintenanceMode"] == 0
    assert target.settings["postDelay"] == 10
    assert target.settings["maximumChatMessageLength"] == 1000
    assert target.config_writes[0]["maintenanceMode"] == 1
    assert target.config_writes[0]["requireEmailConfirmation"] == 0

    general = ctx.ledger("container").get_target_id(1)
    staff_room = ctx.ledger("container").get_target_id(2)
    assert target.access[(GUESTS_GROUP, general)] == set(READ_PRIVILEGES)
    assert (GUESTS_GROUP, staff_room) not in target.access
    assert sum(target.teaser_updates.values()) == 2

    assert summary.total_imported == 17
    assert summary.total_skipped == 1
    assert "importer.start" in recorder.messages(EventLevel.LOG)
    assert "Skipping data flush" in recorder.messages(EventLevel.LOG)
    assert "importer.complete" in recorder.messages(EventLevel.LOG)


def test_crash_then_resume(make_context, target, recorder, tmp_path):
    target.fail_on = _fail_on_post(after=1)
    crashed = make_context()

    with pytest.raises(PhaseFailedError) as excinfo:
        asyncio.run(MigrationCoordinator(crashed).run())

    assert excinfo.value.phase == "import_posts"
    assert crashed.checkpoints.dirty_phases() == ["import_posts"]
    assert crashed.ledger("post").count() == 1
    assert crashed.summary.errors[0]["phase"] == "import_posts"
    assert recorder.errors[0][1] == "import_posts"
    assert (tmp_path / "tmp" / "environment.backup.json").exists()
    assert target.settings["maintenanceMode"] == 1

    target.fail_on = None
    resumed = make_context()
    summary = asyncio.run(MigrationCoordinator(resumed).resume())

    assert summary.success
    assert summary.resumed
    assert "import_accounts" in summary.skipped_phases
    assert "allow_guests_write" in summary.skipped_phases
    assert "import_posts" not in summary.skipped_phases
    assert summary.phases["import_posts"].already_imported == 1
    assert resumed.ledger("post").count() == 2
    assert len([p for p in target.all("post") if not p.get("main")]) == 2
    assert not resumed.checkpoints.any_dirty()
    assert "importer.resume" in recorder.messages(EventLevel.LOG)
    assert "environment_snapshot_reused" in recorder.messages(EventLevel.WARN)
    # the snapshot from before the crash wins over the overridden live settings
    assert target.settings["postDelay"] == 10
    assert target.settings["maintenanceMode"] == 0


def test_rerun_after_success_reimports_nothing(make_context, target):
    asyncio.run(MigrationCoordinator(make_context()).run())
    accounts = len(target.all("account"))
    posts = len(target.all("post"))

    second = make_context()
    summary = asyncio.run(MigrationCoordinator(second).run())

    assert summary.skipped_phases == []
    assert len(target.all("account")) == accounts
    assert len(target.all("post")) == posts
    assert summary.phases["import_posts"].already_imported == 2


def test_flush_run_clears_checkpoints_and_target(make_context, target):
    first = make_context()
    asyncio.run(MigrationCoordinator(first).run())
    first.checkpoints.mark_dirty("import_votes")

    second = make_context()
    summary = asyncio.run(MigrationCoordinator(second).run(flush=True))

    assert summary.flushed
    assert summary.skipped_phases == []
    assert not second.checkpoints.any_dirty()
    assert target.counter_resets == 1
    # everything was purged then imported again exactly once
    assert len(target.all("container")) == 3
    assert len(target.all("account")) == 4
    assert second.ledger("thread").count() == 2
    assert summary.phases["import_threads"].already_imported == 0


def test_unreadable_snapshot_aborts_before_flush(make_context, target, tmp_path):
    backup = tmp_path / "tmp" / "environment.backup.json"
    backup.parent.mkdir(parents=True)
    backup.write_text("{not json")
    ctx = make_context()

    with pytest.raises(EnvironmentBackupError):
        asyncio.run(MigrationCoordinator(ctx).run(flush=True))

    assert target.counter_resets == 0
    assert ctx.summary.errors[0]["phase"] == "backup_environment"


def test_run_writes_reports(make_context, tmp_path):
    coordinator = MigrationCoordinator(make_context(), generate_report=True)
    summary = asyncio.run(coordinator.run())

    report = json.loads((tmp_path / "reports").joinpath(
        f"migration_report_{summary.started_at.strftime('%Y%m%d_%H%M%S')}.json"
    ).read_text())
    assert report["summary"]["success"] is True
    assert set(coordinator.report_files) == {"json", "markdown"}


def test_post_process_hooks_receive_each_record(make_context, source):
    source.hooks = {"account", "vote"}
    summary = asyncio.run(MigrationCoordinator(make_context()).run())

    kinds = [kind for kind, _, _ in source.processed]
    assert kinds == ["account"] * 3 + ["vote"]
    assert summary.phases["post_process_hooks"].total == 4


def test_restore_failure_keeps_snapshot(make_context, tmp_path, recorder):
    target = InMemoryTargetStore()
    ctx = make_context(target=target)
    coordinator = MigrationCoordinator(ctx)

    async def run():
        await coordinator.environment.backup()
        target.fail_set_config = True
        return await coordinator.environment.restore()

    assert asyncio.run(run()) is False
    assert (tmp_path / "tmp" / "environment.backup.json").exists()
    assert "environment_restore_failed" in recorder.messages(EventLevel.WARN)


def test_failed_fix_up_still_restores_environment(ctx, target, recorder):
    async def refuse_ban(account_id):
        raise TargetStoreError("ban endpoint unavailable")

    target.ban = refuse_ban
    summary = asyncio.run(MigrationCoordinator(ctx).run())

    assert summary.success
    assert summary.phases["replay_accounts"].failed == 1
    assert summary.phases["teardown"].status == "completed"
    assert target.settings["maintenanceMode"] == 0
    assert "fix_up_failed" in recorder.messages(EventLevel.WARN)
