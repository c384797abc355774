"""Tests for report generation."""

import json

from forum_migration.reporting.events import RunSummary, SkippedItem
from forum_migration.reporting.report import MAX_LISTED_ITEMS, MigrationReport, generate_migration_report


def _summary(success=True, skipped=0):
    summary = RunSummary(resumed=True, success=success)
    stats = summary.phase("import_threads")
    stats.total = 3
    stats.imported = 2
    stats.skipped = skipped
    stats.status = "completed"
    summary.skipped_phases.append("import_accounts")
    summary.skipped_items.extend(
        SkippedItem("import_threads", "thread", str(n), "container _cid=9 was not imported")
        for n in range(skipped)
    )
    return summary


def test_generate_both_formats(tmp_path):
    files = generate_migration_report("run1", _summary(skipped=1), output_dir=tmp_path)

    data = json.loads((tmp_path / "migration_report_run1.json").read_text())
    assert data["run_id"] == "run1"
    assert data["summary"]["total_imported"] == 2
    assert files == {
        "json": str(tmp_path / "migration_report_run1.json"),
        "markdown": str(tmp_path / "migration_report_run1.md"),
    }

    markdown = (tmp_path / "migration_report_run1.md").read_text()
    assert "| import_threads | completed | 2/3 |" in markdown
    assert "## Phases Skipped On Resume" in markdown
    assert "container _cid=9 was not imported" in markdown


def test_long_skip_lists_are_cut(tmp_path):
    markdown = MigrationReport("r", _summary(skipped=MAX_LISTED_ITEMS + 5)).generate_markdown()
    assert "*... and 5 more skipped items*" in markdown


def test_recommendations():
    report = MigrationReport("r", _summary(success=False, skipped=2))
    recommendations = report._generate_recommendations()

    assert any("forum-bridge resume" in rec for rec in recommendations)
    assert any("2 items were skipped" in rec for rec in recommendations)
    assert MigrationReport("r", _summary())._generate_recommendations() == []
